from .rational import Rational, inverse, NestedIntervalError, NoModularInverse
from .coordinates import (
    ROOT,
    InvariantViolation,
    OwnershipCycle,
    Relocation,
    Transform,
    ancestors_of,
    check_coordinate,
    create_root,
    depth_of,
    is_descendant,
    next_child_coordinate,
    plan_move,
    relocation_transform,
    right_endpoint,
    validate_move,
)
from .config import TreeConfig, load_config
from .storage.store import ConcurrentStructuralConflict, CoordinateOverflow
from .storage.tree import NestedIntervalTree, RootExists
from .storage.database import NestedIntervalModel, init_db

__version__ = "1.0.0"
