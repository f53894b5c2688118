from typing import Optional
import logging

from ..rational import Rational, NestedIntervalError
from ..config import TreeConfig
from ..coordinates import (
    ROOT,
    InvariantViolation,
    ancestors_of,
    check_child,
    check_coordinate,
    create_root,
    depth_of,
    is_descendant,
    next_child_coordinate,
    plan_move,
    right_endpoint,
    validate_move,
)
from .store import NodeStore, ConcurrentStructuralConflict


class RootExists(NestedIntervalError, ValueError):
    pass


def coordinate_of(node) -> Rational:
    return Rational(node.lftp, node.lftq)


class NestedIntervalTree:
    """Tree operations over a peewee model built on NestedIntervalModel.

    Every structural mutation runs as validate -> allocate/transform ->
    persist inside a single store transaction, holding the locks that keep
    concurrent writers from computing coordinates off stale rows:

    - inserting a child locks the parent row
    - moving a node locks its whole forest partition
    - deleting a node locks its parent row, then the node
    """

    def __init__(self, model, config: Optional[TreeConfig] = None, logger=None):
        if config is None:
            config = TreeConfig()
        self.model = model
        self.config = config
        self._logger = (
            logger if logger is not None else logging.getLogger("nestedinterval")
        )
        self.store = NodeStore(model, config, self._logger)

    # ------------------------- Structural mutations -------------------------

    def insert(self, node):
        """Saves a new node as a root, or as the last child of its parent."""
        parent_id = self.store.parent_id_of(node)
        if parent_id is None:
            with self.store.transaction():
                self.store.lock_partition(node)
                if len(self.store.roots(node)) > 0:
                    raise RootExists(
                        f"{self.model.__name__} partition {self.store.scope_of(node)} already has a root"
                    )
                self.store.create(node, create_root())
            self._logger.debug(f"Created root {self.store.id_of(node)}")
            return node

        with self.store.transaction():
            parent = self.store.lock_for_update(parent_id)
            pc = coordinate_of(parent)
            last = self.store.last_child(parent)
            c = next_child_coordinate(pc, [] if last is None else [coordinate_of(last)])
            if self.config.check_invariants:
                check_child(pc, c)
            # A child always lives in its parent's partition
            self.store.set_scope(node, self.store.scope_of(parent))
            self.store.create(node, c)
        self._logger.debug(
            f"Inserted {self.store.id_of(node)} at {c} under {parent_id} ({pc})"
        )
        return node

    def create_root(self, **fields):
        fields[self.config.foreign_key] = None
        return self.insert(self.model(**fields))

    def add_child(self, parent, **fields):
        fields[self.config.foreign_key] = parent
        return self.insert(self.model(**fields))

    def move(self, node, new_parent):
        """Reparents `node`, rewriting the coordinates of its whole subtree.

        Raises OwnershipCycle if `new_parent` is `node` or lies beneath it;
        nothing is written in that case.
        """
        if new_parent is None:
            raise ValueError(f"Cannot move {self.store.id_of(node)} to the root")

        with self.store.transaction():
            self.store.lock_partition(node)
            db_node = self.store.lock_for_update(self.store.id_of(node))
            db_parent = self.store.lock_for_update(self.store.id_of(new_parent))
            if self.store.scope_of(db_node) != self.store.scope_of(db_parent):
                raise ValueError(
                    f"Cannot move {self.store.id_of(node)} across forest partitions"
                )
            old = coordinate_of(db_node)
            validate_move(old, coordinate_of(db_parent))
            if self.store.parent_id_of(db_node) == self.store.id_of(db_parent):
                self._logger.info(
                    f"{self.store.id_of(node)} already under {self.store.id_of(db_parent)}, not moving"
                )
                node.lftp, node.lftq = db_node.lftp, db_node.lftq
                return node

            last = self.store.last_child(db_parent)
            relocation = plan_move(
                old,
                coordinate_of(db_parent),
                None if last is None else coordinate_of(last),
            )
            descendants = self.store.descendants_matching(db_node, old)

            # Fail before writing anything if a rewritten value would not fit
            for d in descendants:
                moved = relocation.transform.apply(coordinate_of(d))
                self.store.check_width(moved.p, moved.q)

            n = self.store.bulk_update(
                db_node, old, relocation.new, relocation.transform, descendants
            )
            if n != len(descendants):
                raise ConcurrentStructuralConflict(
                    f"Rewrote {n} rows below {self.store.id_of(node)}, expected {len(descendants)}"
                )
            self.store.update_coordinate(node, relocation.new, db_parent)
            if self.config.check_invariants:
                check_child(coordinate_of(db_parent), relocation.new)
                self._check_subtree(node, len(descendants))

        self._logger.debug(
            f"Moved {self.store.id_of(node)} from {relocation.old} to {relocation.new} "
            f"with {len(descendants)} descendants, transform {relocation.transform}"
        )
        return node

    def _check_subtree(self, node, expected: int):
        # Scan the partition in Python, independent of the SQL range predicate
        c = coordinate_of(node)
        found = [
            r
            for r in self.store.partition(node)
            if is_descendant(coordinate_of(r), c)
        ]
        if len(found) != expected:
            raise InvariantViolation(
                f"{len(found)} descendants of {self.store.id_of(node)} after move, expected {expected}"
            )
        for d in found:
            check_coordinate(coordinate_of(d))

    def delete(self, node) -> int:
        """Deletes `node` and its subtree, returning the number of rows removed."""
        with self.store.transaction():
            parent_id = self.store.parent_id_of(self.store.get(self.store.id_of(node)))
            if parent_id is not None:
                self.store.lock_for_update(parent_id)
            db_node = self.store.lock_for_update(self.store.id_of(node))
            n = self.store.delete_subtree(db_node)
        self._logger.debug(f"Deleted {self.store.id_of(node)} and {n - 1} descendants")
        return n

    # ------------------------------- Queries --------------------------------

    def roots(self):
        return self.store.roots()

    def root(self, node=None):
        for r in self.store.roots(node):
            return r
        return None

    def children(self, node):
        return self.store.children_of(node)

    def descendants(self, node):
        return self.store.descendants_matching(node)

    def ancestors(self, node):
        """Returns the ancestors of `node`, root first."""
        walk = list(ancestors_of(coordinate_of(node)))
        walk.reverse()
        found = dict(
            ((n.lftp, n.lftq), n) for n in self.store.find_coordinates(node, walk)
        )
        return [found[(c.p, c.q)] for c in walk if (c.p, c.q) in found]

    def depth(self, node) -> int:
        return depth_of(coordinate_of(node))

    def is_descendant(self, node, of) -> bool:
        return self.store.scope_of(node) == self.store.scope_of(of) and is_descendant(
            coordinate_of(node), coordinate_of(of)
        )

    def preorder(self, node=None):
        """Returns nodes depth first, siblings in creation order.

        With `node`, only its subtree; otherwise the whole table, one
        partition after another.
        """
        if node is None:
            nodes = self.store.partition()
        else:
            nodes = [node] + self.store.descendants_matching(node)

        def key(n):
            c = coordinate_of(n)
            rgt = right_endpoint(c)
            return (self.store.scope_of(n), Rational(-rgt.p, rgt.q), c)

        return sorted(nodes, key=key)

    def check(self, node=None) -> dict:
        """Scans stored coordinates for broken invariants.

        Returns a dict of lists of node ids:

        - unreduced: q <= 0, gcd(p, q) != 1 or no valid right end
        - orphans: the parent row is missing
        - misplaced: the coordinate does not sit directly beneath the parent's
        - duplicates: another node of the partition holds the same coordinate
        """
        rows = self.store.partition(node)
        by_id = dict((self.store.id_of(r), r) for r in rows)
        problems = dict(unreduced=[], orphans=[], misplaced=[], duplicates=[])
        seen = set()
        for r in rows:
            rid = self.store.id_of(r)
            c = coordinate_of(r)
            try:
                check_coordinate(c)
            except NestedIntervalError:
                problems["unreduced"].append(rid)
                continue

            key = (self.store.scope_of(r), c.p, c.q)
            if key in seen:
                problems["duplicates"].append(rid)
            seen.add(key)

            pid = self.store.parent_id_of(r)
            if pid is None:
                if c != ROOT:
                    problems["misplaced"].append(rid)
                continue
            parent = by_id.get(pid)
            if parent is None:
                problems["orphans"].append(rid)
                continue
            if next(ancestors_of(c), None) != coordinate_of(parent):
                problems["misplaced"].append(rid)
        return problems
