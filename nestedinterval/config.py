from typing import Optional
import dataclasses
import yaml


BACKENDS = ("sqlite", "postgresql", "mysql")


@dataclasses.dataclass(frozen=True)
class TreeConfig:
    # Name of the self-referential ForeignKeyField on the host model
    foreign_key: str = "parent"
    # Columns whose values partition the table into independent trees
    scope: tuple = ()
    # Maintain the approximate 1.0 * lftp / lftq column as a query hint
    lft_index: bool = False
    # One of BACKENDS; None detects it from the model's database
    backend: Optional[str] = None
    lock_nowait: bool = False
    check_invariants: bool = False
    # Width of the integer columns holding lftp/lftq
    max_bits: int = 63

    def __post_init__(self):
        if isinstance(self.scope, str):
            object.__setattr__(self, "scope", (self.scope,))
        else:
            object.__setattr__(self, "scope", tuple(self.scope or ()))
        if self.backend is not None and self.backend not in BACKENDS:
            raise ValueError(
                f"Unknown backend {self.backend}, options: {list(BACKENDS)}"
            )
        if self.max_bits < 2:
            raise ValueError(f"max_bits must be at least 2, got {self.max_bits}")

    @classmethod
    def from_dict(cls, data: dict):
        names = set(f.name for f in dataclasses.fields(cls))
        unknown = set(data.keys()) - names
        if len(unknown) > 0:
            raise ValueError(
                f"Unknown config keys {sorted(unknown)}, options: {sorted(names)}"
            )
        return cls(**data)

    def as_dict(self):
        d = dataclasses.asdict(self)
        d["scope"] = list(d["scope"])
        return d


def load_config(path) -> TreeConfig:
    with open(path, "r") as f:
        data = yaml.safe_load(f.read())
    if data is None:
        data = {}
    return TreeConfig.from_dict(data)
