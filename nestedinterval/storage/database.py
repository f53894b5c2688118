from peewee import (
    Model,
    SqliteDatabase,
    BigIntegerField,
    CharField,
    FloatField,
    ForeignKeyField,
)
import logging
import os

from ..rational import Rational
from ..coordinates import right_endpoint, depth_of


logging.getLogger("peewee").setLevel(logging.INFO)


# Defer initialization
class DB:
    # Adding foreign_keys pragma is necessary for ON DELETE behavior
    tree = SqliteDatabase(None, pragmas={"foreign_keys": 1})


class NestedIntervalModel(Model):
    """Base for any model stored as a nested interval tree.

    Only the left end (lftp / lftq) of a node's interval is persisted. Host
    models must also declare a self-referential ForeignKeyField, named by
    TreeConfig.foreign_key (default "parent").

    `lft` is an optional float approximation of lftp / lftq. It is only kept
    up to date when TreeConfig.lft_index is set and is never used to decide
    ancestry on its own.
    """

    lftp = BigIntegerField()
    lftq = BigIntegerField()
    lft = FloatField(null=True, index=True)

    class Meta:
        database = DB.tree
        indexes = ((("lftp", "lftq"), False),)

    @property
    def coordinate(self) -> Rational:
        return Rational(self.lftp, self.lftq)

    @property
    def right(self) -> Rational:
        return right_endpoint(self.coordinate)

    @property
    def depth(self) -> int:
        return depth_of(self.coordinate)

    def as_dict(self):
        rgt = self.right
        return dict(
            id=self.id,
            lftp=self.lftp,
            lftq=self.lftq,
            rgtp=rgt.p,
            rgtq=rgt.q,
        )


class Node(NestedIntervalModel):
    name = CharField(default="")
    # Independent trees live side by side, partitioned by forest name
    forest = CharField(default="")
    parent = ForeignKeyField(
        "self", null=True, backref="children", on_delete="CASCADE"
    )

    def as_dict(self):
        d = super().as_dict()
        d["name"] = self.name
        d["forest"] = self.forest
        d["parent_id"] = self.parent_id
        return d


MODELS = [Node]


def file_exists(path: str) -> bool:
    try:
        return os.stat(path).st_size > 0
    except OSError:
        return False


def init_db(db_path, models=None, logger=None, **kwargs):
    if models is None:
        models = MODELS
    db = DB.tree
    needs_init = not file_exists(db_path)
    db.init(None)
    db.init(db_path, **kwargs)
    db.connect()
    if needs_init and logger is not None:
        logger.debug(f"Initializing tree DB at {db_path}")
    # Host model tables may be added to an existing file
    db.create_tables(models, safe=True)
    return db
