from peewee import (
    SqliteDatabase,
    PostgresqlDatabase,
    MySQLDatabase,
    DatabaseProxy,
    Cast,
    NodeList,
    SQL,
)


class Backend:
    """Per-engine strategy for the few places where SQL dialects disagree.

    Integer division, row locking, transaction start and the shape of the
    relocation UPDATE differ between engines; everything else in the store
    is portable peewee.
    """

    name = None
    lock_messages = ()
    row_locks = True
    float_type = "DOUBLE PRECISION"

    def divide(self, numerator, denominator):
        """Floor division of two non-negative integer expressions."""
        return numerator / denominator

    def atomic(self, db):
        return db.atomic()

    def lock_rows(self, query, nowait=False):
        return query.for_update(nowait=nowait or None)

    def is_lock_error(self, e) -> bool:
        msg = str(e).lower()
        return any(m in msg for m in self.lock_messages)

    def transform_update(self, model, where, t):
        return model.update(
            {
                model.lftp: t.cpp * model.lftp + t.cpq * model.lftq,
                model.lftq: t.cqp * model.lftp + t.cqq * model.lftq,
            }
        ).where(where)


class SqliteBackend(Backend):
    name = "sqlite"
    lock_messages = ("locked", "busy")
    row_locks = False
    float_type = "REAL"

    # divide() is inherited: integer operands already floor-divide in SQLite

    def atomic(self, db):
        # SQLite has no row locks; BEGIN IMMEDIATE takes the database write
        # lock up front so no two structural mutations can interleave.
        return db.atomic(lock_type="IMMEDIATE")

    def lock_rows(self, query, nowait=False):
        return query


class PostgresqlBackend(Backend):
    name = "postgresql"
    lock_messages = (
        "could not obtain lock",
        "lock timeout",
        "deadlock detected",
    )

    def divide(self, numerator, denominator):
        return Cast(numerator, "BIGINT") / denominator


class MySQLBackend(Backend):
    name = "mysql"
    float_type = "DOUBLE"
    lock_messages = (
        "lock wait timeout",
        "deadlock found",
        "could not be acquired",
    )

    def divide(self, numerator, denominator):
        # peewee maps an Expression named "DIV" onto "/", so spell the token out
        return NodeList((numerator, SQL("DIV"), denominator), parens=True)

    def transform_update(self, model, where, t):
        # MySQL evaluates SET clauses left to right, so lftq would see the new
        # lftp. Stash the old value in a session variable from the WHERE clause
        # (lftp is never 0 for a descendant, so the assignment is truthy).
        old_lftp = SQL("@lftp")
        return model.update(
            {
                model.lftp: t.cpp * model.lftp + t.cpq * model.lftq,
                model.lftq: t.cqp * old_lftp + t.cqq * model.lftq,
            }
        ).where(where & SQL("(@lftp := lftp)"))


BACKENDS = dict(
    (b.name, b) for b in (SqliteBackend, PostgresqlBackend, MySQLBackend)
)


def backend_for(db, name=None) -> Backend:
    if name is not None:
        return BACKENDS[name]()
    if isinstance(db, DatabaseProxy):
        db = db.obj
    for cls, backend in (
        (SqliteDatabase, SqliteBackend),
        (PostgresqlDatabase, PostgresqlBackend),
        (MySQLDatabase, MySQLBackend),
    ):
        if isinstance(db, cls):
            return backend()
    raise ValueError(f"No nested interval backend for database {type(db).__name__}")

