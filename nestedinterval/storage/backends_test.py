import unittest
from peewee import (
    SqliteDatabase,
    PostgresqlDatabase,
    MySQLDatabase,
    DatabaseProxy,
    OperationalError,
)
from parameterized import parameterized

from ..coordinates import Transform
from .backends import (
    SqliteBackend,
    PostgresqlBackend,
    MySQLBackend,
    backend_for,
)
from .database import Node


def render(db, query):
    sql, _ = db.get_sql_context().sql(query).query()
    return sql


class TestBackendFor(unittest.TestCase):
    @parameterized.expand(
        [
            ("sqlite", SqliteDatabase(None), SqliteBackend),
            ("postgresql", PostgresqlDatabase(None), PostgresqlBackend),
            ("mysql", MySQLDatabase(None), MySQLBackend),
        ]
    )
    def test_detect(self, _, db, want):
        self.assertIsInstance(backend_for(db), want)

    def test_proxy(self):
        proxy = DatabaseProxy()
        proxy.initialize(PostgresqlDatabase(None))
        self.assertIsInstance(backend_for(proxy), PostgresqlBackend)

    def test_by_name(self):
        self.assertIsInstance(backend_for(SqliteDatabase(None), "mysql"), MySQLBackend)

    def test_unknown(self):
        with self.assertRaises(ValueError):
            backend_for(object())


class TestLockErrors(unittest.TestCase):
    @parameterized.expand(
        [
            ("sqlite", SqliteBackend(), "database is locked", True),
            ("sqlite_other", SqliteBackend(), "no such table: node", False),
            (
                "postgresql",
                PostgresqlBackend(),
                'could not obtain lock on row in relation "node"',
                True,
            ),
            ("mysql", MySQLBackend(), "Lock wait timeout exceeded", True),
        ]
    )
    def test_is_lock_error(self, _, backend, msg, want):
        self.assertEqual(backend.is_lock_error(OperationalError(msg)), want)


class TestSQL(unittest.TestCase):
    T = Transform(0, 1, -1, 3)

    def test_postgresql_divide(self):
        db = PostgresqlDatabase(None)
        q = Node.select().where(
            Node.lftp <= PostgresqlBackend().divide(Node.lftq * 1, 2)
        )
        sql = render(db, q)
        self.assertIn("CAST(", sql)
        self.assertIn("BIGINT", sql)

    def test_mysql_divide(self):
        db = MySQLDatabase(None)
        q = Node.select().where(Node.lftp <= MySQLBackend().divide(Node.lftq * 3, 2))
        where = render(db, q).split("WHERE")[1]
        self.assertIn(" DIV ", where)
        # MySQL's "/" is decimal division and would not floor the bound
        self.assertNotIn("/", where)

    def test_mysql_transform_update(self):
        db = MySQLDatabase(None)
        q = MySQLBackend().transform_update(Node, Node.lftp > 1, self.T)
        sql = render(db, q)
        self.assertIn("@lftp := lftp", sql)
        self.assertIn("@lftp", sql.split("WHERE")[0])

    def test_portable_transform_update(self):
        db = PostgresqlDatabase(None)
        sql = render(db, PostgresqlBackend().transform_update(Node, Node.lftp > 1, self.T))
        self.assertNotIn("@lftp", sql)
        self.assertTrue(sql.startswith('UPDATE "node" SET'))

    def test_sqlite_leaves_query_unlocked(self):
        q = Node.select()
        self.assertIs(SqliteBackend().lock_rows(q, nowait=True), q)
