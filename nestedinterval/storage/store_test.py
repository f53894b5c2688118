import unittest
from unittest.mock import patch
import logging

from ..config import TreeConfig
from ..coordinates import Transform
from ..rational import Rational as R
from .backends import SqliteBackend
from .database_test import TreeDBTest, Region
from .store import NodeStore, CoordinateOverflow
from .tree import NestedIntervalTree


class StoreTest(TreeDBTest):
    CONFIG = TreeConfig(foreign_key="region", scope=("fiction",))

    def setUp(self):
        super().setUp()
        self.tree = NestedIntervalTree(Region, self.CONFIG, logging.getLogger())
        self.store = self.tree.store
        self.earth = self.tree.create_root(name="Earth")
        self.oceania = self.tree.add_child(self.earth, name="Oceania")
        self.antarctica = self.tree.add_child(self.earth, name="Antarctica")
        self.australia = self.tree.add_child(self.oceania, name="Australia")
        self.new_zealand = self.tree.add_child(self.oceania, name="New Zealand")


class TestAccessors(StoreTest):
    def test_backend(self):
        self.assertIsInstance(self.store.backend, SqliteBackend)

    def test_parent_and_scope(self):
        self.assertEqual(self.store.parent_id_of(self.oceania), self.earth.id)
        self.assertIsNone(self.store.parent_id_of(self.earth))
        self.assertEqual(self.store.scope_of(self.earth), (False,))
        r = Region(name="Krypton")
        self.store.set_scope(r, (True,))
        self.assertTrue(r.fiction)


class TestReads(StoreTest):
    def test_children_of(self):
        self.assertEqual(
            self.store.children_of(self.earth), [self.oceania, self.antarctica]
        )
        self.assertEqual(
            self.store.children_of(self.earth, newest_first=True),
            [self.antarctica, self.oceania],
        )
        self.assertEqual(self.store.children_of(self.australia), [])

    def test_last_child(self):
        self.assertEqual(self.store.last_child(self.earth), self.antarctica)
        self.assertEqual(self.store.last_child(self.oceania), self.new_zealand)
        self.assertIsNone(self.store.last_child(self.new_zealand))

    def test_roots(self):
        krypton = self.tree.create_root(name="Krypton", fiction=True)
        self.assertEqual(self.store.roots(), [self.earth, krypton])
        self.assertEqual(self.store.roots(krypton), [krypton])

    def test_descendants_exact(self):
        # Antarctica's interval (1/3, 1/2] ends where Oceania begins
        self.assertEqual(self.store.descendants_matching(self.antarctica), [])
        got = self.store.descendants_matching(self.oceania)
        self.assertEqual(
            sorted(n.id for n in got), [self.australia.id, self.new_zealand.id]
        )

    def test_find_coordinates(self):
        got = self.store.find_coordinates(self.australia, [R(0, 1), R(1, 2)])
        self.assertEqual(sorted(n.id for n in got), [self.earth.id, self.oceania.id])
        self.assertEqual(self.store.find_coordinates(self.australia, []), [])


class TestWrites(StoreTest):
    def test_check_width(self):
        self.store.check_width(0, 1, -(2**62), 2**63 - 1)
        with self.assertRaises(CoordinateOverflow):
            self.store.check_width(2**63)
        with self.assertRaises(CoordinateOverflow):
            self.store.check_width(-(2**63))

    def test_bulk_update(self):
        # Carries (1/2, 1/1] onto (2/7, 1/3], the first child slot of 1/4
        t = Transform(0, 1, -1, 4)
        n = self.store.bulk_update(self.oceania, R(1, 2), R(2, 7), t)
        self.assertEqual(n, 2)
        got = dict(
            (r.name, (r.lftp, r.lftq))
            for r in Region.select().where(Region.name << ["Australia", "New Zealand"])
        )
        self.assertEqual(got, {"Australia": (3, 10), "New Zealand": (5, 17)})
        # The node itself and everything outside its interval is untouched
        self.assertEqual(Region.get_by_id(self.oceania.id).lftq, 2)
        self.assertEqual(Region.get_by_id(self.antarctica.id).lftq, 3)

    def test_delete_subtree(self):
        self.assertEqual(self.store.delete_subtree(self.oceania), 3)
        self.assertEqual(
            [r.name for r in Region.select().order_by(Region.id)],
            ["Earth", "Antarctica"],
        )

    def test_bulk_update_row_by_row(self):
        # Same rewrite as above, forced down the per-row path
        t = Transform(0, 1, -1, 4)
        with patch.object(self.store, "range_fits", return_value=False):
            n = self.store.bulk_update(self.oceania, R(1, 2), R(2, 7), t)
        self.assertEqual(n, 2)
        self.assertEqual(Region.get_by_id(self.australia.id).lftq, 10)
        self.assertEqual(Region.get_by_id(self.new_zealand.id).lftq, 17)
        self.assertEqual(Region.get_by_id(self.antarctica.id).lftq, 3)

    def test_delete_subtree_row_by_row(self):
        with patch.object(self.store, "range_fits", return_value=False):
            self.assertEqual(self.store.delete_subtree(self.oceania), 3)
        self.assertEqual(Region.select().count(), 2)


class TestOverflowGuards(StoreTest):
    def test_range_fits(self):
        self.assertTrue(self.store.range_fits(self.earth, R(1, 2)))
        # lftq * p must stay below 2**63 for every stored lftq (at most 5 here)
        self.assertTrue(self.store.range_fits(self.earth, R(2**60 - 1, 2**60)))
        self.assertFalse(self.store.range_fits(self.earth, R(2**61 - 1, 2**61)))

    def test_transform_fits(self):
        rows = Region.select().order_by(Region.id)
        self.assertTrue(self.store.transform_fits(Transform(0, 1, -1, 4), rows))
        self.assertFalse(
            self.store.transform_fits(Transform(2**62, 1, -1, 4), rows)
        )

    def test_prefilter_keeps_every_descendant(self):
        # The overflow-free conditions may return extra rows, never fewer
        for n in (self.earth, self.oceania, self.antarctica):
            c = n.coordinate
            wide = Region.select().where(
                *self.store.descendant_conditions(c, exact=False)
            )
            exact = self.store.descendants_matching(n)
            self.assertLessEqual(set(d.id for d in exact), set(d.id for d in wide))

    def test_fallback_filters_exactly(self):
        with patch.object(self.store, "range_fits", return_value=False):
            got = self.store.descendants_matching(self.oceania)
            self.assertEqual(
                sorted(n.id for n in got), [self.australia.id, self.new_zealand.id]
            )
            self.assertEqual(self.store.descendants_matching(self.antarctica), [])
