from peewee import OperationalError, Cast, chunked, fn
from typing import Optional
import contextlib
import functools
import logging
import operator

from ..rational import Rational, NestedIntervalError
from ..coordinates import InvariantViolation, is_descendant, right_endpoint
from ..config import TreeConfig
from .backends import backend_for


class ConcurrentStructuralConflict(NestedIntervalError):
    pass


class CoordinateOverflow(InvariantViolation):
    pass


# Relative widening applied to the float hint so rounding can never exclude
# a row that the exact integer predicate would accept
HINT_MARGIN = 1e-12


class NodeStore:
    """Reads, writes and locks nested interval rows of one peewee model.

    Every query is narrowed to the forest partition of the node it concerns
    (TreeConfig.scope). The store never decides tree structure itself; it
    only fetches and persists what the coordinate algebra computes.
    """

    def __init__(self, model, config: TreeConfig, logger=None):
        self.model = model
        self.config = config
        self.db = model._meta.database
        self.backend = backend_for(self.db, config.backend)
        self.fk = getattr(model, config.foreign_key)
        self.pk = model._meta.primary_key
        self._limit = 1 << config.max_bits
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    # ---------------------- Node capability accessors ----------------------

    def parent_id_of(self, node):
        return getattr(node, self.fk.object_id_name)

    def id_of(self, node):
        return getattr(node, self.pk.name)

    def scope_of(self, node) -> tuple:
        return tuple(getattr(node, col) for col in self.config.scope)

    def set_scope(self, node, values: tuple):
        for col, v in zip(self.config.scope, values):
            setattr(node, col, v)

    def _scoped(self, query, node, *exprs):
        conds = list(exprs)
        if node is not None:
            for col in self.config.scope:
                conds.append(getattr(self.model, col) == getattr(node, col))
        if len(conds) == 0:
            return query
        return query.where(*conds)

    # ----------------------------- Locking ---------------------------------

    @contextlib.contextmanager
    def transaction(self):
        try:
            with self.backend.atomic(self.db):
                yield
        except OperationalError as e:
            if self.backend.is_lock_error(e):
                raise ConcurrentStructuralConflict(
                    f"Lock on {self.model.__name__} not acquired: {e}"
                ) from e
            raise

    def lock_for_update(self, node_id):
        """Re-reads a row under an exclusive lock; must run in transaction()."""
        query = self.model.select().where(self.pk == node_id)
        return self.backend.lock_rows(query, self.config.lock_nowait).get()

    def lock_partition(self, node):
        if not self.backend.row_locks:
            return
        query = self._scoped(self.model.select(self.pk), node)
        n = len(list(self.backend.lock_rows(query, self.config.lock_nowait)))
        self._logger.debug(f"Locked {n} rows of {self.model.__name__} partition")

    # ----------------------------- Reads -----------------------------------

    def get(self, node_id):
        return self.model.get(self.pk == node_id)

    def roots(self, node=None):
        return list(
            self._scoped(
                self.model.select().order_by(self.pk),
                node,
                self.model.lftp == 0,
                self.model.lftq == 1,
            )
        )

    def partition(self, node=None):
        return list(self._scoped(self.model.select().order_by(self.pk), node))

    def children_of(self, parent, newest_first=False):
        order = self.model.lftq.desc() if newest_first else self.model.lftq.asc()
        return list(
            self.model.select()
            .where(self.fk == self.id_of(parent))
            .order_by(order)
        )

    def last_child(self, parent):
        """Returns the child with the largest denominator, if any."""
        for c in (
            self.model.select()
            .where(self.fk == self.id_of(parent))
            .order_by(self.model.lftq.desc())
            .limit(1)
        ):
            return c
        return None

    def range_fits(self, node, c: Rational) -> bool:
        """True if the SQL range predicate for `c` cannot overflow.

        The predicate multiplies every candidate's lftq by c.p and by the
        right end's numerator. Engines either raise or (SQLite) silently
        switch to REAL once such a product leaves the integer range, which
        would drop real descendants from the result.
        """
        rgt = right_endpoint(c)
        top = self._scoped(self.model.select(fn.MAX(self.model.lftq)), node).scalar()
        return (top or 0) * max(c.p, rgt.p) < self._limit

    def descendant_conditions(self, c: Rational, hint=None, exact=True) -> list:
        """Returns WHERE conditions selecting the descendants of `c`.

        With `exact`, the conditions match the descendants and nothing else.
        Otherwise they only bound the candidates without multiplying columns:
        anything strictly between two neighbors p/q and r/s has a numerator
        of at least p + r and a denominator of at least q + s.
        """
        if hint is None:
            hint = self.config.lft_index
        M = self.model
        div = self.backend.divide
        rgt = right_endpoint(c)
        if exact:
            conds = [
                M.lftp > c.p,
                (M.lftp != rgt.p) | (M.lftq != rgt.q),
                M.lftp.between(
                    1 + div(M.lftq * c.p, c.q), div(M.lftq * rgt.p, rgt.q)
                ),
            ]
        else:
            conds = [M.lftp >= c.p + rgt.p, M.lftq >= c.q + rgt.q]
        if hint:
            conds.append(
                M.lft.between(
                    float(c) * (1 - HINT_MARGIN), float(rgt) * (1 + HINT_MARGIN)
                )
            )
        return conds

    def descendants_matching(self, node, c: Optional[Rational] = None):
        """Returns the strict descendants of `node`.

        The SQL range predicate selects candidates; each one is re-checked
        with exact integer arithmetic before it is returned.
        """
        if c is None:
            c = Rational(node.lftp, node.lftq)
        exact = self.range_fits(node, c)
        if not exact:
            self._logger.debug(f"Range predicate for {c} would overflow, scanning")
        query = self._scoped(
            self.model.select(), node, *self.descendant_conditions(c, exact=exact)
        )
        return [d for d in query if is_descendant(Rational(d.lftp, d.lftq), c)]

    def find_coordinates(self, node, coordinates: list):
        if len(coordinates) == 0:
            return []
        M = self.model
        match = functools.reduce(
            operator.or_, [(M.lftp == c.p) & (M.lftq == c.q) for c in coordinates]
        )
        return list(self._scoped(M.select(), node, match))

    # ----------------------------- Writes ----------------------------------

    def _fits(self, v) -> bool:
        return -self._limit < v < self._limit

    def check_width(self, *values):
        for v in values:
            if not self._fits(v):
                raise CoordinateOverflow(
                    f"{v} does not fit in {self.config.max_bits} bits"
                )

    def transform_fits(self, transform, rows) -> bool:
        """True if applying `transform` in SQL keeps every product in range."""
        t = transform
        for d in rows:
            pp, pq = t.cpp * d.lftp, t.cpq * d.lftq
            qp, qq = t.cqp * d.lftp, t.cqq * d.lftq
            for v in (pp, pq, qp, qq, pp + pq, qp + qq):
                if not self._fits(v):
                    return False
        return True

    def _hint(self, c: Rational):
        return float(c) if self.config.lft_index else None

    def create(self, node, c: Rational):
        self.check_width(c.p, c.q)
        node.lftp, node.lftq = c.p, c.q
        node.lft = self._hint(c)
        node.save(force_insert=True)
        return node

    def update_coordinate(self, node, c: Rational, parent):
        self.check_width(c.p, c.q)
        parent_id = None if parent is None else self.id_of(parent)
        M = self.model
        M.update(
            {M.lftp: c.p, M.lftq: c.q, M.lft: self._hint(c), self.fk: parent_id}
        ).where(self.pk == self.id_of(node)).execute()
        node.lftp, node.lftq = c.p, c.q
        node.lft = self._hint(c)
        setattr(node, self.fk.name, parent)
        return node

    def bulk_update(self, node, old: Rational, new: Rational, transform, rows=None) -> int:
        """Applies `transform` to every descendant of `node`.

        `old` selects the descendants; `new` is where they end up, used to
        refresh the float hint afterwards. `rows` are the descendants as
        already fetched by the caller. When the range predicate and every
        product of the transform fit the integer columns this is a single
        UPDATE; otherwise each row is rewritten by primary key with values
        computed here.
        """
        self.check_width(transform.cpp, transform.cpq, transform.cqp, transform.cqq)
        if rows is None:
            rows = self.descendants_matching(node, old)
        if self.range_fits(node, old) and self.transform_fits(transform, rows):
            conds = self.descendant_conditions(old)
            for col in self.config.scope:
                conds.append(getattr(self.model, col) == getattr(node, col))
            where = functools.reduce(operator.and_, conds)
            n = self.backend.transform_update(self.model, where, transform).execute()
            if self.config.lft_index:
                self._refresh_hint(node, new)
            return n

        self._logger.debug(
            f"Rewriting {len(rows)} rows below {self.id_of(node)} one at a time"
        )
        M = self.model
        n = 0
        for d in rows:
            c = transform.apply(Rational(d.lftp, d.lftq))
            self.check_width(c.p, c.q)
            n += (
                M.update({M.lftp: c.p, M.lftq: c.q, M.lft: self._hint(c)})
                .where(self.pk == self.id_of(d))
                .execute()
            )
        return n

    def _refresh_hint(self, node, c: Rational):
        M = self.model
        # The hint is stale here, so select without it. Refreshing rows
        # outside the subtree is harmless.
        conds = self.descendant_conditions(
            c, hint=False, exact=self.range_fits(node, c)
        )
        query = M.update(
            {M.lft: Cast(M.lftp, self.backend.float_type) / M.lftq}
        )
        self._scoped(query, node, *conds).execute()

    def delete_subtree(self, node) -> int:
        c = Rational(node.lftp, node.lftq)
        M = self.model
        if self.range_fits(node, c):
            n = self._scoped(M.delete(), node, *self.descendant_conditions(c)).execute()
        else:
            # Deepest first, so a cascade never removes a row before its batch
            rows = sorted(
                self.descendants_matching(node, c), key=lambda d: d.lftq, reverse=True
            )
            n = 0
            for batch in chunked([self.id_of(d) for d in rows], 500):
                n += M.delete().where(self.pk.in_(batch)).execute()
        n += M.delete().where(self.pk == self.id_of(node)).execute()
        return n
