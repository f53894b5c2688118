"""Nested interval coordinate algebra.

Every node of a tree is identified by the left end p/q of a half-open
interval (p/q, rgtp/rgtq]. Only the left end is ever stored; the right end
follows from it via the neighbor identity

    q * rgtp == 1 + p * rgtq

and a node's ancestors can be recovered from its left end alone. All
functions here are pure integer arithmetic over already-fetched values;
callers are responsible for fetching, locking and persisting.
"""
import dataclasses
from typing import Iterable, Iterator, Optional

from .rational import Rational, NestedIntervalError, inverse


class InvariantViolation(NestedIntervalError):
    pass


class OwnershipCycle(NestedIntervalError, ValueError):
    pass


ROOT = Rational(0, 1)


def create_root() -> Rational:
    return Rational(ROOT.p, ROOT.q)


def right_endpoint(c: Rational) -> Rational:
    """Returns the right end of the interval whose left end is `c`."""
    p, q = c
    if p == 0:
        return Rational(1, 1)
    if p == 1:
        return Rational(1, q - 1)
    x = inverse(q, p)
    return Rational(x, (x * q - 1) // p)


def next_child_coordinate(
    parent: Rational, children: Iterable[Rational] = ()
) -> Rational:
    """Returns the left end of the next free child interval of `parent`.

    The first child takes the mediant of the parent's two ends. Every later
    child takes the mediant of the parent's left end and the most recently
    allocated (largest denominator, leftmost) child, so that it nests
    strictly between the two. The root's children are 1/2, 1/3, 1/4, ...
    and the children of 1/2 are 2/3, 3/5, 4/7, ...
    """
    last = None
    for c in children:
        if last is None or c.q > last.q:
            last = c
    if last is None:
        return parent.mediant(right_endpoint(parent))
    if not is_descendant(last, parent):
        raise InvariantViolation(f"child {last!r} lies outside parent {parent!r}")
    return parent.mediant(last)


def ancestors_of(c: Rational) -> Iterator[Rational]:
    """Yields ancestor coordinates, nearest parent first and root last."""
    check_coordinate(c)
    p, q = c
    while p != 0:
        x = inverse(p, q)
        p, q = (x * p - 1) // q, x
        yield Rational(p, q)


def depth_of(c: Rational) -> int:
    n = 0
    for _ in ancestors_of(c):
        n += 1
    return n


def is_descendant(candidate: Rational, of: Rational) -> bool:
    # candidate must lie in (of, right] without being right itself; compare
    # by cross-multiplication so deep coordinates never lose precision
    rgt = right_endpoint(of)
    if candidate.p == rgt.p and candidate.q == rgt.q:
        return False
    return (
        candidate.p * of.q > candidate.q * of.p
        and candidate.p * rgt.q <= candidate.q * rgt.p
    )


@dataclasses.dataclass(frozen=True)
class Transform:
    """Integer linear map carrying a subtree from one interval to another.

    p' = cpp * p + cpq * q
    q' = cqp * p + cqq * q
    """

    cpp: int
    cpq: int
    cqp: int
    cqq: int

    def apply(self, c: Rational) -> Rational:
        return Rational(
            self.cpp * c.p + self.cpq * c.q,
            self.cqp * c.p + self.cqq * c.q,
        )

    def determinant(self) -> int:
        return self.cpp * self.cqq - self.cpq * self.cqp


def relocation_transform(old: Rational, new: Rational) -> Transform:
    orgt = right_endpoint(old)
    nrgt = right_endpoint(new)
    return Transform(
        cpp=old.q * nrgt.p - orgt.q * new.p,
        cpq=orgt.p * new.p - old.p * nrgt.p,
        cqp=old.q * nrgt.q - orgt.q * new.q,
        cqq=orgt.p * new.q - old.p * nrgt.q,
    )


def check_coordinate(c: Rational):
    if c.q <= 0:
        raise InvariantViolation(f"coordinate {c!r} has non-positive denominator")
    if not c.is_reduced():
        raise InvariantViolation(f"coordinate {c!r} is not reduced")
    if not 0 <= c.p < c.q:
        raise InvariantViolation(f"coordinate {c!r} lies outside [0, 1)")
    rgt = right_endpoint(c)
    if c.q * rgt.p != 1 + c.p * rgt.q:
        raise InvariantViolation(
            f"coordinate {c!r} and right end {rgt!r} are not neighbors"
        )


def check_child(parent: Rational, child: Rational):
    check_coordinate(child)
    if not is_descendant(child, parent):
        raise InvariantViolation(f"{child!r} does not lie inside {parent!r}")


def validate_move(node: Rational, new_parent: Rational):
    """Raises OwnershipCycle if `new_parent` is `node` or one of its descendants."""
    if new_parent == node:
        raise OwnershipCycle(f"cannot move {node!r} under itself")
    if is_descendant(new_parent, node):
        raise OwnershipCycle(f"cannot move {node!r} under its descendant {new_parent!r}")


@dataclasses.dataclass(frozen=True)
class Relocation:
    old: Rational
    new: Rational
    transform: Transform


def plan_move(
    node: Rational, new_parent: Rational, last_child: Optional[Rational] = None
) -> Relocation:
    """Validates a reparent and computes the coordinates it produces.

    `last_child` is the new parent's current child with the largest
    denominator, if it has any children.
    """
    validate_move(node, new_parent)
    children = () if last_child is None else (last_child,)
    new = next_child_coordinate(new_parent, children)
    return Relocation(old=node, new=new, transform=relocation_transform(node, new))
