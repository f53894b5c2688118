# Exact rationals for Stern-Brocot interval coordinates
# https://begriffs.com/posts/2018-03-20-user-defined-order.html#approach-3-true-fractions
from math import gcd


class NestedIntervalError(Exception):
    pass


class NoModularInverse(NestedIntervalError, ArithmeticError):
    pass


def inverse(a: int, m: int) -> int:
    """Returns x in [0, m) such that a * x == 1 (mod m).

    Examples:
      inverse(2, 7) # => 4
      inverse(4, 7) # => 2
    """
    if m <= 0:
        raise ValueError(f"modulus must be positive, got {m}")
    # Python's % already maps negative values into [0, m)
    u, v = m, a % m
    x, y = 0, 1
    while v != 0:
        q, r = divmod(u, v)
        x, y = y, x - q * y
        u, v = v, r
    if u != 1:
        raise NoModularInverse(f"{a} has no inverse modulo {m}")
    return x + m if x < 0 else x


class Rational:
    def __init__(self, p, q):
        self.p = p
        self.q = q

    def mediant(self, other):
        # https://www.cut-the-knot.org/proofs/fords.shtml#mediant
        # mediant of p1/q1 and p2/q2 = (p1 + p2)/(q1 + q2)
        return Rational(self.p + other.p, self.q + other.q)

    def is_reduced(self) -> bool:
        return self.q > 0 and gcd(self.p, self.q) == 1

    def _norm_op(self, other, op):
        return op(self.p * other.q, other.p * self.q)

    def __lt__(self, other):
        return self._norm_op(other, int.__lt__)

    def __gt__(self, other):
        return self._norm_op(other, int.__gt__)

    def __eq__(self, other):
        if not isinstance(other, Rational):
            return NotImplemented
        return self._norm_op(other, int.__eq__)

    def __ne__(self, other):
        if not isinstance(other, Rational):
            return NotImplemented
        return self._norm_op(other, int.__ne__)

    def __le__(self, other):
        return self._norm_op(other, int.__le__)

    def __ge__(self, other):
        return self._norm_op(other, int.__ge__)

    def __hash__(self):
        g = gcd(self.p, self.q) or 1
        p, q = self.p // g, self.q // g
        if q < 0:
            p, q = -p, -q
        return hash((p, q))

    def __iter__(self):
        # Allows `p, q = coordinate`
        yield self.p
        yield self.q

    def __float__(self):
        return self.p / self.q

    def __repr__(self):
        return f"({self.p}/{self.q})"

    def __str__(self):
        return f"{self.p}/{self.q}"

    @classmethod
    def parse(cls, s: str):
        p, sep, q = s.strip().partition("/")
        if sep == "":
            q = "1"
        return cls(int(p), int(q))
