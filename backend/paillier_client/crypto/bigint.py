"""Arbitrary-precision integer helpers used by key generation and encryption."""

import os
import secrets
from typing import Callable, Optional

from paillier_client.errors import ArithmeticPreconditionError, KeyValidationError

MR_ROUNDS = int(os.getenv("PAILLIER_MR_ROUNDS", "40"))


def random_bits(bits: int) -> int:
    """Uniform integer of exactly ``bits`` bits from the OS CSPRNG."""
    if bits < 1:
        raise KeyValidationError("bit count must be positive")
    value = secrets.randbits(bits) & ((1 << bits) - 1)
    return value | (1 << (bits - 1))


def mod_pow(base: int, exponent: int, modulus: int) -> int:
    if modulus < 1:
        raise KeyValidationError("modulus must be >= 1")
    if exponent < 0:
        raise KeyValidationError("exponent must be non-negative")
    return pow(base, exponent, modulus)


def gcd(a: int, b: int) -> int:
    a, b = abs(a), abs(b)
    while b:
        a, b = b, a % b
    return a


def lcm(a: int, b: int) -> int:
    d = gcd(a, b)
    if d == 0:
        raise ArithmeticPreconditionError("lcm(0, 0) is undefined")
    return abs(a * b) // d


def mod_inverse(a: int, m: int) -> int:
    """
    Inverse of ``a`` modulo ``m`` via the extended Euclidean algorithm.
    Raises ArithmeticPreconditionError when gcd(a, m) != 1.
    """
    if m < 1:
        raise ArithmeticPreconditionError("modulus must be >= 1")
    if m == 1:
        return 0

    old_r, r = a % m, m
    old_s, s = 1, 0
    while r:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_s, s = s, old_s - q * s

    if old_r != 1:
        raise ArithmeticPreconditionError(f"{a} has no inverse modulo {m} (gcd={old_r})")
    return old_s % m


def is_probably_prime(
    n: int,
    rounds: int = MR_ROUNDS,
    check: Optional[Callable[[], None]] = None,
) -> bool:
    """
    Miller-Rabin test with ``rounds`` random witnesses drawn from [2, n-2].

    ``check`` is called before every witness round and may raise to abort
    the test (used for cooperative cancellation of the prime search).
    """
    if n in (2, 3):
        return True
    if n < 2 or n % 2 == 0:
        return False

    d = n - 1
    s = 0
    while d % 2 == 0:
        d //= 2
        s += 1

    for _ in range(rounds):
        if check is not None:
            check()
        a = secrets.randbelow(n - 3) + 2
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(s - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
            if x == 1:
                return False
        else:
            return False
    return True
