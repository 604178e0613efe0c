import os
import secrets
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from paillier_client.crypto.bigint import gcd, mod_pow
from paillier_client.errors import KeyValidationError

DETERMINISTIC_BLINDING = os.getenv("PAILLIER_DETERMINISTIC_BLINDING", "0").lower() in {"1", "true", "yes"}

# Constants of the legacy demo blinding, kept for ciphertext compatibility
_LEGACY_R_MULTIPLIER = 31415926535
_LEGACY_R_OFFSET = 2718281828


@dataclass(frozen=True)
class PublicKey:
    n: int
    g: int
    n_squared: int = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.n < 2:
            raise KeyValidationError("modulus n must be at least 2")
        if self.g <= 0:
            raise KeyValidationError("generator g must be positive")
        object.__setattr__(self, "n_squared", self.n * self.n)


@dataclass(frozen=True)
class PrivateKey:
    lam: int
    mu: int


@dataclass(frozen=True)
class KeyPair:
    public_key: PublicKey
    private_key: PrivateKey


def int_to_bytes(value: int) -> bytes:
    """Minimal big-endian encoding; zero encodes to a single zero byte."""
    if value < 0:
        raise KeyValidationError("only non-negative integers can be encoded")
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def bytes_to_int(data: bytes) -> int:
    if not data:
        raise KeyValidationError("empty byte sequence")
    return int.from_bytes(data, "big")


def serialize_ciphertexts(ciphertexts: Iterable[int]) -> List[bytes]:
    return [int_to_bytes(c) for c in ciphertexts]


def parse_public_key(n_bytes: bytes, g_bytes: bytes) -> PublicKey:
    """Rebuild a public key from ledger-format byte strings; n² is recomputed."""
    return PublicKey(n=bytes_to_int(n_bytes), g=bytes_to_int(g_bytes))


def public_key_to_bytes(pub: PublicKey) -> Tuple[bytes, bytes]:
    return int_to_bytes(pub.n), int_to_bytes(pub.g)


class PaillierEncryption:
    """
    Encryption-only Paillier engine bound to one public key.

    By default every message gets a fresh blinding value drawn from the OS
    CSPRNG, so two encryptions of the same plaintext differ. Passing
    ``deterministic=True`` switches to the legacy demo blinding derived from
    the plaintext, which reproduces ciphertexts already stored by the demo
    but leaks plaintext equality.
    """

    def __init__(self, public_key: PublicKey, deterministic: bool = DETERMINISTIC_BLINDING):
        self.public_key = public_key
        self.deterministic = deterministic

    def encrypt(self, plaintext: int) -> int:
        pub = self.public_key
        if not 0 <= plaintext < pub.n:
            raise KeyValidationError("plaintext out of range [0, n)")
        r = self._blinding(plaintext)
        c1 = mod_pow(pub.g, plaintext, pub.n_squared)
        c2 = mod_pow(r, pub.n, pub.n_squared)
        return (c1 * c2) % pub.n_squared

    def encrypt_many(self, plaintexts: Iterable[int]) -> List[int]:
        return [self.encrypt(m) for m in plaintexts]

    def _blinding(self, plaintext: int) -> int:
        if self.deterministic:
            return self._legacy_blinding(plaintext)
        return self._random_blinding()

    def _random_blinding(self) -> int:
        n = self.public_key.n
        while True:
            r = secrets.randbelow(n - 1) + 1
            if gcd(r, n) == 1:
                return r

    def _legacy_blinding(self, plaintext: int) -> int:
        n = self.public_key.n
        r = (plaintext * _LEGACY_R_MULTIPLIER + _LEGACY_R_OFFSET) % n
        if r % 2 == 0:
            r += 1
        return r
