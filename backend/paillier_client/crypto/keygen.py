"""
Paillier key-pair generation.

Prime search is CPU bound with probabilistic termination; callers running
inside an event loop should use ``generate_keypair_async`` which moves the
work to a thread and stops it when the awaiting task is cancelled.
"""

import json
import os
import threading
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from anyio import to_thread

from paillier_client.crypto.bigint import MR_ROUNDS, is_probably_prime, lcm, mod_inverse, mod_pow, random_bits
from paillier_client.crypto.paillier import KeyPair, PrivateKey, PublicKey
from paillier_client.errors import KeyGenerationCancelled, KeyValidationError
from paillier_client.logger import get_logger

logger = get_logger("keygen")

MIN_KEY_BITS = 512
DEFAULT_KEY_BITS = int(os.getenv("PAILLIER_KEY_BITS", str(MIN_KEY_BITS)))

DEMO_WARNING = "This key was generated client-side for DEMO purposes only. Do not use for production!"


def _checkpoint(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise KeyGenerationCancelled("key generation cancelled")


def generate_prime(bits: int, cancel: Optional[threading.Event] = None, rounds: int = MR_ROUNDS) -> int:
    """Rejection-sample odd ``bits``-bit integers until one is probably prime."""
    if bits < 2:
        raise KeyValidationError("primes need at least 2 bits")
    check = partial(_checkpoint, cancel)
    attempts = 0
    while True:
        check()
        attempts += 1
        candidate = random_bits(bits) | 1
        if is_probably_prime(candidate, rounds, check=check):
            logger.debug("found %d-bit prime after %d attempts", bits, attempts)
            return candidate


def validate_bit_length(bit_length: int) -> None:
    if bit_length % 2 != 0:
        raise KeyValidationError("bit length must be even")
    if bit_length < MIN_KEY_BITS:
        raise KeyValidationError(f"bit length must be at least {MIN_KEY_BITS} for security")


def generate_keypair(bit_length: int = DEFAULT_KEY_BITS, cancel: Optional[threading.Event] = None) -> KeyPair:
    validate_bit_length(bit_length)
    half = bit_length // 2

    while True:
        p = generate_prime(half, cancel)
        q = generate_prime(half, cancel)
        if p != q:
            break
        logger.warning("p == q drawn, retrying key generation")

    n = p * q
    n_squared = n * n
    lam = lcm(p - 1, q - 1)
    g = n + 1
    # mu = L(g^lambda mod n^2)^-1 mod n, with L(x) = (x - 1) / n
    l_val = (mod_pow(g, lam, n_squared) - 1) // n
    mu = mod_inverse(l_val, n)

    logger.debug("generated %d-bit key pair", n.bit_length())
    return KeyPair(public_key=PublicKey(n=n, g=g), private_key=PrivateKey(lam=lam, mu=mu))


async def generate_keypair_async(bit_length: int = DEFAULT_KEY_BITS) -> KeyPair:
    """Run ``generate_keypair`` on a worker thread; cancellation stops the search."""
    validate_bit_length(bit_length)
    cancel = threading.Event()
    try:
        return await to_thread.run_sync(
            partial(generate_keypair, bit_length, cancel),
            abandon_on_cancel=True,
        )
    finally:
        cancel.set()


def export_public_key(pub: PublicKey) -> dict:
    return {"n": format(pub.n, "x"), "g": format(pub.g, "x")}


def export_private_key_for_backup(priv: PrivateKey) -> dict:
    """Hex dump of the private key. Debug/backup path only; handle with care."""
    return {"lambda": format(priv.lam, "x"), "mu": format(priv.mu, "x")}


def export_keypair(pair: KeyPair) -> str:
    exported = {
        "publicKey": export_public_key(pair.public_key),
        "privateKey": export_private_key_for_backup(pair.private_key),
        "warning": DEMO_WARNING,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(exported, indent=2)
