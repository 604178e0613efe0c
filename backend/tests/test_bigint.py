import pytest

from paillier_client.crypto.bigint import gcd, is_probably_prime, lcm, mod_inverse, mod_pow, random_bits
from paillier_client.errors import ArithmeticPreconditionError, KeyValidationError


def test_random_bits_has_exact_length():
    for bits in (1, 2, 7, 8, 9, 64, 257):
        for _ in range(20):
            assert random_bits(bits).bit_length() == bits


def test_random_bits_rejects_non_positive():
    with pytest.raises(KeyValidationError):
        random_bits(0)


def test_mod_pow_matches_builtin():
    assert mod_pow(4, 13, 497) == 445
    assert mod_pow(7, 0, 13) == 1
    assert mod_pow(5, 3, 1) == 0
    assert mod_pow(-3, 3, 11) == pow(-3, 3, 11)


def test_mod_pow_rejects_bad_modulus():
    with pytest.raises(KeyValidationError):
        mod_pow(2, 3, 0)
    with pytest.raises(KeyValidationError):
        mod_pow(2, -1, 7)


def test_gcd_and_lcm():
    assert gcd(12, 18) == 6
    assert gcd(0, 9) == 9
    assert gcd(17, 5) == 1
    assert lcm(4, 6) == 12
    assert lcm(0, 5) == 0


def test_lcm_of_two_zeros_is_a_precondition_error():
    with pytest.raises(ArithmeticPreconditionError):
        lcm(0, 0)


def test_mod_inverse():
    assert mod_inverse(3, 11) == 4
    assert mod_inverse(10, 17) * 10 % 17 == 1
    assert mod_inverse(-3, 11) == pow(-3, -1, 11)
    assert mod_inverse(5, 1) == 0


def test_mod_inverse_not_coprime():
    with pytest.raises(ArithmeticPreconditionError):
        mod_inverse(6, 9)
    with pytest.raises(ArithmeticError):
        mod_inverse(0, 7)


@pytest.mark.parametrize("n", [2, 3, 5, 7, 97, 7919, 2**61 - 1, 2**127 - 1])
def test_primes_detected(n):
    assert is_probably_prime(n)


@pytest.mark.parametrize("n", [-7, 0, 1, 4, 9, 91, 561, 1105, 2**61 + 1, (2**61 - 1) * (2**31 - 1)])
def test_composites_rejected(n):
    # 561 and 1105 are Carmichael numbers
    assert not is_probably_prime(n)


def test_check_callback_runs_once_per_round():
    calls = []
    assert is_probably_prime(2**61 - 1, rounds=5, check=lambda: calls.append(1))
    assert len(calls) == 5
