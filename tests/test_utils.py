from decimal import Decimal

import pytest

from crash_rocket.utils import (
    b64url_to_bytes,
    clamp,
    format_multiplier,
    generate_seed,
    parse_money_like,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("10", Decimal("10")),
        (" 2,5 ", Decimal("2.5")),
        (3.25, Decimal("3.25")),
        (7, Decimal("7")),
        ("", None),
        ("   ", None),
        (None, None),
        ("ten", None),
        ("Infinity", None),
        ("NaN", None),
    ],
)
def test_parse_money_like(raw, expected):
    assert parse_money_like(raw) == expected


def test_format_multiplier():
    assert format_multiplier(2) == "2.00×"
    assert format_multiplier(Decimal("3.5")) == "3.50×"
    assert format_multiplier("bad") == "1.00×"


@pytest.mark.parametrize(
    "mult, expected",
    [(2.479, "2.47×"), (1.999, "1.99×"), (Decimal("9.9999"), "9.99×"), (1.01, "1.01×")],
)
def test_format_multiplier_never_rounds_up(mult, expected):
    assert format_multiplier(mult) == expected


def test_b64url_restores_padding():
    assert b64url_to_bytes("aGk") == b"hi"
    assert b64url_to_bytes("aGk=") == b"hi"
    assert b64url_to_bytes("-_8") == b"\xfb\xff"


def test_generate_seed_is_hex_of_requested_length():
    seed = generate_seed(16)
    assert len(seed) == 32
    int(seed, 16)
    assert generate_seed() != generate_seed()


def test_clamp():
    assert clamp(0, 1, 5) == 1
    assert clamp(9, 1, 5) == 5
    assert clamp(3, 1, 5) == 3
