from decimal import Decimal

import pytest

from splitledger.utils.money import (
    derive_percentage,
    has_valid_precision,
    is_close,
    parse_amount,
    quantum_for,
    to_decimal,
)

D = Decimal


def test_to_decimal_goes_through_str_for_floats():
    assert to_decimal(0.1) == D("0.1")
    assert to_decimal("12.50") == D("12.50")
    assert to_decimal(7) == D(7)

    with pytest.raises(ValueError):
        to_decimal("twelve")
    with pytest.raises(TypeError):
        to_decimal(True)


def test_precision_and_tolerance():
    assert has_valid_precision(D("10.25"))
    assert has_valid_precision(D("10"))
    assert not has_valid_precision(D("10.255"))
    assert has_valid_precision(D("10"), quantum_for(0))
    assert not has_valid_precision(D("10.5"), quantum_for(0))

    assert is_close(D("10.00"), D("10.009"))
    assert not is_close(D("10.00"), D("10.01"))


def test_derive_percentage():
    assert derive_percentage(D("30.00"), D("90.00")) == D("33.33")
    assert derive_percentage(D("0"), D("0")) == D("0.00")


def test_parse_amount():
    assert parse_amount(" 12,50 ") == D("12.50")
    assert parse_amount("1 200.00") == D("1200.00")

    with pytest.raises(ValueError):
        parse_amount("12.50 EUR")
