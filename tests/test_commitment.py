"""
Tests for order commitments: determinism, binding, format checks.
"""

from decimal import Decimal

import pytest

from darkpool.constants import ZERO_COMMITMENT
from darkpool.crypto.commitment import (
    commitment_for,
    compute_commitment,
    generate_secret_nonce,
    is_valid_commitment_format,
    secret_nonce_bytes,
    to_base_units,
    verify_commitment,
)
from darkpool.exceptions import InputRejected
from darkpool.exchange.orders import OrderDetails

TRADER = "0x" + "a1" * 20
TOKEN_A = "0x" + "11" * 20
TOKEN_B = "0x" + "22" * 20
NONCE = bytes(range(32))


def _fields(**overrides):
    fields = dict(
        trader=TRADER,
        token_in=TOKEN_A,
        token_out=TOKEN_B,
        amount_in=Decimal("1"),
        amount_out=Decimal("2"),
        is_buy=True,
        secret_nonce=NONCE,
    )
    fields.update(overrides)
    return fields


class TestBaseUnits:

    def test_whole_and_fractional(self):
        assert to_base_units(Decimal("1")) == 10 ** 18
        assert to_base_units("0.5") == 5 * 10 ** 17
        assert to_base_units(3) == 3 * 10 ** 18

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            to_base_units(1.5)

    def test_trailing_zeros_past_18_places_accepted(self):
        assert to_base_units("1.50000000000000000000") == 15 * 10 ** 17

    @pytest.mark.parametrize("amount", ["1.0000000000000000009", Decimal("0.0000000000000000001")])
    def test_sub_base_unit_precision_rejected(self, amount):
        with pytest.raises(InputRejected, match="decimal places"):
            to_base_units(amount)

    def test_precision_beyond_context_rejected(self):
        with pytest.raises(InputRejected):
            to_base_units("1.0000000000000000000000000001")


class TestSecretNonce:

    def test_generate_is_32_random_bytes(self):
        a = generate_secret_nonce()
        b = generate_secret_nonce()
        assert len(a) == 32
        assert a != b

    def test_hex_input(self):
        assert secret_nonce_bytes("0x" + NONCE.hex()) == NONCE
        assert secret_nonce_bytes(NONCE.hex()) == NONCE

    def test_wrong_size(self):
        with pytest.raises(ValueError):
            secret_nonce_bytes(b"\x00" * 31)

    @pytest.mark.parametrize("value", [[0] * 32, {str(i): 0 for i in range(32)}, 7])
    def test_non_bytes_rejected(self, value):
        with pytest.raises(TypeError):
            secret_nonce_bytes(value)


class TestCommitmentDeterminism:

    def test_same_fields_same_commitment(self):
        assert compute_commitment(**_fields()) == compute_commitment(**_fields())

    def test_format(self):
        c = compute_commitment(**_fields())
        assert c.startswith("0x")
        assert len(c) == 66
        assert c == c.lower()
        assert is_valid_commitment_format(c)

    def test_amount_representation_does_not_matter(self):
        a = compute_commitment(**_fields(amount_in=Decimal("1")))
        b = compute_commitment(**_fields(amount_in="1.000"))
        c = compute_commitment(**_fields(amount_in=1))
        assert a == b == c

    def test_address_case_does_not_matter(self):
        upper = "0x" + "A1" * 20
        assert compute_commitment(**_fields(trader=upper)) == compute_commitment(**_fields())

    @pytest.mark.parametrize("field,value", [
        ("trader", "0x" + "a2" * 20),
        ("token_in", "0x" + "33" * 20),
        ("token_out", "0x" + "33" * 20),
        ("amount_in", Decimal("1.000000000000000001")),
        ("amount_out", Decimal("2.5")),
        ("is_buy", False),
        ("secret_nonce", bytes(32)),
    ])
    def test_single_field_change_changes_commitment(self, field, value):
        assert compute_commitment(**_fields(**{field: value})) != compute_commitment(**_fields())

    def test_order_sensitive(self):
        swapped = compute_commitment(**_fields(token_in=TOKEN_B, token_out=TOKEN_A))
        assert swapped != compute_commitment(**_fields())


class TestCommitmentVerify:

    def _details(self, **overrides):
        return OrderDetails(**_fields(**overrides))

    def test_verify_matches(self):
        details = self._details()
        assert verify_commitment(commitment_for(details), details) is True

    def test_verify_case_insensitive(self):
        details = self._details()
        c = commitment_for(details)
        assert verify_commitment("0x" + c[2:].upper(), details) is True

    def test_verify_refuses_amount_finer_than_base_unit(self):
        commitment = commitment_for(self._details())
        assert verify_commitment(commitment, self._details(amount_in=Decimal("1.0000000000000000009"))) is False

    def test_verify_mismatch(self):
        details = self._details()
        c = commitment_for(details)
        assert verify_commitment(c, self._details(amount_out=Decimal("3"))) is False

    def test_verify_malformed_fields_is_mismatch(self):
        c = commitment_for(self._details())
        assert verify_commitment(c, self._details(trader="garbage")) is False
        assert verify_commitment(c, self._details(amount_in=Decimal("-1"))) is False

    def test_verify_non_string(self):
        assert verify_commitment(None, self._details()) is False


class TestCommitmentFormat:

    def test_zero_commitment_rejected(self):
        assert not is_valid_commitment_format(ZERO_COMMITMENT)

    @pytest.mark.parametrize("value", [
        "",
        "0x",
        "0x1234",
        "ab" * 32,
        "0x" + "zz" * 32,
        "0x" + "ab" * 33,
        None,
        123,
    ])
    def test_malformed(self, value):
        assert not is_valid_commitment_format(value)

    def test_mixed_case_accepted(self):
        assert is_valid_commitment_format("0x" + "aB" * 32)
