"""
Tests for gas metering and forwarding budgets.
"""
import pytest
from hypothesis import given, settings, strategies as st

from xchain_rpc.exceptions import ErrorCode, InsufficientResources, OutOfGas
from xchain_rpc.gas import (
    DEFAULT_CALLBACK_GAS,
    DEFAULT_CALL_GAS,
    DEFAULT_POST_CALL_GAS,
    G_CALL,
    GasMeter,
    ResourceAccountant,
    intrinsic_gas,
    keccak_cost,
    log_cost,
)
from xchain_rpc.models import CallProof


class TestCosts:
    """Cost functions."""

    def test_intrinsic_gas(self):
        assert intrinsic_gas(b"") == 21_000
        assert intrinsic_gas(b"\x00\x01") == 21_000 + 4 + 16

    def test_keccak_cost_rounds_up_words(self):
        assert keccak_cost(b"") == 30
        assert keccak_cost(b"\x00" * 32) == 36
        assert keccak_cost(b"\x00" * 33) == 42

    def test_log_cost(self):
        assert log_cost(1, b"\x00" * 10) == 375 + 375 + 80


class TestGasMeter:
    """GasMeter behaviour."""

    def test_debit(self):
        meter = GasMeter(1000)
        meter.debit(400)

        assert meter.used == 400
        assert meter.remaining == 600
        assert meter.limit == 1000

    def test_debit_exact_limit(self):
        meter = GasMeter(100)
        meter.debit(100)
        assert meter.remaining == 0

    def test_overdraft_leaves_meter_unchanged(self):
        meter = GasMeter(100, used=40)
        with pytest.raises(OutOfGas):
            meter.debit(61)

        assert meter.used == 40

    @pytest.mark.parametrize("amount", [-1, 1.5, "10"])
    def test_invalid_debit(self, amount):
        with pytest.raises(ValueError):
            GasMeter(100).debit(amount)

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            GasMeter(-1)
        with pytest.raises(ValueError):
            GasMeter(10, used=-1)
        with pytest.raises(OutOfGas):
            GasMeter(10, used=11)

    def test_ensure_available(self):
        meter = GasMeter(100, used=50)
        meter.ensure_available(50)
        with pytest.raises(OutOfGas):
            meter.ensure_available(51)


@settings(max_examples=100)
@given(limit=st.integers(0, 10**7), debits=st.lists(st.integers(0, 10**6), max_size=20))
def test_meter_never_exceeds_limit(limit, debits):
    """used stays within the limit whatever is debited."""
    meter = GasMeter(limit)
    for amount in debits:
        before = meter.used
        try:
            meter.debit(amount)
        except OutOfGas:
            assert meter.used == before
        assert meter.used + meter.remaining == limit


class TestResourceAccountant:
    """Budget checks."""

    def test_defaults(self):
        accountant = ResourceAccountant()
        assert accountant.forward_gas == DEFAULT_CALL_GAS
        assert accountant.post_call_gas == DEFAULT_POST_CALL_GAS

    def test_minimum_budget(self):
        accountant = ResourceAccountant(DEFAULT_CALLBACK_GAS)
        # ceil(100000 * 64 / 63) == 101588
        assert accountant.minimum_budget() == G_CALL + 50_000 + 101_588

    def test_ensure_budget(self):
        accountant = ResourceAccountant(63_000, post_call_gas=1_000)
        required = G_CALL + 1_000 + 64_000

        accountant.ensure_budget(GasMeter(required))
        with pytest.raises(InsufficientResources) as exc_info:
            accountant.ensure_budget(GasMeter(required - 1))

        error = exc_info.value
        assert error.required == required
        assert error.available == required - 1
        assert error.code == ErrorCode.INSUFFICIENT_RESOURCES

    def test_negative_budgets(self):
        with pytest.raises(ValueError):
            ResourceAccountant(-1)

    def test_proof_cost(self):
        proof = CallProof(
            header=b"\x01" * 40,
            encoded_tx=b"",
            encoded_receipt=b"",
            tx_index_path=b"\x80",
            tx_proof_nodes=[b"\x02" * 32],
            receipt_proof_nodes=[b"\x03" * 64, b"\x04"],
        )
        assert ResourceAccountant().proof_cost(proof) == 42 + 36 + 42 + 36


@settings(max_examples=100)
@given(
    forward_gas=st.integers(0, 2_000_000),
    post_call_gas=st.integers(0, 200_000),
    surplus=st.integers(0, 5_000_000),
)
def test_budget_guarantees_forward_gas(forward_gas, post_call_gas, surplus):
    """Passing the budget check always leaves forward_gas for the callee."""
    accountant = ResourceAccountant(forward_gas, post_call_gas)
    meter = GasMeter(accountant.minimum_budget() + surplus)
    accountant.ensure_budget(meter)

    meter.debit(G_CALL)
    forwarded = accountant.forwardable(meter)

    assert forwarded >= forward_gas
    assert meter.remaining - forwarded >= post_call_gas
