"""
Gas metering and forwarding budgets.

Every registry operation runs under a ``GasMeter``. The ``ResourceAccountant``
decides, before any state is touched, whether the remaining gas is enough to
forward the configured budget to a remote contract or callback and still
finish the registry's own bookkeeping.
"""
import logging
from typing import TYPE_CHECKING

from .exceptions import InsufficientResources, OutOfGas

if TYPE_CHECKING:
    from .models import CallProof

# Configure logger
logger = logging.getLogger(__name__)

# Cost schedule
G_TRANSACTION = 21_000
G_TX_DATA_ZERO = 4
G_TX_DATA_NONZERO = 16
G_SSTORE_SET = 20_000
G_SSTORE_RESET = 5_000
G_LOG = 375
G_LOG_TOPIC = 375
G_LOG_DATA = 8
G_KECCAK = 30
G_KECCAK_WORD = 6
G_CALL = 2_600

DEFAULT_CALL_GAS = 200_000
DEFAULT_CALLBACK_GAS = 100_000
DEFAULT_POST_CALL_GAS = 50_000


def intrinsic_gas(data: bytes) -> int:
    """Gas charged for a transaction before any code runs."""
    zeros = data.count(0)
    return G_TRANSACTION + zeros * G_TX_DATA_ZERO + (len(data) - zeros) * G_TX_DATA_NONZERO


def keccak_cost(data: bytes) -> int:
    return G_KECCAK + G_KECCAK_WORD * ((len(data) + 31) // 32)


def log_cost(topics: int, data: bytes) -> int:
    return G_LOG + G_LOG_TOPIC * topics + G_LOG_DATA * len(data)


class GasMeter:
    """
    Deterministic gas counter.

    Args:
        limit: Gas available to the metered operation
        used: Gas already consumed
    """

    __slots__ = ("_limit", "_used")

    def __init__(self, limit: int, used: int = 0):
        if not isinstance(limit, int) or limit < 0:
            raise ValueError(f"gas limit must be a non-negative int, got {limit!r}")
        if not isinstance(used, int) or used < 0:
            raise ValueError(f"gas used must be a non-negative int, got {used!r}")
        if used > limit:
            raise OutOfGas(f"initial gas used {used} exceeds limit {limit}")
        self._limit = limit
        self._used = used

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(0, self._limit - self._used)

    def debit(self, amount: int) -> None:
        """
        Consume ``amount`` gas.

        Raises:
            OutOfGas: If the limit would be exceeded; the meter is left unchanged
        """
        if not isinstance(amount, int) or amount < 0:
            raise ValueError(f"gas debit must be a non-negative int, got {amount!r}")
        if self._used + amount > self._limit:
            raise OutOfGas(f"out of gas: used {self._used} + {amount} > limit {self._limit}")
        self._used += amount

    def ensure_available(self, amount: int) -> None:
        if amount > self.remaining:
            raise OutOfGas(f"need {amount} gas, {self.remaining} remaining")

    def __repr__(self) -> str:
        return f"GasMeter(limit={self._limit}, used={self._used})"


class ResourceAccountant:
    """
    Computes and enforces the minimum budget for a forwarded call.

    A call can forward at most all but one 64th of the gas left at the call
    site, so guaranteeing ``forward_gas`` to the callee requires
    ``ceil(forward_gas * 64 / 63)`` plus the call overhead plus the gas the
    caller still needs afterwards.

    Args:
        forward_gas: Gas the callee must be able to receive
        post_call_gas: Gas reserved for bookkeeping after the call returns
    """

    def __init__(self, forward_gas: int = DEFAULT_CALL_GAS, post_call_gas: int = DEFAULT_POST_CALL_GAS):
        if forward_gas < 0 or post_call_gas < 0:
            raise ValueError("Gas budgets must be non-negative")
        self.forward_gas = forward_gas
        self.post_call_gas = post_call_gas

    def minimum_budget(self) -> int:
        return G_CALL + self.post_call_gas + -(-self.forward_gas * 64 // 63)

    def ensure_budget(self, meter: GasMeter) -> None:
        """
        Raises:
            InsufficientResources: If ``meter`` cannot cover ``minimum_budget()``
        """
        required = self.minimum_budget()
        if meter.remaining < required:
            logger.debug(f"Budget check failed: need {required}, have {meter.remaining}")
            raise InsufficientResources(required, meter.remaining)

    def forwardable(self, meter: GasMeter) -> int:
        """Gas to hand to the callee once the call overhead has been debited."""
        available = max(0, meter.remaining - self.post_call_gas)
        return available - available // 64

    def proof_cost(self, proof: "CallProof") -> int:
        """Hashing cost of checking a proof's header and trie nodes."""
        cost = keccak_cost(proof.header)
        for node in proof.tx_proof_nodes:
            cost += keccak_cost(node)
        for node in proof.receipt_proof_nodes:
            cost += keccak_cost(node)
        return cost

    def __repr__(self) -> str:
        return f"ResourceAccountant(forward_gas={self.forward_gas}, post_call_gas={self.post_call_gas})"
