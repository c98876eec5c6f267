"""
Contract runtime.

Registries and application contracts are Python classes whose public entry
points are declared with ``@external``. Calls arrive as ABI calldata and are
dispatched on the 4-byte selector, so the transactions carrying them are the
same bytes a wallet would sign.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from eth_utils import to_canonical_address, to_checksum_address

from .abi import ABIError, EventSpec, decode_call, decode_revert, encode_args, function_selector
from .codec import Log
from .exceptions import Revert, RPCError
from .gas import GasMeter, log_cost

# Configure logger
logger = logging.getLogger(__name__)


def external(signature: str, returns: Sequence[str] = ()) -> Callable:
    """
    Mark a contract method as callable through ABI calldata.

    The decorated method receives the ``CallContext`` followed by the decoded
    arguments.

    Args:
        signature: Canonical function signature, e.g. ``requestCall(uint256)``
        returns: ABI types of the return value
    """
    def decorator(fn: Callable) -> Callable:
        fn.__external__ = (signature, tuple(returns))
        return fn
    return decorator


@dataclass
class CallOutcome:
    """
    Result of a (possibly nested) contract invocation.

    A failed outcome never raises; ``error`` keeps the exception for
    diagnostics and ``returndata`` carries the ABI encoded revert reason.
    """
    success: bool
    returndata: bytes = b""
    gas_used: int = 0
    error: Optional[BaseException] = None
    logs: List[Log] = field(default_factory=list)
    value: Any = None

    @property
    def revert_reason(self) -> str:
        if isinstance(self.error, Revert):
            return self.error.reason
        if isinstance(self.error, RPCError):
            return self.error.message
        return decode_revert(self.returndata)


class ContractInvoker(Protocol):
    """Capability to call an arbitrary address with arbitrary calldata."""

    def invoke(self, sender: str, to: str, payload: bytes, gas: int) -> CallOutcome:
        ...


@dataclass
class CallContext:
    """
    Per-call execution context handed to external methods.

    Attributes:
        invoker: Environment used for nested calls
        sender: Immediate caller (checksum address)
        address: Address of the executing contract
        meter: Gas meter of this call frame
        logs: Logs emitted in this frame and by successful nested calls
    """
    invoker: ContractInvoker
    sender: str
    address: str
    meter: GasMeter
    logs: List[Log] = field(default_factory=list)

    def emit(self, event: EventSpec, *values: Any) -> Log:
        topics, data = event.encode(values)
        self.meter.debit(log_cost(len(topics), data))
        log = Log(address=to_canonical_address(self.address), topics=topics, data=data)
        self.logs.append(log)
        return log

    def call(self, to: str, payload: bytes, gas: int) -> CallOutcome:
        """
        Invoke another address from this frame.

        The gas actually used by the callee is charged to this frame; logs of
        a successful callee are kept, those of a failed one are discarded.
        """
        self.meter.ensure_available(gas)
        outcome = self.invoker.invoke(self.address, to, payload, gas)
        self.meter.debit(outcome.gas_used)
        if outcome.success:
            self.logs.extend(outcome.logs)
        return outcome


class Contract:
    """
    Base class for contracts hosted by an execution environment.

    Subclasses keep all mutable protocol state in ``self.state`` so the
    environment can snapshot and restore it around failing calls.
    """

    _externals: Dict[bytes, Tuple[str, Tuple[str, ...], str]] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        table: Dict[bytes, Tuple[str, Tuple[str, ...], str]] = {}
        for klass in reversed(cls.__mro__):
            for name, attr in vars(klass).items():
                spec = getattr(attr, "__external__", None)
                if spec is not None:
                    signature, returns = spec
                    table[function_selector(signature)] = (signature, returns, name)
        cls._externals = table

    def __init__(self, chain: ContractInvoker, address: str):
        self.chain = chain
        self.address = to_checksum_address(address)
        self.state: Any = None

    @classmethod
    def signatures(cls) -> List[str]:
        return [signature for signature, _, _ in cls._externals.values()]

    def dispatch(self, ctx: CallContext, payload: bytes) -> Tuple[Any, bytes]:
        """
        Decode ``payload`` and run the matching external method.

        Returns:
            Tuple of (python return value, ABI encoded return data)

        Raises:
            Revert: If the selector is unknown or the arguments are malformed
        """
        if len(payload) < 4:
            raise Revert("missing function selector")
        entry = self._externals.get(bytes(payload[:4]))
        if entry is None:
            raise Revert(f"unknown function selector 0x{payload[:4].hex()}")
        signature, returns, attr = entry
        try:
            args = decode_call(signature, payload)
        except ABIError as e:
            raise Revert(f"invalid calldata for {signature}") from e

        value = getattr(self, attr)(ctx, *args)
        if not returns:
            return value, b""
        values = [value] if len(returns) == 1 else list(value)
        return value, encode_args(returns, values)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"
