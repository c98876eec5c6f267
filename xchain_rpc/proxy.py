"""
Origin-side call registry.

``RPCProxy`` stages outbound calls, publishes call requests, and finalizes a
call once it is shown a proof that the target chain's ``RPCServer`` executed
it.

Lifecycle of a call id::

    NON_EXISTENT --callContract--> PREPARED --requestCall--> REQUESTED
    REQUESTED --acknowledgeCall--> ACKNOWLEDGED

The pending record is deleted by ``requestCall``; acknowledgements are kept
in a separate set.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from eth_utils import to_checksum_address

from .abi import (
    ABIError,
    ACKNOWLEDGE_CALL,
    CALL_ACKNOWLEDGED,
    CALL_CONTRACT,
    CALL_PREPARED,
    CALL_REQUESTED,
    EXECUTE_CALL,
    NEXT_CALL_ID,
    REQUEST_CALL,
    callback_signature,
    encode_call,
    function_selector,
)
from .codec import Receipt
from .exceptions import (
    FailedCallExecution,
    IllegalRpcServer,
    IncorrectProxy,
    MultipleAcknowledgement,
    NonExistentCall,
    NonExistentCallExecution,
)
from .gas import DEFAULT_CALLBACK_GAS, G_CALL, G_SSTORE_RESET, G_SSTORE_SET, ResourceAccountant
from .models import CallExecuted, CallProof, CallStatus, PendingCall, RequestedCall
from .relay import HeaderRelay
from .runtime import CallContext, Contract, ContractInvoker, external
from .verification import decode_proof, verify_inclusion

# Configure logger
logger = logging.getLogger(__name__)


@dataclass
class ProxyState:
    """
    Mutable state of a proxy.

    Attributes:
        next_call_id: Id assigned to the next prepared call; starts at 0 and is
            incremented after use
        pending: Prepared calls awaiting ``requestCall``
        requested: Callback routing of requested calls
        acknowledged: Call ids whose execution has been acknowledged
    """
    next_call_id: int = 0
    pending: Dict[int, PendingCall] = field(default_factory=dict)
    requested: Dict[int, RequestedCall] = field(default_factory=dict)
    acknowledged: Set[int] = field(default_factory=set)


class RPCProxy(Contract):
    """
    Call registry deployed on the origin chain.

    Args:
        chain: Hosting environment
        address: Address of this proxy
        rpc_server: Address of the target chain's server this proxy trusts
        relay: Relay tracking the target chain's headers
        confirmations: Blocks required on top of an execution's header
        accountant: Budget policy for callbacks
    """

    def __init__(
        self,
        chain: ContractInvoker,
        address: str,
        rpc_server: str,
        relay: HeaderRelay,
        confirmations: int = 0,
        accountant: Optional[ResourceAccountant] = None,
    ):
        super().__init__(chain, address)
        self.rpc_server = to_checksum_address(rpc_server)
        self.relay = relay
        self.confirmations = confirmations
        self.accountant = accountant or ResourceAccountant(DEFAULT_CALLBACK_GAS)
        self.state = ProxyState()

    # ---------------- Views ----------------

    @property
    def next_call_id(self) -> int:
        return self.state.next_call_id

    def get_pending_call(self, call_id: int) -> Optional[PendingCall]:
        return self.state.pending.get(call_id)

    def is_acknowledged(self, call_id: int) -> bool:
        return call_id in self.state.acknowledged

    def call_status(self, call_id: int) -> CallStatus:
        if call_id in self.state.acknowledged:
            return CallStatus.ACKNOWLEDGED
        if call_id in self.state.requested:
            return CallStatus.REQUESTED
        if call_id in self.state.pending:
            return CallStatus.PREPARED
        return CallStatus.NON_EXISTENT

    @external(NEXT_CALL_ID, returns=("uint256",))
    def get_next_call_id(self, ctx: CallContext) -> int:
        return self.state.next_call_id

    # ---------------- Protocol ----------------

    @external(CALL_CONTRACT, returns=("uint256",))
    def call_contract(
        self,
        ctx: CallContext,
        contract_address: str,
        dapp_specific_id: bytes,
        call_data: bytes,
        callback: str,
    ) -> int:
        """
        Stage a call of ``contract_address`` on the target chain.

        Args:
            ctx: Call context; the sender becomes the call's caller
            contract_address: Contract to call on the target chain
            dapp_specific_id: Opaque id handed back to the callback
            call_data: ABI calldata for the remote contract
            callback: Name of the caller's ``(bytes,bool,bytes)`` callback

        Returns:
            The new call id
        """
        call_id = self.state.next_call_id
        self.state.next_call_id = call_id + 1
        self.state.pending[call_id] = PendingCall(
            call_id=call_id,
            caller=ctx.sender,
            contract_address=contract_address,
            dapp_specific_id=dapp_specific_id,
            call_data=call_data,
            callback=callback,
        )
        ctx.meter.debit(G_SSTORE_RESET + G_SSTORE_SET)
        ctx.emit(CALL_PREPARED, call_id)
        logger.info(f"Prepared call {call_id} from {ctx.sender} to {contract_address}")
        return call_id

    @external(REQUEST_CALL)
    def request_call(self, ctx: CallContext, call_id: int) -> None:
        """
        Publish a prepared call so it can be proven to the target chain.

        Raises:
            NonExistentCall: If ``call_id`` is not pending, including when it
                was already requested
        """
        pending = self.state.pending.get(call_id)
        if pending is None:
            if call_id in self.state.requested:
                logger.debug(f"Call {call_id} was already requested")
            raise NonExistentCall()

        del self.state.pending[call_id]
        self.state.requested[call_id] = RequestedCall(
            call_id=call_id,
            caller=pending.caller,
            dapp_specific_id=pending.dapp_specific_id,
            callback=pending.callback,
        )
        ctx.meter.debit(G_SSTORE_SET)
        ctx.emit(
            CALL_REQUESTED,
            call_id,
            pending.caller,
            self.rpc_server,
            pending.contract_address,
            pending.call_data,
        )
        logger.info(f"Requested call {call_id} on server {self.rpc_server}")

    @external(ACKNOWLEDGE_CALL, returns=("bool",))
    def acknowledge_call(self, ctx: CallContext, proof_data: Any) -> bool:
        """
        Finalize a call from a proof of its execution on the target chain.

        Args:
            ctx: Call context
            proof_data: Proof of the server's ``executeCall`` transaction

        Returns:
            Success flag of the remote execution

        Raises:
            CodecError: If the proof's encodings are malformed
            NonExistentCallExecution: If the execution cannot be proven
            FailedCallExecution: If the execution transaction reverted
            IncorrectProxy: If the execution was for another proxy
            IllegalRpcServer: If another server performed the execution
            MultipleAcknowledgement: If the call was already acknowledged
            NonExistentCall: If the call was never requested here
            InsufficientResources: If the callback budget cannot be met
        """
        proof = CallProof.parse(proof_data)
        ctx.meter.debit(self.accountant.proof_cost(proof))
        decoded = decode_proof(proof)

        inclusion = verify_inclusion(proof, decoded, self.relay, self.confirmations)
        if not inclusion.included:
            raise NonExistentCallExecution()

        tx = decoded.transaction
        if tx.data[:4] != function_selector(EXECUTE_CALL) or tx.recipient is None:
            logger.debug("Proven transaction is not an executeCall")
            raise NonExistentCallExecution()
        if not decoded.receipt.succeeded:
            raise FailedCallExecution()

        execution = self._find_execution(decoded.receipt, tx.recipient)
        if execution is None:
            logger.debug(f"No CallExecuted event from {tx.recipient} in receipt")
            raise NonExistentCallExecution()
        if execution.proxy_address != self.address:
            raise IncorrectProxy()
        if tx.recipient != self.rpc_server:
            raise IllegalRpcServer()

        call_id = execution.call_id
        if call_id in self.state.acknowledged:
            raise MultipleAcknowledgement()
        requested = self.state.requested.get(call_id)
        if requested is None:
            raise NonExistentCall()

        self.accountant.ensure_budget(ctx.meter)
        self.state.acknowledged.add(call_id)

        self._deliver(ctx, requested, execution)
        ctx.meter.debit(G_SSTORE_SET)
        ctx.emit(CALL_ACKNOWLEDGED, call_id, execution.success)
        logger.info(f"Acknowledged call {call_id} (remote success: {execution.success})")
        return execution.success

    def _deliver(self, ctx: CallContext, requested: RequestedCall, execution: CallExecuted) -> None:
        try:
            payload = encode_call(
                callback_signature(requested.callback),
                [requested.dapp_specific_id, execution.success, execution.returndata],
            )
        except ABIError as e:
            logger.warning(f"Callback '{requested.callback}' of call {requested.call_id} is not callable: {e}")
            return

        ctx.meter.debit(G_CALL)
        outcome = ctx.call(requested.caller, payload, self.accountant.forwardable(ctx.meter))
        if not outcome.success:
            logger.warning(
                f"Callback {requested.callback} on {requested.caller} for call "
                f"{requested.call_id} failed: {outcome.revert_reason or outcome.error}"
            )

    @staticmethod
    def _find_execution(receipt: Receipt, server: str) -> Optional[CallExecuted]:
        for log in receipt.logs:
            if log.emitter != server or not CallExecuted.EVENT.matches(log.topics):
                continue
            try:
                return CallExecuted.from_log(log)
            except ABIError as e:
                logger.debug(f"Malformed CallExecuted event: {e}")
        return None
