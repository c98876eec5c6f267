"""
Target-side execution registry.

``RPCServer`` executes call requests proven to have been published by a
registered ``RPCProxy`` and records every executed request so it runs at most
once.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from .abi import ABIError, CALL_EXECUTED, EXECUTE_CALL, REQUEST_CALL, function_selector
from .codec import Receipt
from .exceptions import (
    FailedCallRequest,
    IllegalProxyAddress,
    MultipleExecution,
    NonExistentCallRequest,
)
from .gas import DEFAULT_CALL_GAS, G_CALL, G_SSTORE_SET, ResourceAccountant
from .models import CallProof, CallRequested
from .relay import HeaderRelay
from .runtime import CallContext, Contract, ContractInvoker, external
from .verification import decode_proof, verify_inclusion

# Configure logger
logger = logging.getLogger(__name__)


def derive_request_id(proxy: str, call_id: int, chain_id: Optional[int] = None) -> bytes:
    """
    Identifier of a call request: keccak256 of ``abi(proxy, callId, chainId)``.

    Args:
        proxy: Address of the requesting proxy
        call_id: Call id assigned by the proxy
        chain_id: Chain id of the request transaction, 0 if it has none
    """
    return keccak(encode(["address", "uint256", "uint256"], [proxy, call_id, chain_id or 0]))


@dataclass(frozen=True)
class ProxyRegistration:
    proxy: str
    relay: HeaderRelay
    confirmations: int = 0


@dataclass(frozen=True)
class ExecutionEntry:
    proxy: str
    call_id: int
    chain_id: int
    success: bool


@dataclass
class ServerState:
    executed: Dict[bytes, ExecutionEntry] = field(default_factory=dict)


class RPCServer(Contract):
    """
    Execution registry deployed on the target chain.

    Args:
        chain: Hosting environment
        address: Address of this server
        accountant: Budget policy for remote calls
    """

    def __init__(self, chain: ContractInvoker, address: str, accountant: Optional[ResourceAccountant] = None):
        super().__init__(chain, address)
        self.accountant = accountant or ResourceAccountant(DEFAULT_CALL_GAS)
        self.state = ServerState()
        # Administrative; not part of the protocol's rollback-able state
        self._registrations: Dict[str, ProxyRegistration] = {}

    def register_proxy(self, proxy: str, relay: HeaderRelay, confirmations: int = 0) -> ProxyRegistration:
        """
        Trust call requests from ``proxy`` proven through ``relay``.

        Args:
            proxy: Address of the origin chain proxy
            relay: Relay tracking the origin chain's headers
            confirmations: Blocks required on top of a request's header

        Returns:
            The stored registration
        """
        registration = ProxyRegistration(to_checksum_address(proxy), relay, confirmations)
        self._registrations[registration.proxy] = registration
        logger.info(f"Registered proxy {registration.proxy} on server {self.address}")
        return registration

    def get_registration(self, proxy: str) -> Optional[ProxyRegistration]:
        return self._registrations.get(to_checksum_address(proxy))

    def is_executed(self, proxy: str, call_id: int, chain_id: Optional[int] = None) -> bool:
        return derive_request_id(to_checksum_address(proxy), call_id, chain_id) in self.state.executed

    @external(EXECUTE_CALL, returns=("bool",))
    def execute_call(self, ctx: CallContext, proof_data: Any) -> bool:
        """
        Execute a call request from a proof of the proxy's ``requestCall``.

        Returns:
            Whether the remote contract call succeeded

        Raises:
            CodecError: If the proof's encodings are malformed
            IllegalProxyAddress: If the request was not sent to a registered proxy
            NonExistentCallRequest: If the request cannot be proven
            FailedCallRequest: If the request transaction reverted
            MultipleExecution: If the request was already executed
            InsufficientResources: If the remote call budget cannot be met
        """
        proof = CallProof.parse(proof_data)
        ctx.meter.debit(self.accountant.proof_cost(proof))
        decoded = decode_proof(proof)

        tx = decoded.transaction
        registration = self._registrations.get(tx.recipient) if tx.recipient else None
        if registration is None:
            logger.debug(f"Request transaction sent to unregistered address {tx.recipient}")
            raise IllegalProxyAddress()
        proxy = registration.proxy

        inclusion = verify_inclusion(proof, decoded, registration.relay, registration.confirmations)
        if not inclusion.included:
            raise NonExistentCallRequest()
        if tx.data[:4] != function_selector(REQUEST_CALL):
            logger.debug("Proven transaction is not a requestCall")
            raise NonExistentCallRequest()
        if not decoded.receipt.succeeded:
            raise FailedCallRequest()

        request = self._find_request(decoded.receipt, proxy)
        if request is None:
            logger.debug(f"No CallRequested event from {proxy} in receipt")
            raise NonExistentCallRequest()

        chain_id = tx.chain_id or 0
        request_id = derive_request_id(proxy, request.call_id, chain_id)
        if request_id in self.state.executed:
            raise MultipleExecution()

        self.accountant.ensure_budget(ctx.meter)

        # Recorded before the call so a re-entrant execution is rejected
        self.state.executed[request_id] = ExecutionEntry(proxy, request.call_id, chain_id, False)

        ctx.meter.debit(G_CALL)
        outcome = ctx.call(request.remote_contract, request.call_data, self.accountant.forwardable(ctx.meter))
        if not outcome.success:
            logger.info(f"Remote call {request.call_id} to {request.remote_contract} failed: "
                        f"{outcome.revert_reason or outcome.error}")

        self.state.executed[request_id] = ExecutionEntry(proxy, request.call_id, chain_id, outcome.success)
        ctx.meter.debit(G_SSTORE_SET)
        ctx.emit(CALL_EXECUTED, request.call_id, proxy, outcome.success, outcome.returndata)
        logger.info(f"Executed call {request.call_id} from proxy {proxy} (success: {outcome.success})")
        return outcome.success

    @staticmethod
    def _find_request(receipt: Receipt, proxy: str) -> Optional[CallRequested]:
        for log in receipt.logs:
            if log.emitter != proxy or not CallRequested.EVENT.matches(log.topics):
                continue
            try:
                return CallRequested.from_log(log)
            except ABIError as e:
                logger.debug(f"Malformed CallRequested event: {e}")
        return None
