"""
Tests for executing call requests on the RPCServer.
"""
from dataclasses import replace

from xchain_rpc.abi import EXECUTE_CALL, decode_revert, encode_args, encode_call
from xchain_rpc.codec import Receipt, decode_header, decode_receipt, encode_header, encode_receipt
from xchain_rpc.exceptions import (
    CodecError,
    ErrorCode,
    FailedCallRequest,
    IllegalProxyAddress,
    InsufficientResources,
    MultipleExecution,
    NonExistentCallRequest,
)
from xchain_rpc.models import CallExecuted
from xchain_rpc.proofs import build_call_proof
from xchain_rpc.relay import ChainRelay, MockRelay
from xchain_rpc.server import derive_request_id

from tests.test_helpers.contracts import EXHAUST_GAS, FAILING_METHOD
from tests.test_helpers.deployment import ORIGIN_CHAIN_ID


def _execute_proof(deployment, proof, gas=3_000_000):
    return deployment.target.transact(
        deployment.executor, deployment.server.address, EXECUTE_CALL, [proof.to_abi()], gas=gas
    )


class TestExecuteCall:
    """Successful executions."""

    def test_executes_remote_call(self, deployment, requested_call):
        call_id, request = requested_call
        result = deployment.execute(request).raise_for_status()

        assert result.return_value is True
        assert deployment.remote.state.calls == [(2345675643, "Hello!%", deployment.server.address)]

    def test_emits_call_executed(self, deployment, requested_call):
        call_id, request = requested_call
        result = deployment.execute(request)
        event = result.events(CallExecuted)[0]

        assert event.call_id == call_id
        assert event.proxy_address == deployment.proxy.address
        assert event.success is True
        assert event.returndata == encode_args(["uint256"], [2 * 2345675643])
        assert event.emitter == deployment.server.address

    def test_records_execution(self, deployment, requested_call):
        call_id, request = requested_call
        assert not deployment.server.is_executed(deployment.proxy.address, call_id, ORIGIN_CHAIN_ID)

        deployment.execute(request)
        assert deployment.server.is_executed(deployment.proxy.address, call_id, ORIGIN_CHAIN_ID)

    def test_remote_revert_is_reported(self, deployment):
        deployment.prepare_direct(call_data=encode_call(FAILING_METHOD))
        request = deployment.request(0).raise_for_status()
        result = deployment.execute(request).raise_for_status()

        event = result.events(CallExecuted)[0]
        assert result.return_value is False
        assert event.success is False
        assert decode_revert(event.returndata) == "remote failure"
        assert deployment.remote.state.calls == []
        assert deployment.server.is_executed(deployment.proxy.address, 0, ORIGIN_CHAIN_ID)

    def test_remote_out_of_gas_is_reported(self, deployment):
        deployment.prepare_direct(call_data=encode_call(EXHAUST_GAS))
        request = deployment.request(0).raise_for_status()
        result = deployment.execute(request).raise_for_status()

        assert result.events(CallExecuted)[0].success is False


class TestExecuteCallFailures:
    """Rejected executions."""

    def test_multiple_execution(self, deployment, requested_call):
        _, request = requested_call
        deployment.execute(request).raise_for_status()
        second = deployment.execute(request)

        assert isinstance(second.error, MultipleExecution)
        assert len(deployment.remote.state.calls) == 1

    def test_unregistered_proxy(self, deployment):
        rogue = deployment.deploy_proxy(register=False)
        deployment.prepare_direct(proxy=rogue)
        request = deployment.request(0, proxy=rogue).raise_for_status()
        result = deployment.execute(request)

        assert isinstance(result.error, IllegalProxyAddress)
        assert result.error.message == "illegal proxy address"
        assert deployment.remote.state.calls == []

    def test_relay_rejects_transactions_root(self, deployment, requested_call):
        _, request = requested_call
        relay = MockRelay()
        relay.set_tx_verification_result(False)
        deployment.server.register_proxy(deployment.proxy.address, relay)

        result = deployment.execute(request)
        assert isinstance(result.error, NonExistentCallRequest)
        assert result.error.code == ErrorCode.NON_EXISTENT_CALL_REQUEST

    def test_relay_rejects_header(self, deployment, requested_call):
        _, request = requested_call
        deployment.server.register_proxy(deployment.proxy.address, MockRelay(header_valid=False))

        assert isinstance(deployment.execute(request).error, NonExistentCallRequest)

    def test_mock_relay_still_checks_tries(self, deployment, requested_call):
        """A permissive relay does not make a forged receipt provable."""
        _, request = requested_call
        deployment.server.register_proxy(deployment.proxy.address, MockRelay())
        proof = build_call_proof(deployment.origin, request.tx_hash)
        receipt = decode_receipt(proof.encoded_receipt)
        inflated = Receipt(
            status=receipt.status,
            cumulative_gas_used=receipt.cumulative_gas_used + 1,
            logs_bloom=receipt.logs_bloom,
            logs=receipt.logs,
        )
        forged = proof.model_copy(update={"encoded_receipt": encode_receipt(inflated)})

        assert isinstance(_execute_proof(deployment, forged).error, NonExistentCallRequest)

    def test_unknown_header(self, deployment, requested_call):
        _, request = requested_call
        proof = build_call_proof(deployment.origin, request.tx_hash)
        altered = encode_header(replace(decode_header(proof.header), extra_data=b"forged"))
        forged = proof.model_copy(update={"header": altered})

        assert isinstance(_execute_proof(deployment, forged).error, NonExistentCallRequest)

    def test_swapped_proof_nodes(self, deployment, requested_call):
        _, request = requested_call
        proof = build_call_proof(deployment.origin, request.tx_hash)
        forged = proof.model_copy(update={"tx_proof_nodes": proof.receipt_proof_nodes})

        assert isinstance(_execute_proof(deployment, forged).error, NonExistentCallRequest)

    def test_not_a_request_transaction(self, deployment):
        """A proven callContract transaction is not a call request."""
        prepared = deployment.prepare_direct().raise_for_status()
        result = deployment.execute(prepared)

        assert isinstance(result.error, NonExistentCallRequest)

    def test_failed_request(self, deployment):
        request = deployment.request(999)
        assert not request.succeeded

        result = deployment.execute(request)
        assert isinstance(result.error, FailedCallRequest)
        assert result.error.message == "failed call request"

    def test_malformed_proof(self, deployment):
        garbage = (b"\x01", b"\x02", b"\x03", b"\x80", [], [])
        result = deployment.target.transact(
            deployment.executor, deployment.server.address, EXECUTE_CALL, [garbage]
        )
        assert isinstance(result.error, CodecError)

    def test_insufficient_resources(self, deployment, requested_call):
        call_id, request = requested_call
        result = deployment.execute(request, gas=200_000)

        assert isinstance(result.error, InsufficientResources)
        assert result.error.required == deployment.server.accountant.minimum_budget()
        assert not deployment.server.is_executed(deployment.proxy.address, call_id, ORIGIN_CHAIN_ID)
        assert deployment.remote.state.calls == []

        retry = deployment.execute(request).raise_for_status()
        assert retry.return_value is True

    def test_confirmations(self, deployment, requested_call):
        _, request = requested_call
        deployment.server.register_proxy(deployment.proxy.address, ChainRelay(deployment.origin), confirmations=2)

        assert isinstance(deployment.execute(request).error, NonExistentCallRequest)

        deployment.origin.mine()
        deployment.origin.mine()
        assert deployment.execute(request).succeeded


class TestRequestId:
    """Request identifiers."""

    def test_chain_id_distinguishes_requests(self):
        proxy = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
        assert derive_request_id(proxy, 1, 1) != derive_request_id(proxy, 1, 2)
        assert derive_request_id(proxy, 1, 1) != derive_request_id(proxy, 2, 1)

    def test_missing_chain_id_is_zero(self):
        proxy = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
        assert derive_request_id(proxy, 1) == derive_request_id(proxy, 1, 0)

    def test_registration_lookup(self, deployment):
        registration = deployment.server.get_registration(deployment.proxy.address.lower())

        assert registration.proxy == deployment.proxy.address
        assert deployment.server.get_registration("0x" + "00" * 20) is None
        assert registration.confirmations == 0
