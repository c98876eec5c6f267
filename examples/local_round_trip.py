#!/usr/bin/env python3
"""
Cross-chain call between two in-process chains.

A Greeter contract lives on the target chain. An application on the origin
chain asks the proxy to call it, a relayer carries the request to the server,
and the result comes back to the application's callback.
"""
import logging

from xchain_rpc import (
    CallExecuted,
    CallPrepared,
    ChainRelay,
    LocalChain,
    RPCProxy,
    RPCServer,
    build_call_proof,
)
from xchain_rpc.abi import (
    ACKNOWLEDGE_CALL,
    CALL_CONTRACT,
    EXECUTE_CALL,
    REQUEST_CALL,
    callback_signature,
    decode_args,
    encode_call,
)
from xchain_rpc.exceptions import Revert
from xchain_rpc.runtime import CallContext, Contract, external

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GREET = "greet(string)"
ASK = "ask(address,address,string)"


class Greeter(Contract):
    """Target-chain contract answering greetings."""

    @external(GREET, returns=("string",))
    def greet(self, ctx: CallContext, name: str) -> str:
        return f"Hello, {name}!"


class GreetingApp(Contract):
    """Origin-chain application that asks for greetings and keeps the answers."""

    def __init__(self, chain, address):
        super().__init__(chain, address)
        self.state = []

    @external(ASK, returns=("uint256",))
    def ask(self, ctx: CallContext, proxy: str, greeter: str, name: str) -> int:
        payload = encode_call(CALL_CONTRACT, [greeter, name.encode(), encode_call(GREET, [name]), "onGreeting"])
        outcome = ctx.call(proxy, payload, ctx.meter.remaining // 2)
        if not outcome.success:
            raise Revert(outcome.revert_reason)
        return outcome.value

    @external(callback_signature("onGreeting"))
    def on_greeting(self, ctx: CallContext, dapp_specific_id: bytes, success: bool, returndata: bytes) -> None:
        answer = decode_args(["string"], returndata)[0] if success else None
        self.state.append((dapp_specific_id.decode(), answer))


def main():
    """
    Run one call through the whole protocol.

    This example shows how to:
    1. Deploy the proxy, the server and the application contracts
    2. Prepare and request a call on the origin chain
    3. Execute it on the target chain with an inclusion proof
    4. Acknowledge the execution back on the origin chain
    """
    print("\n=== xchain-rpc local round trip ===\n")

    origin = LocalChain(chain_id=1337)
    target = LocalChain(chain_id=4242)
    relayer = origin.accounts[2]
    executor = target.accounts[3]

    server = target.deploy(RPCServer, target.accounts[0])
    proxy = origin.deploy(RPCProxy, origin.accounts[0], server.address, ChainRelay(target))
    server.register_proxy(proxy.address, ChainRelay(origin))
    greeter = target.deploy(Greeter, target.accounts[0])
    app = origin.deploy(GreetingApp, origin.accounts[1])

    print(f"Proxy on chain {origin.chain_id}: {proxy.address}")
    print(f"Server on chain {target.chain_id}: {server.address}")

    # 1. Prepare
    prepared = origin.transact(origin.accounts[1], app.address, ASK, [proxy.address, greeter.address, "Alice"])
    call_id = prepared.raise_for_status().events(CallPrepared)[0].call_id
    print(f"Prepared call {call_id}")

    # 2. Request
    request = origin.transact(relayer, proxy.address, REQUEST_CALL, [call_id]).raise_for_status()
    print(f"Requested in origin block {request.block_number}")

    # 3. Execute on the target chain
    proof = build_call_proof(origin, request.tx_hash)
    execution = target.transact(executor, server.address, EXECUTE_CALL, [proof.to_abi()]).raise_for_status()
    executed = execution.events(CallExecuted)[0]
    print(f"Executed in target block {execution.block_number}, success={executed.success}")

    # 4. Acknowledge on the origin chain
    ack_proof = build_call_proof(target, execution.tx_hash)
    origin.transact(relayer, proxy.address, ACKNOWLEDGE_CALL, [ack_proof.to_abi()]).raise_for_status()
    print(f"Call status: {proxy.call_status(call_id).value}")

    for name, answer in app.state:
        print(f"Answer for {name}: {answer}")


if __name__ == "__main__":
    main()
