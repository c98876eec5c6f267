"""
Two-chain deployment and protocol steps shared by the registry tests.
"""
from dataclasses import dataclass
from typing import Optional

from eth_account.signers.local import LocalAccount

from xchain_rpc.abi import ACKNOWLEDGE_CALL, CALL_CONTRACT, EXECUTE_CALL, REQUEST_CALL, encode_call
from xchain_rpc.chain import LocalChain, TxResult
from xchain_rpc.models import CallPrepared, CallProof
from xchain_rpc.proofs import build_call_proof
from xchain_rpc.proxy import RPCProxy
from xchain_rpc.relay import ChainRelay
from xchain_rpc.server import RPCServer

from .contracts import CALLBACK_NAME, REMOTE_METHOD, START_CALL, CallbackRecorder, MockContract

ORIGIN_CHAIN_ID = 1337
TARGET_CHAIN_ID = 4242
DAPP_ID = b"\x01"
DEFAULT_GAS = 3_000_000


def remote_call_data(number: int = 2345675643, text: str = "Hello!%") -> bytes:
    return encode_call(REMOTE_METHOD, [number, text])


@dataclass
class Deployment:
    origin: LocalChain
    target: LocalChain
    proxy: RPCProxy
    server: RPCServer
    remote: MockContract
    recorder: CallbackRecorder
    user: LocalAccount
    relayer: LocalAccount
    executor: LocalAccount

    def deploy_proxy(self, server_address: Optional[str] = None, register: bool = True) -> RPCProxy:
        proxy = self.origin.deploy(
            RPCProxy, self.origin.accounts[0], server_address or self.server.address, ChainRelay(self.target)
        )
        if register:
            self.server.register_proxy(proxy.address, ChainRelay(self.origin))
        return proxy

    def prepare(
        self,
        call_data: Optional[bytes] = None,
        dapp_specific_id: bytes = DAPP_ID,
        proxy: Optional[RPCProxy] = None,
        recorder: Optional[CallbackRecorder] = None,
    ) -> TxResult:
        """Start a call from the recorder contract; returns the startCall transaction."""
        proxy = proxy or self.proxy
        recorder = recorder or self.recorder
        return self.origin.transact(
            self.user,
            recorder.address,
            START_CALL,
            [proxy.address, self.remote.address, dapp_specific_id, call_data or remote_call_data()],
        )

    def prepare_direct(self, call_data: Optional[bytes] = None, proxy: Optional[RPCProxy] = None) -> TxResult:
        """Prepare a call straight from the user account."""
        proxy = proxy or self.proxy
        return self.origin.transact(
            self.user,
            proxy.address,
            CALL_CONTRACT,
            [self.remote.address, DAPP_ID, call_data or remote_call_data(), CALLBACK_NAME],
        )

    def request(self, call_id: int, proxy: Optional[RPCProxy] = None) -> TxResult:
        proxy = proxy or self.proxy
        return self.origin.transact(self.relayer, proxy.address, REQUEST_CALL, [call_id])

    def execute(self, request: TxResult, server: Optional[RPCServer] = None, gas: int = DEFAULT_GAS) -> TxResult:
        server = server or self.server
        proof = build_call_proof(self.origin, request.tx_hash)
        return self.target.transact(self.executor, server.address, EXECUTE_CALL, [proof.to_abi()], gas=gas)

    def acknowledge(
        self,
        execution: TxResult,
        proxy: Optional[RPCProxy] = None,
        gas: int = DEFAULT_GAS,
    ) -> TxResult:
        proxy = proxy or self.proxy
        proof = build_call_proof(self.target, execution.tx_hash)
        return self.submit_acknowledgement(proof, proxy, gas)

    def submit_acknowledgement(self, proof: CallProof, proxy: Optional[RPCProxy] = None, gas: int = DEFAULT_GAS) -> TxResult:
        proxy = proxy or self.proxy
        return self.origin.transact(self.relayer, proxy.address, ACKNOWLEDGE_CALL, [proof.to_abi()], gas=gas)

    def prepared_call_id(self, result: TxResult) -> int:
        return result.events(CallPrepared)[0].call_id


def deploy(origin: Optional[LocalChain] = None, target: Optional[LocalChain] = None) -> Deployment:
    origin = origin or LocalChain(chain_id=ORIGIN_CHAIN_ID)
    target = target or LocalChain(chain_id=TARGET_CHAIN_ID)

    server = target.deploy(RPCServer, target.accounts[0])
    proxy = origin.deploy(RPCProxy, origin.accounts[0], server.address, ChainRelay(target))
    server.register_proxy(proxy.address, ChainRelay(origin))
    remote = target.deploy(MockContract, target.accounts[0])
    recorder = origin.deploy(CallbackRecorder, origin.accounts[1])

    return Deployment(
        origin=origin,
        target=target,
        proxy=proxy,
        server=server,
        remote=remote,
        recorder=recorder,
        user=origin.accounts[1],
        relayer=origin.accounts[2],
        executor=target.accounts[3],
    )
