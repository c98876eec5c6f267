"""
xchain-rpc: cross-chain contract calls verified by Merkle-Patricia inclusion proofs.
"""
from .chain import Block, LocalChain, TxResult
from .codec import (
    BlockHeader,
    Log,
    Receipt,
    decode_header,
    decode_receipt,
    decode_transaction,
    encode_header,
    encode_receipt,
    encode_transaction,
)
from .config import NetworkConfig, make_web3
from .exceptions import (
    CodecError,
    ErrorCode,
    FailedCallExecution,
    FailedCallRequest,
    IllegalProxyAddress,
    IllegalRpcServer,
    IncorrectProxy,
    InsufficientResources,
    MultipleAcknowledgement,
    MultipleExecution,
    NonExistentCall,
    NonExistentCallExecution,
    NonExistentCallRequest,
    RPCError,
)
from .gas import GasMeter, ResourceAccountant
from .models import (
    CallAcknowledged,
    CallExecuted,
    CallPrepared,
    CallProof,
    CallRequested,
    CallStatus,
    PendingCall,
)
from .proofs import build_call_proof, create_proof_data
from .proxy import RPCProxy
from .relay import ChainRelay, HeaderRelay, MockRelay, RootKind, Web3Relay
from .server import RPCServer
from .trie import ProofResult, ProofStatus, ProofTrie, verify_proof
from .version import __version__

__all__ = [
    "Block",
    "BlockHeader",
    "CallAcknowledged",
    "CallExecuted",
    "CallPrepared",
    "CallProof",
    "CallRequested",
    "CallStatus",
    "ChainRelay",
    "CodecError",
    "ErrorCode",
    "FailedCallExecution",
    "FailedCallRequest",
    "GasMeter",
    "HeaderRelay",
    "IllegalProxyAddress",
    "IllegalRpcServer",
    "IncorrectProxy",
    "InsufficientResources",
    "LocalChain",
    "Log",
    "MockRelay",
    "MultipleAcknowledgement",
    "MultipleExecution",
    "NetworkConfig",
    "NonExistentCall",
    "NonExistentCallExecution",
    "NonExistentCallRequest",
    "PendingCall",
    "ProofResult",
    "ProofStatus",
    "ProofTrie",
    "RPCError",
    "RPCProxy",
    "RPCServer",
    "Receipt",
    "ResourceAccountant",
    "RootKind",
    "TxResult",
    "Web3Relay",
    "build_call_proof",
    "create_proof_data",
    "decode_header",
    "decode_receipt",
    "decode_transaction",
    "encode_header",
    "encode_receipt",
    "encode_transaction",
    "make_web3",
    "verify_proof",
    "__version__",
]
