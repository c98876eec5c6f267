"""
In-process chain for running the registries.

``LocalChain`` signs real transactions with ``eth-account``, executes them
against hosted ``Contract`` objects, and seals blocks whose headers commit to
real transaction and receipt tries. Proofs built from its blocks are therefore
byte-for-byte the proofs a node of a live chain would yield.
"""
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

import rlp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_canonical_address, to_checksum_address

from .abi import encode_call, encode_revert
from .codec import (
    BLANK_ROOT,
    EMPTY_OMMERS_HASH,
    ZERO_ADDRESS,
    ZERO_HASH,
    BlockHeader,
    Log,
    Receipt,
    encode_receipt,
    make_receipt,
    merge_blooms,
    transaction_hash,
)
from .exceptions import ExecutionError, OutOfGas, RPCError
from .gas import GasMeter, intrinsic_gas
from .runtime import CallContext, CallOutcome, Contract
from .trie import ProofTrie, index_key

# Configure logger
logger = logging.getLogger(__name__)

C = TypeVar("C", bound=Contract)
AccountLike = Union[LocalAccount, str]

DEFAULT_TX_GAS = 3_000_000
DEFAULT_GAS_PRICE = 1_000_000_000


@dataclass
class Block:
    """
    Sealed block with its transactions and receipts.

    The tries are kept so inclusion proofs can be produced for any index.
    """
    header: BlockHeader
    transactions: List[bytes] = field(default_factory=list)
    receipts: List[Receipt] = field(default_factory=list)
    transaction_trie: ProofTrie = field(default_factory=ProofTrie, repr=False)
    receipt_trie: ProofTrie = field(default_factory=ProofTrie, repr=False)

    @property
    def number(self) -> int:
        return self.header.number

    @property
    def hash(self) -> bytes:
        return self.header.hash

    def transaction_proof(self, index: int) -> List[bytes]:
        return self.transaction_trie.get_proof(index_key(index))

    def receipt_proof(self, index: int) -> List[bytes]:
        return self.receipt_trie.get_proof(index_key(index))


@dataclass
class TxResult:
    """
    Result of a transaction sent to a ``LocalChain``.

    A failed transaction is still included in a block with a failed receipt;
    ``raise_for_status`` turns it into the exception that caused the failure.
    """
    tx_hash: bytes
    raw_transaction: bytes
    receipt: Receipt
    gas_used: int
    outcome: CallOutcome
    block_number: Optional[int] = None
    index: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome.success

    @property
    def return_value(self) -> Any:
        return self.outcome.value

    @property
    def return_data(self) -> bytes:
        return self.outcome.returndata

    @property
    def error(self) -> Optional[BaseException]:
        return self.outcome.error

    @property
    def logs(self) -> List[Log]:
        return list(self.receipt.logs)

    def raise_for_status(self) -> "TxResult":
        """
        Raises:
            The exception that reverted the transaction, if it failed
        """
        if self.outcome.success:
            return self
        if self.outcome.error is not None:
            raise self.outcome.error
        raise ExecutionError(f"transaction 0x{self.tx_hash.hex()} failed")

    def events(self, model: Type) -> List[Any]:
        """Decode the receipt logs matching the event ``model``."""
        return [model.from_log(log) for log in self.receipt.logs if model.EVENT.matches(log.topics)]


def _address_of(who: AccountLike) -> str:
    if isinstance(who, str):
        return to_checksum_address(who)
    return who.address


class LocalChain:
    """
    Deterministic single-node chain.

    Args:
        chain_id: EIP-155 chain id used when signing transactions
        auto_mine: Seal a block after every transaction
        block_gas_limit: Gas limit written to each header
        genesis_timestamp: Timestamp of block 0
        block_time: Seconds between consecutive blocks
        accounts: Number of funded accounts to derive
    """

    def __init__(
        self,
        chain_id: int = 1337,
        auto_mine: bool = True,
        block_gas_limit: int = 30_000_000,
        genesis_timestamp: int = 1_600_000_000,
        block_time: int = 12,
        accounts: int = 10,
    ):
        self.chain_id = chain_id
        self.auto_mine = auto_mine
        self.block_gas_limit = block_gas_limit
        self.genesis_timestamp = genesis_timestamp
        self.block_time = block_time

        self.accounts: List[LocalAccount] = [
            Account.from_key(keccak(f"xchain-rpc:{chain_id}:{i}".encode()))
            for i in range(accounts)
        ]
        self._contracts: Dict[str, Contract] = {}
        self._nonces: Dict[str, int] = {}
        self._pending: List[Tuple[bytes, Receipt]] = []
        self._pending_gas = 0

        self.blocks: List[Block] = []
        self._blocks_by_hash: Dict[bytes, Block] = {}
        self._blocks_by_root: Dict[Tuple[str, bytes], Block] = {}
        self._tx_locations: Dict[bytes, Tuple[int, int]] = {}
        genesis = self._make_header(ZERO_HASH, 0, BLANK_ROOT, BLANK_ROOT, [])
        self._seal(genesis, [], [], ProofTrie(), ProofTrie())

    # ---------------- Accounts & contracts ----------------

    def nonce(self, who: AccountLike) -> int:
        return self._nonces.get(_address_of(who), 0)

    def _next_nonce(self, address: str) -> int:
        nonce = self._nonces.get(address, 0)
        self._nonces[address] = nonce + 1
        return nonce

    def deploy(self, contract_cls: Type[C], deployer: AccountLike, *args: Any, **kwargs: Any) -> C:
        """
        Host a new contract instance.

        The address is derived from the deployer and its nonce the way
        ``CREATE`` derives it.
        """
        sender = _address_of(deployer)
        nonce = self._next_nonce(sender)
        address = to_checksum_address(keccak(rlp.encode([to_canonical_address(sender), nonce]))[12:])
        contract = contract_cls(self, address, *args, **kwargs)
        self._contracts[address] = contract
        logger.info(f"Deployed {contract_cls.__name__} at {address} on chain {self.chain_id}")
        return contract

    def get_contract(self, address: str) -> Optional[Contract]:
        return self._contracts.get(to_checksum_address(address))

    # ---------------- Execution ----------------

    def invoke(self, sender: str, to: str, payload: bytes, gas: int) -> CallOutcome:
        """
        Run ``payload`` against ``to`` with ``gas``.

        Plain accounts accept any call. If the callee fails, every contract's
        state is restored to what it was before the call and the failure is
        returned as an outcome.
        """
        contract = self._contracts.get(to_checksum_address(to))
        if contract is None:
            return CallOutcome(success=True)

        snapshots = {address: copy.deepcopy(c.state) for address, c in self._contracts.items()}
        meter = GasMeter(gas)
        ctx = CallContext(invoker=self, sender=sender, address=contract.address, meter=meter)
        try:
            value, returndata = contract.dispatch(ctx, bytes(payload))
        except OutOfGas as e:
            self._restore(snapshots)
            return CallOutcome(success=False, gas_used=gas, error=e)
        except (ExecutionError, RPCError) as e:
            self._restore(snapshots)
            reason = getattr(e, "reason", None) or getattr(e, "message", "") or str(e)
            return CallOutcome(success=False, returndata=encode_revert(reason), gas_used=meter.used, error=e)
        except Exception as e:
            # Callee code is arbitrary; its failure must not unwind the caller
            logger.warning(f"Contract {contract.address} raised {type(e).__name__}: {e}")
            self._restore(snapshots)
            return CallOutcome(success=False, gas_used=meter.used, error=e)

        return CallOutcome(success=True, returndata=returndata, gas_used=meter.used, logs=ctx.logs, value=value)

    def _restore(self, snapshots: Dict[str, Any]) -> None:
        for address, state in snapshots.items():
            self._contracts[address].state = state

    def transact(
        self,
        account: LocalAccount,
        to: str,
        signature: str,
        args: Sequence[Any] = (),
        gas: int = DEFAULT_TX_GAS,
    ) -> TxResult:
        """
        Sign and execute a call transaction.

        Args:
            account: Signing account
            to: Recipient address
            signature: Function signature to call
            args: Function arguments
            gas: Transaction gas limit

        Returns:
            TxResult; a reverted transaction is included with a failed receipt

        Raises:
            ValueError: If ``gas`` does not cover the intrinsic cost
        """
        return self.send_raw(account, to, encode_call(signature, args), gas)

    def send_raw(self, account: LocalAccount, to: str, data: bytes, gas: int = DEFAULT_TX_GAS) -> TxResult:
        base_cost = intrinsic_gas(data)
        if gas < base_cost:
            raise ValueError(f"Intrinsic gas too low: {gas} < {base_cost}")

        tx = {
            "nonce": self._next_nonce(account.address),
            "gasPrice": DEFAULT_GAS_PRICE,
            "gas": gas,
            "to": to_checksum_address(to),
            "value": 0,
            "data": "0x" + data.hex(),
            "chainId": self.chain_id,
        }
        signed = account.sign_transaction(tx)
        raw = bytes(signed.raw_transaction)
        tx_hash = transaction_hash(raw)

        outcome = self.invoke(account.address, tx["to"], data, gas - base_cost)
        gas_used = base_cost + outcome.gas_used
        self._pending_gas += gas_used
        receipt = make_receipt(outcome.success, self._pending_gas, outcome.logs if outcome.success else [])
        index = len(self._pending)
        self._pending.append((raw, receipt))

        if outcome.success:
            logger.debug(f"Transaction 0x{tx_hash.hex()} succeeded using {gas_used} gas")
        else:
            logger.info(f"Transaction 0x{tx_hash.hex()} reverted: {outcome.revert_reason or outcome.error}")

        result = TxResult(
            tx_hash=tx_hash,
            raw_transaction=raw,
            receipt=receipt,
            gas_used=gas_used,
            outcome=outcome,
            index=index,
        )
        if self.auto_mine:
            result.block_number = self.mine().number
        return result

    def call(self, to: str, signature: str, args: Sequence[Any] = (), sender: Optional[str] = None) -> Any:
        """Run a call without recording a transaction and return its value."""
        snapshots = {address: copy.deepcopy(c.state) for address, c in self._contracts.items()}
        outcome = self.invoke(sender or self.accounts[0].address, to, encode_call(signature, args), DEFAULT_TX_GAS)
        self._restore(snapshots)
        if not outcome.success:
            raise outcome.error or ExecutionError("call failed")
        return outcome.value

    # ---------------- Blocks ----------------

    def _make_header(
        self,
        parent_hash: bytes,
        number: int,
        transactions_root: bytes,
        receipts_root: bytes,
        receipts: List[Receipt],
    ) -> BlockHeader:
        return BlockHeader(
            parent_hash=parent_hash,
            ommers_hash=EMPTY_OMMERS_HASH,
            coinbase=ZERO_ADDRESS,
            state_root=BLANK_ROOT,
            transactions_root=transactions_root,
            receipts_root=receipts_root,
            logs_bloom=merge_blooms(r.logs_bloom for r in receipts),
            difficulty=0,
            number=number,
            gas_limit=self.block_gas_limit,
            gas_used=receipts[-1].cumulative_gas_used if receipts else 0,
            timestamp=self.genesis_timestamp + number * self.block_time,
            extra_data=b"",
        )

    def mine(self) -> Block:
        """Seal the pending transactions into a new block."""
        tx_trie, receipt_trie = ProofTrie(), ProofTrie()
        transactions = [raw for raw, _ in self._pending]
        receipts = [receipt for _, receipt in self._pending]
        for i, (raw, receipt) in enumerate(self._pending):
            tx_trie.put(index_key(i), raw)
            receipt_trie.put(index_key(i), encode_receipt(receipt))

        parent = self.blocks[-1]
        header = self._make_header(
            parent.hash, parent.number + 1, tx_trie.root_hash(), receipt_trie.root_hash(), receipts
        )
        block = self._seal(header, transactions, receipts, tx_trie, receipt_trie)

        self._pending = []
        self._pending_gas = 0
        logger.debug(f"Chain {self.chain_id} sealed block {block.number} with {len(transactions)} transactions")
        return block

    def _seal(
        self,
        header: BlockHeader,
        transactions: List[bytes],
        receipts: List[Receipt],
        tx_trie: ProofTrie,
        receipt_trie: ProofTrie,
    ) -> Block:
        block = Block(header, transactions, receipts, tx_trie, receipt_trie)
        self.blocks.append(block)
        self._blocks_by_hash[block.hash] = block
        self._blocks_by_root.setdefault(("transactions", header.transactions_root), block)
        self._blocks_by_root.setdefault(("receipts", header.receipts_root), block)
        for i, raw in enumerate(transactions):
            self._tx_locations[transaction_hash(raw)] = (block.number, i)
        return block

    @property
    def head(self) -> Block:
        return self.blocks[-1]

    @property
    def head_number(self) -> int:
        return self.blocks[-1].number

    def get_block(self, number: int) -> Block:
        if number < 0 or number >= len(self.blocks):
            raise KeyError(f"Block {number} not found")
        return self.blocks[number]

    def block_by_hash(self, block_hash: bytes) -> Optional[Block]:
        return self._blocks_by_hash.get(bytes(block_hash))

    def block_with_root(self, root: bytes, kind: str) -> Optional[Block]:
        """Find the first block whose transactions/receipts root is ``root``."""
        return self._blocks_by_root.get((getattr(kind, "value", kind), bytes(root)))

    def locate(self, tx_hash: bytes) -> Tuple[int, int]:
        """
        Returns:
            Tuple of (block number, transaction index)

        Raises:
            KeyError: If the transaction is unknown or not yet mined
        """
        try:
            return self._tx_locations[bytes(tx_hash)]
        except KeyError:
            raise KeyError(f"Transaction 0x{bytes(tx_hash).hex()} is not in a sealed block") from None

    def __repr__(self) -> str:
        return f"LocalChain(chain_id={self.chain_id}, head={self.head_number})"
