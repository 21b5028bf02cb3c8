"""
Ledger Gateway
==============
Capability surface over the chain: signed transaction submission, inclusion
waiting, read-only and static calls. Transport failures are retried with
exponential backoff here and nowhere else; a confirmation timeout is an
unknown outcome that callers resolve by re-querying ledger state.
"""

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from ballot.ballot_crypto import Ballot, KeyMaterial, address_from_public_key, verify_signature

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO_ADDRESS = "0x" + "00" * 20

# ============================================================================
# EXCEPTIONS
# ============================================================================


class LedgerError(Exception):
    """Base exception for ledger interaction"""
    pass


class TransportError(LedgerError):
    """Node unreachable or request rejected before broadcast; safe to retry"""
    pass


class TransactionTimeout(LedgerError):
    """Transaction was broadcast but inclusion was not observed in time"""

    def __init__(self, tx_hash: str, message: Optional[str] = None):
        super().__init__(message or f"Timed out waiting for {tx_hash}")
        self.tx_hash = tx_hash


class ContractRevert(LedgerError):
    """Contract rejected a call or transaction with a named error"""

    def __init__(self, reason: str, *revert_args: Any, tx_hash: Optional[str] = None):
        super().__init__(f"{reason}{revert_args if revert_args else ''}")
        self.reason = reason
        self.revert_args = revert_args
        self.tx_hash = tx_hash

# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass
class EventLog:
    contract: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransactionReceipt:
    tx_hash: str
    block_number: int
    status: int
    sender: str
    contract: str
    function: str
    logs: List[EventLog] = field(default_factory=list)
    revert_reason: Optional[str] = None
    revert_args: Tuple[Any, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def events(self, name: str) -> List[EventLog]:
        return [log for log in self.logs if log.name == name]


def encode_args(args: Sequence[Any]) -> List[Any]:
    """Convert call arguments into their JSON wire form"""
    encoded = []
    for arg in args:
        if isinstance(arg, Ballot):
            encoded.append(arg.to_dict())
        elif isinstance(arg, bytes):
            encoded.append(arg.hex())
        else:
            encoded.append(arg)
    return encoded


@dataclass
class SignedTransaction:
    sender_public_key: bytes
    nonce: int
    contract: str
    function: str
    args: List[Any]
    signature: bytes = b""

    def payload(self) -> bytes:
        return json.dumps({
            'from': self.sender_public_key.hex(),
            'nonce': self.nonce,
            'to': self.contract,
            'function': self.function,
            'args': self.args
        }, sort_keys=True).encode()

    @property
    def sender(self) -> str:
        return address_from_public_key(self.sender_public_key)

    @property
    def tx_hash(self) -> str:
        return "0x" + hashlib.sha256(self.payload() + self.signature).hexdigest()

    def verify(self) -> bool:
        return verify_signature(self.sender_public_key, self.payload(), self.signature)

    @classmethod
    def build(cls, wallet: KeyMaterial, nonce: int, contract: str,
              function: str, args: Sequence[Any]) -> "SignedTransaction":
        tx = cls(
            sender_public_key=wallet.public_key_bytes,
            nonce=nonce,
            contract=contract,
            function=function,
            args=encode_args(args)
        )
        tx.signature = wallet.sign(tx.payload())
        return tx

# ============================================================================
# RETRY
# ============================================================================


async def retry_ledger_call(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    description: str = "ledger call",
) -> T:
    """Retry `fn` on TransportError with exponential backoff"""
    for attempt in range(max_retries):
        try:
            return await fn()
        except TransportError as e:
            if attempt == max_retries - 1:
                logger.error(
                    f"{description} failed after {max_retries} attempts: {e}")
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{max_retries}), retrying in {delay:.2f}s: {e}")
            await asyncio.sleep(delay)
    raise TransportError(f"{description}: no attempts made")

# ============================================================================
# GATEWAY
# ============================================================================


class LedgerGateway(ABC):
    """Abstract capability surface; subclasses provide the transport"""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0,
                 confirmation_timeout: float = 60.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.confirmation_timeout = confirmation_timeout
        self._sender_locks: Dict[str, asyncio.Lock] = {}

    # ---- transport primitives ---------------------------------------------

    @abstractmethod
    async def _broadcast(self, tx: SignedTransaction) -> str:
        """Hand a signed transaction to the network, returning its hash"""

    @abstractmethod
    async def _call(self, contract: str, function: str, args: List[Any],
                    sender: Optional[str]) -> Any:
        """Execute a call without committing state"""

    @abstractmethod
    async def _await_inclusion(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        """Block until included or raise TransactionTimeout"""

    @abstractmethod
    async def _pending_nonce(self, address: str) -> int:
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        pass

    @abstractmethod
    async def get_network(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    @abstractmethod
    async def onboard_account(self, wallet: KeyMaterial) -> None:
        """Provision the account's AES key with the network"""

    @abstractmethod
    async def deploy_election(self, owner: KeyMaterial, question: str,
                              options: Sequence[Tuple[int, str]], layout: Any) -> str:
        """Deploy an election contract and return its address"""

    # ---- public API --------------------------------------------------------

    async def call(self, contract: str, function: str, *args: Any,
                   sender: Optional[str] = None) -> Any:
        """Read-only call, or static call of a mutating function"""
        encoded = encode_args(args)
        return await retry_ledger_call(
            lambda: self._call(contract, function, encoded, sender),
            self.max_retries, self.base_delay, f"call {function}")

    async def send_transaction(self, wallet: KeyMaterial, contract: str,
                               function: str, *args: Any) -> str:
        """Sign and broadcast; once this returns the transaction cannot be recalled"""
        lock = self._sender_locks.setdefault(wallet.address, asyncio.Lock())
        async with lock:
            nonce = await retry_ledger_call(
                lambda: self._pending_nonce(wallet.address),
                self.max_retries, self.base_delay, "nonce lookup")
            tx = SignedTransaction.build(wallet, nonce, contract, function, args)
            # rebroadcasting the same signed transaction is idempotent
            tx_hash = await retry_ledger_call(
                lambda: self._broadcast(tx),
                self.max_retries, self.base_delay, f"send {function}")
        logger.info(f"Transaction sent: {function} {tx_hash[:18]}...")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str,
                               timeout: Optional[float] = None) -> TransactionReceipt:
        if timeout is None:
            timeout = self.confirmation_timeout
        receipt = await retry_ledger_call(
            lambda: self._await_inclusion(tx_hash, timeout),
            self.max_retries, self.base_delay, f"wait {tx_hash[:18]}")
        logger.debug(f"Transaction {tx_hash[:18]} included in block {receipt.block_number}")
        return receipt

    async def transact(self, wallet: KeyMaterial, contract: str, function: str,
                       *args: Any, timeout: Optional[float] = None) -> TransactionReceipt:
        """Send, wait, and surface a revert as ContractRevert"""
        tx_hash = await self.send_transaction(wallet, contract, function, *args)
        receipt = await self.wait_for_receipt(tx_hash, timeout)
        if not receipt.succeeded:
            raise ContractRevert(receipt.revert_reason or "reverted",
                                 *receipt.revert_args, tx_hash=tx_hash)
        return receipt

    async def check_connectivity(self) -> bool:
        try:
            network = await retry_ledger_call(
                self.get_network, self.max_retries, self.base_delay, "get network")
            block = await retry_ledger_call(
                self.get_block_number, self.max_retries, self.base_delay, "get block number")
        except LedgerError as e:
            logger.error(f"✗ Network connectivity check failed: {e}")
            return False
        logger.info(
            f"✓ Connected to network: {network.get('name')} (chain id {network.get('chain_id')}), block {block}")
        return True
