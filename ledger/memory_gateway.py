"""
In-memory chain behind the LedgerGateway interface.

Transactions are included strictly in broadcast order, one per block, each
block linked to the previous block's hash so that any later modification is
detectable with verify_chain(). Execution has revert semantics: a contract
runs against a copy of its state and the copy is committed only on success.

Fault injection (for exercising retry and resumption paths):
    transport          - next broadcast/call fails before reaching the node
    stall              - next inclusion wait times out, tx stays pending
    lost_confirmation  - next tx is included but the wait still times out
"""

import asyncio
import copy
import hashlib
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ballot.ballot_crypto import KeyMaterial, address_from_public_key
from config.config import ContractLayout
from .election_registry import CallContext, ElectionRegistry, is_mutating
from .ledger_gateway import (
    ZERO_ADDRESS,
    ContractRevert,
    LedgerError,
    LedgerGateway,
    SignedTransaction,
    TransactionReceipt,
    TransactionTimeout,
    TransportError,
)

logger = logging.getLogger(__name__)

FAULT_KINDS = ("transport", "stall", "lost_confirmation")


def _genesis_hash() -> str:
    return "0" * 64


def _compute_block_hash(block: Dict[str, Any]) -> str:
    payload = (
        str(block["number"])
        + block["timestamp"]
        + block["tx_hash"]
        + str(block["status"])
        + block["previous_hash"]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class InMemoryLedgerGateway(LedgerGateway):
    """Single-process chain used for local runs and tests"""

    CHAIN_ID = 7082400
    NETWORK_NAME = "coti-testnet-sim"

    def __init__(self, max_retries: int = 3, base_delay: float = 0.0,
                 confirmation_timeout: float = 5.0):
        super().__init__(max_retries, base_delay, confirmation_timeout)
        self._contracts: Dict[str, ElectionRegistry] = {}
        self._network_keys: Dict[str, bytes] = {}

        self._mempool: List[SignedTransaction] = []
        self._known: Dict[str, SignedTransaction] = {}
        self._receipts: Dict[str, TransactionReceipt] = {}
        self._nonces: Dict[str, int] = {}
        self._blocks: List[Dict[str, Any]] = []

        self._faults: Dict[str, int] = {kind: 0 for kind in FAULT_KINDS}
        self._lock = asyncio.Lock()

        # function name of every accepted broadcast, in order
        self.submissions: List[str] = []

    # ---- fault injection ---------------------------------------------------

    def inject_fault(self, kind: str, count: int = 1):
        if kind not in FAULT_KINDS:
            raise ValueError(f"Unknown fault kind: {kind}")
        self._faults[kind] += count

    def _take_fault(self, kind: str) -> bool:
        if self._faults[kind] > 0:
            self._faults[kind] -= 1
            return True
        return False

    # ---- transport primitives ---------------------------------------------

    async def _broadcast(self, tx: SignedTransaction) -> str:
        if self._take_fault("transport"):
            raise TransportError("connection refused")

        tx_hash = tx.tx_hash
        if tx_hash in self._known:
            return tx_hash
        if not tx.verify():
            raise LedgerError("Invalid transaction signature")
        if tx.contract not in self._contracts:
            raise LedgerError(f"No contract deployed at {tx.contract}")

        sender = tx.sender
        expected = self._nonces.get(sender, 0)
        if tx.nonce != expected:
            raise LedgerError(f"Bad nonce for {sender}: got {tx.nonce}, expected {expected}")

        self._nonces[sender] = expected + 1
        self._known[tx_hash] = tx
        self._mempool.append(tx)
        self.submissions.append(tx.function)
        return tx_hash

    async def _call(self, contract: str, function: str, args: List[Any],
                    sender: Optional[str]) -> Any:
        if self._take_fault("transport"):
            raise TransportError("connection refused")
        registry = self._contracts.get(contract.lower())
        if registry is None:
            raise LedgerError(f"No contract deployed at {contract}")

        ctx = CallContext(
            sender=(sender or ZERO_ADDRESS).lower(),
            decryption_keys=dict(self._network_keys),
        )
        if is_mutating(function):
            # static call: execute on a throwaway copy
            registry = copy.deepcopy(registry)
        return registry.dispatch(ctx, function, list(args))

    async def _await_inclusion(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        if tx_hash not in self._known:
            raise LedgerError(f"Unknown transaction {tx_hash}")
        if tx_hash in self._receipts:
            return self._receipts[tx_hash]

        if self._take_fault("stall"):
            await asyncio.sleep(0)
            raise TransactionTimeout(tx_hash)

        async with self._lock:
            self._mine_through(tx_hash)
        receipt = self._receipts[tx_hash]

        if self._take_fault("lost_confirmation"):
            raise TransactionTimeout(tx_hash)
        return receipt

    async def _pending_nonce(self, address: str) -> int:
        return self._nonces.get(address.lower(), 0)

    # ---- mining ------------------------------------------------------------

    def _mine_through(self, tx_hash: str):
        """Include pending transactions in broadcast order up to and including tx_hash"""
        while self._mempool:
            tx = self._mempool.pop(0)
            self._execute(tx)
            if tx.tx_hash == tx_hash:
                break

    def _execute(self, tx: SignedTransaction) -> TransactionReceipt:
        tx_hash = tx.tx_hash
        sender = tx.sender
        registry = self._contracts[tx.contract]
        ctx = CallContext(
            sender=sender,
            sender_public_key=tx.sender_public_key,
            decryption_keys=dict(self._network_keys),
        )

        working = copy.deepcopy(registry)
        try:
            if not is_mutating(tx.function):
                raise ContractRevert("NotATransaction", tx.function)
            working.dispatch(ctx, tx.function, list(tx.args))
        except ContractRevert as e:
            status, logs, reason, revert_args = 0, [], e.reason, e.revert_args
            logger.debug(f"{tx.function} from {sender} reverted: {e}")
        else:
            self._contracts[tx.contract] = working
            status, logs, reason, revert_args = 1, working.drain_events(), None, ()

        block = self._append_block(tx_hash, status)
        receipt = TransactionReceipt(
            tx_hash=tx_hash,
            block_number=block["number"],
            status=status,
            sender=sender,
            contract=tx.contract,
            function=tx.function,
            logs=logs,
            revert_reason=reason,
            revert_args=tuple(revert_args),
        )
        self._receipts[tx_hash] = receipt
        return receipt

    def _append_block(self, tx_hash: str, status: int) -> Dict[str, Any]:
        previous_hash = self._blocks[-1]["block_hash"] if self._blocks else _genesis_hash()
        block = {
            "number": len(self._blocks) + 1,
            "timestamp": f"{time.time():.6f}",
            "tx_hash": tx_hash,
            "status": status,
            "previous_hash": previous_hash,
            "block_hash": "",
        }
        block["block_hash"] = _compute_block_hash(block)
        self._blocks.append(block)
        return block

    def verify_chain(self) -> Tuple[bool, List[str]]:
        """Walk every block and verify the hash links"""
        errors: List[str] = []
        for i, block in enumerate(self._blocks):
            expected_prev = self._blocks[i - 1]["block_hash"] if i > 0 else _genesis_hash()
            if block["previous_hash"] != expected_prev:
                errors.append(f"Block #{block['number']}: previous_hash mismatch")
            if block["block_hash"] != _compute_block_hash(block):
                errors.append(f"Block #{block['number']}: block_hash mismatch")
        return len(errors) == 0, errors

    def get_blocks(self) -> List[Dict[str, Any]]:
        return [dict(b) for b in self._blocks]

    # ---- queries -----------------------------------------------------------

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self._receipts.get(tx_hash)

    async def get_network(self) -> Dict[str, Any]:
        if self._take_fault("transport"):
            raise TransportError("connection refused")
        return {"name": self.NETWORK_NAME, "chain_id": self.CHAIN_ID}

    async def get_block_number(self) -> int:
        return len(self._blocks)

    def pending_count(self) -> int:
        return len(self._mempool)

    # ---- accounts and deployment -------------------------------------------

    async def onboard_account(self, wallet: KeyMaterial) -> None:
        if not wallet.is_onboarded:
            raise LedgerError(f"Account {wallet.address} has no AES key to onboard")
        self._network_keys[wallet.address] = wallet.aes_key
        logger.debug(f"Onboarded account {wallet.address}")

    async def deploy_election(self, owner: KeyMaterial, question: str,
                              options: Sequence[Tuple[int, str]],
                              layout: Optional[ContractLayout] = None) -> str:
        layout = layout or ContractLayout()
        async with self._lock:
            nonce = self._nonces.get(owner.address, 0)
            seed = owner.public_key_bytes + nonce.to_bytes(8, "big")
            address = address_from_public_key(b"\x04" + hashlib.sha256(seed).digest())

            self._contracts[address] = ElectionRegistry(
                address, owner.address, question, list(options), layout)
            self._nonces[owner.address] = nonce + 1

            deploy_hash = "0x" + hashlib.sha256(b"deploy" + seed).hexdigest()
            self._append_block(deploy_hash, 1)

        logger.info(f"✓ Election contract deployed at {address}")
        return address
