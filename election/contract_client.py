import logging
from typing import Any, Dict, Optional

from ballot.ballot_crypto import KeyMaterial
from config.config import ContractAddressMissing, ContractLayout, KeyMaterialMissing
from ledger.ledger_gateway import (
    ContractRevert,
    LedgerGateway,
    TransactionReceipt,
    TransactionTimeout,
)
from .models import ElectionStatus, Voter

logger = logging.getLogger(__name__)


class ContractClient:
    """
    Shared plumbing for clients bound to one election contract and one wallet.

    A transaction whose inclusion timed out is remembered per function; the
    next attempt at the same function waits on that transaction instead of
    broadcasting a second one.
    """

    def __init__(self, gateway: LedgerGateway, contract_address: Optional[str],
                 wallet: Optional[KeyMaterial], layout: Optional[ContractLayout] = None,
                 label: str = "account"):
        if not contract_address:
            raise ContractAddressMissing("Election contract address is not configured")
        if wallet is None:
            raise KeyMaterialMissing(f"No key material for {label}")

        self.gateway = gateway
        self.contract_address = contract_address.lower()
        self.wallet = wallet
        self.layout = layout or ContractLayout()
        self._pending: Dict[str, str] = {}

    @property
    def address(self) -> str:
        return self.wallet.address

    async def _read(self, function: str, *args: Any) -> Any:
        return await self.gateway.call(self.contract_address, function, *args,
                                       sender=self.address)

    async def _submit(self, function: str, *args: Any) -> TransactionReceipt:
        """Send, wait, raise ContractRevert on failure; remember the tx on timeout"""
        tx_hash = await self.gateway.send_transaction(
            self.wallet, self.contract_address, function, *args)
        try:
            receipt = await self.gateway.wait_for_receipt(tx_hash)
        except TransactionTimeout:
            self._pending[function] = tx_hash
            logger.warning(f"{function} {tx_hash[:18]} not confirmed yet, outcome unknown")
            raise
        return self._check(receipt)

    async def _resolve_pending(self, function: str) -> Optional[TransactionReceipt]:
        """Wait out an earlier unconfirmed transaction for `function`, if any"""
        tx_hash = self._pending.get(function)
        if tx_hash is None:
            return None

        receipt = await self.gateway.get_transaction_receipt(tx_hash)
        if receipt is None:
            logger.info(f"Waiting on earlier {function} {tx_hash[:18]}")
            receipt = await self.gateway.wait_for_receipt(tx_hash)
        del self._pending[function]
        logger.info(f"Earlier {function} {tx_hash[:18]} resolved with status {receipt.status}")
        return receipt

    async def _poll_pending(self, function: str) -> Optional[TransactionReceipt]:
        """Receipt of an earlier unconfirmed transaction if it has been included, without waiting"""
        tx_hash = self._pending.get(function)
        if tx_hash is None:
            return None
        receipt = await self.gateway.get_transaction_receipt(tx_hash)
        if receipt is not None:
            del self._pending[function]
        return receipt

    def _check(self, receipt: TransactionReceipt) -> TransactionReceipt:
        if not receipt.succeeded:
            raise ContractRevert(receipt.revert_reason or "reverted",
                                 *receipt.revert_args, tx_hash=receipt.tx_hash)
        return receipt

    def has_pending(self, function: str) -> bool:
        return function in self._pending

    async def get_election_status(self) -> ElectionStatus:
        return ElectionStatus.from_tuple(await self._read("getElectionStatus"))

    async def get_voter(self, address: str) -> Voter:
        return Voter.from_record(await self._read("voters", address))
