"""
Voter Client
============
Per-voter operations against the election contract: onboarding, casting an
encrypted ballot, and authorizing the owner to read it.
"""

import logging
from typing import Iterable, List, Optional

from ballot.ballot_crypto import CAST_VOTE_SELECTOR, KeyMaterial, encrypt_ballot
from config.config import ContractLayout
from ledger.ledger_gateway import ContractRevert, LedgerError, LedgerGateway, TransactionTimeout
from .contract_client import ContractClient
from .errors import AlreadyVoted, ElectionClosed, NotRegistered, NotVotedYet, raise_for_revert
from .models import TxOutcome, Voter, VoteState

logger = logging.getLogger(__name__)


class VoterClient(ContractClient):
    """One voter's view of an election"""

    def __init__(self, name: str, gateway: LedgerGateway, contract_address: Optional[str],
                 wallet: Optional[KeyMaterial], option_ids: Optional[Iterable[int]] = None,
                 layout: Optional[ContractLayout] = None):
        super().__init__(gateway, contract_address, wallet, layout, label=f"voter {name}")
        self.name = name
        self._option_ids: Optional[List[int]] = list(option_ids) if option_ids is not None else None
        # last confirmed local view; the ledger stays authoritative
        self.has_voted = False
        self.has_authorized_owner = False

    async def onboard(self):
        """Provision this voter's AES key with the network"""
        await self.gateway.onboard_account(self.wallet)
        logger.info(f"✓ {self.name} onboarded ({self.address[:10]}...)")

    async def register(self, authority) -> Voter:
        """Ask the election authority to register this voter"""
        return await authority.register_voter(self.name, self.address)

    async def get_record(self) -> Voter:
        return await self.get_voter(self.address)

    async def _allowed_options(self) -> List[int]:
        if self._option_ids is None:
            options = await self._read("getVotingOptions")
            self._option_ids = [int(option_id) for option_id, _ in options]
        return self._option_ids

    async def cast_vote(self, option_id: int) -> TxOutcome:
        if self.has_pending("castVote"):
            try:
                receipt = await self._resolve_pending("castVote")
            except TransactionTimeout:
                return TxOutcome.PENDING
            if receipt.succeeded:
                self.has_voted = True
                return TxOutcome.CONFIRMED

        status = await self.get_election_status()
        if not status.is_open:
            raise ElectionClosed(f"Election {self.contract_address} is closed")
        record = await self.get_record()
        if not record.is_registered:
            raise NotRegistered(f"{self.name} ({self.address}) is not registered")
        if record.has_voted:
            self.has_voted = True
            raise AlreadyVoted(f"{self.name} has already voted")

        ballot = encrypt_ballot(option_id, self.contract_address, CAST_VOTE_SELECTOR,
                                self.wallet, await self._allowed_options())
        try:
            await self._submit("castVote", ballot)
        except ContractRevert as e:
            raise_for_revert(e)
        except TransactionTimeout:
            return await self._observe_vote()

        self.has_voted = True
        logger.info(f"✓ {self.name} cast an encrypted vote")
        return TxOutcome.CONFIRMED

    async def _observe_vote(self) -> TxOutcome:
        await self._poll_pending("castVote")
        record = await self.get_record()
        if record.has_voted:
            self.has_voted = True
            return TxOutcome.CONFIRMED
        return TxOutcome.PENDING

    async def authorize_owner(self) -> TxOutcome:
        """Grant the election owner permission to decrypt this voter's ballot"""
        if self.has_pending("authorizeOwnerToReadVote"):
            try:
                receipt = await self._resolve_pending("authorizeOwnerToReadVote")
            except TransactionTimeout:
                return TxOutcome.PENDING
            if receipt.succeeded:
                self.has_authorized_owner = True
                return TxOutcome.CONFIRMED

        record = await self.get_record()
        if not record.is_registered:
            raise NotRegistered(f"{self.name} ({self.address}) is not registered")
        if not record.has_voted:
            raise NotVotedYet(f"{self.name} has not voted yet")
        if record.has_authorized_owner:
            self.has_authorized_owner = True
            logger.info(f"{self.name} already authorized the owner")
            return TxOutcome.ALREADY_DONE

        try:
            await self._submit("authorizeOwnerToReadVote")
        except ContractRevert as e:
            if e.reason == "OwnerAlreadyAuthorized":
                self.has_authorized_owner = True
                return TxOutcome.ALREADY_DONE
            raise_for_revert(e)
        except TransactionTimeout:
            await self._poll_pending("authorizeOwnerToReadVote")
            record = await self.get_record()
            if record.has_authorized_owner:
                self.has_authorized_owner = True
                return TxOutcome.CONFIRMED
            return TxOutcome.PENDING

        self.has_authorized_owner = True
        logger.info(f"✓ {self.name} authorized the owner to read their vote")
        return TxOutcome.CONFIRMED

    async def vote_state(self) -> VoteState:
        try:
            record = await self.get_record()
        except LedgerError as e:
            logger.warning(f"Could not read voting state for {self.name}: {e}")
            return VoteState.UNKNOWN
        return VoteState.VOTED if record.has_voted else VoteState.NOT_VOTED

    async def check_voted(self) -> bool:
        """True only when the ledger confirms a vote; read failures report False"""
        return await self.vote_state() is VoteState.VOTED
