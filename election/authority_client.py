"""
Authority Client
================
Owner-side operations: roster management, closing the election, and the
aggregation / result publication path. Aggregation and publication for one
election never run concurrently from the same process.
"""

import logging
from typing import List, Optional

from ballot.ballot_crypto import KeyMaterial
from config.config import ContractLayout, VoteOption
from ledger.ledger_gateway import ContractRevert, LedgerGateway, TransactionTimeout
from .contract_client import ContractClient
from .errors import ElectionStillOpen, StepOutcomeUnknown, raise_for_revert
from .models import AggregationStatus, Tally, TxOutcome, Voter
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)


class AuthorityClient(ContractClient):
    """Election owner's client"""

    def __init__(self, gateway: LedgerGateway, contract_address: Optional[str],
                 wallet: Optional[KeyMaterial], layout: Optional[ContractLayout] = None,
                 flight_guard: Optional[SingleFlight] = None):
        super().__init__(gateway, contract_address, wallet, layout, label="election owner")
        self._flights = flight_guard or SingleFlight()

    # ---- queries -----------------------------------------------------------

    async def get_aggregation_status(self) -> AggregationStatus:
        return AggregationStatus.from_tuple(await self._read("getAggregationStatus"))

    async def get_voting_question(self) -> str:
        return await self._read("getVotingQuestion")

    async def get_voting_options(self) -> List[VoteOption]:
        return [VoteOption(int(i), label) for i, label in await self._read("getVotingOptions")]

    async def is_voter_registered(self, address: str) -> bool:
        return bool(await self._read("isVoterRegistered", address))

    async def list_voters(self) -> List[Voter]:
        addresses = await self._read("getVoterAddresses")
        return [await self.get_voter(address) for address in addresses]

    async def list_rejected_voters(self) -> List[str]:
        """Addresses whose authorized ballot could not be read at aggregation"""
        return [address.lower() for address in await self._read("getRejectedVoters")]

    # ---- roster ------------------------------------------------------------

    async def register_voter(self, name: str, address: str) -> Voter:
        """Register a voter; a voter already on the roster is left untouched"""
        if await self.is_voter_registered(address):
            logger.info(f"{name} ({address[:10]}...) already registered, skipping")
            return await self.get_voter(address)

        try:
            await self._submit("addVoter", name, address)
        except ContractRevert as e:
            if e.reason != "VoterAlreadyRegistered":
                raise_for_revert(e)
            logger.info(f"{name} was registered concurrently")
        except TransactionTimeout:
            self._pending.pop("addVoter", None)
            voter = await self.get_voter(address)
            if not voter.is_registered:
                logger.warning(f"Registration of {name} still pending")
            return voter

        logger.info(f"✓ Registered voter {name} ({address[:10]}...)")
        return await self.get_voter(address)

    # ---- lifecycle ---------------------------------------------------------

    async def toggle_election(self) -> bool:
        """Flip open/closed and return the new state"""
        if self.has_pending("toggleElection"):
            try:
                receipt = await self._resolve_pending("toggleElection")
            except TransactionTimeout as e:
                raise StepOutcomeUnknown("Earlier toggleElection still unconfirmed") from e
            # an earlier toggle landed; sending another would undo it
            if receipt.succeeded:
                return (await self.get_election_status()).is_open

        try:
            await self._submit("toggleElection")
        except ContractRevert as e:
            raise_for_revert(e)
        except TransactionTimeout as e:
            receipt = await self._poll_pending("toggleElection")
            if receipt is None:
                raise StepOutcomeUnknown("toggleElection not confirmed") from e
            if not receipt.succeeded:
                raise_for_revert(ContractRevert(receipt.revert_reason or "reverted",
                                                *receipt.revert_args, tx_hash=receipt.tx_hash))

        is_open = (await self.get_election_status()).is_open
        logger.info(f"✓ Election is now {'open' if is_open else 'closed'}")
        return is_open

    # ---- aggregation -------------------------------------------------------

    async def _require_closed(self):
        status = await self.get_election_status()
        if status.is_open:
            raise ElectionStillOpen("Election must be closed before aggregation")

    async def aggregate_votes(self) -> TxOutcome:
        return await self._flights.run(self.contract_address, "aggregateVotes", self._aggregate)

    async def _aggregate(self) -> TxOutcome:
        if self.has_pending("aggregateVotes"):
            try:
                receipt = await self._resolve_pending("aggregateVotes")
            except TransactionTimeout:
                return TxOutcome.PENDING
            if receipt.succeeded:
                return TxOutcome.CONFIRMED

        await self._require_closed()
        try:
            receipt = await self._submit("aggregateVotes")
        except ContractRevert as e:
            raise_for_revert(e)
        except TransactionTimeout:
            receipt = await self._poll_pending("aggregateVotes")
            if receipt is None:
                return TxOutcome.PENDING
            if not receipt.succeeded:
                raise_for_revert(ContractRevert(receipt.revert_reason or "reverted",
                                                *receipt.revert_args, tx_hash=receipt.tx_hash))
            return TxOutcome.CONFIRMED

        for event in receipt.events("VotesAggregated"):
            logger.info(
                f"✓ Votes aggregated: {event.args['counted']} counted, "
                f"{event.args['excluded']} excluded, {event.args['total_tallied']} tallied in total")
        return TxOutcome.CONFIRMED

    async def get_results(self) -> Tally:
        """Compute and publish the tally; returns the values from a static call"""
        return await self._flights.run(self.contract_address, "getResults", self._publish)

    async def _publish(self) -> Tally:
        await self._require_closed()
        try:
            raw = await self.gateway.call(self.contract_address, "getResults", sender=self.address)
        except ContractRevert as e:
            raise_for_revert(e)
        tally = Tally.from_results(raw, self.layout.results_size)

        if self.has_pending("getResults"):
            try:
                receipt = await self._resolve_pending("getResults")
            except TransactionTimeout:
                logger.warning("Earlier getResults still unconfirmed, not resubmitting")
                return tally
            if receipt.succeeded:
                return tally

        try:
            await self._submit("getResults")
        except ContractRevert as e:
            raise_for_revert(e)
        except TransactionTimeout:
            logger.warning("Result publication not confirmed yet; tally computed from static call")
            return tally

        logger.info(f"✓ Results published: {tally.counts_by_label()}")
        return tally

    async def view_results(self) -> Tally:
        try:
            raw = await self._read("viewResults")
        except ContractRevert as e:
            raise_for_revert(e)
        return Tally.from_results(raw, self.layout.results_size)
