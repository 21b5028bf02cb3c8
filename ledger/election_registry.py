"""
Election Registry contract simulation.

Holds the voter roster, the open/closed flag, per-voter ballot state and the
tally. Only reachable through a LedgerGateway; every mutating entry point
either completes or raises ContractRevert before touching state.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from ballot.ballot_crypto import (
    CAST_VOTE_SELECTOR,
    Ballot,
    BallotBindingError,
    decrypt_ballot,
    encode_ciphertext,
    verify_ballot,
)
from config.config import ContractLayout
from .ledger_gateway import ZERO_ADDRESS, ContractRevert, EventLog

logger = logging.getLogger(__name__)


@dataclass
class CallContext:
    """Execution context handed to the contract by the chain"""
    sender: str
    sender_public_key: Optional[bytes] = None
    # network-held onboarding keys; the decryption capability
    decryption_keys: Mapping[str, bytes] = field(default_factory=dict)


@dataclass
class VoterRecord:
    name: str
    voter_id: str
    encrypted_vote: bytes = b""
    is_registered: bool = True
    has_voted: bool = False
    has_authorized_owner: bool = False


# ABI name -> (method, mutates state)
ABI: Dict[str, Tuple[str, bool]] = {
    'addVoter': ('add_voter', True),
    'isVoterRegistered': ('is_voter_registered', False),
    'castVote': ('cast_vote', True),
    'authorizeOwnerToReadVote': ('authorize_owner_to_read_vote', True),
    'toggleElection': ('toggle_election', True),
    'getElectionStatus': ('get_election_status', False),
    'aggregateVotes': ('aggregate_votes', True),
    'getResults': ('get_results', True),
    'viewResults': ('view_results', False),
    'voters': ('voters', False),
    'getVotingQuestion': ('get_voting_question', False),
    'getVotingOptions': ('get_voting_options', False),
    'voterAddresses': ('voter_addresses', False),
    'getVoterAddresses': ('get_voter_addresses', False),
    'getRegisteredVoterCount': ('get_registered_voter_count', False),
    'getAggregationStatus': ('get_aggregation_status', False),
    'getRejectedVoters': ('get_rejected_voters', False),
}


def is_mutating(function: str) -> bool:
    if function not in ABI:
        raise ContractRevert("UnknownFunction", function)
    return ABI[function][1]


def _normalize_address(address: Any) -> Optional[str]:
    if not isinstance(address, str):
        return None
    address = address.lower()
    if not address.startswith("0x") or len(address) != 42:
        return None
    try:
        bytes.fromhex(address[2:])
    except ValueError:
        return None
    return address


class ElectionRegistry:
    """Confidential election contract"""

    def __init__(self, address: str, owner: str, question: str,
                 options: List[Tuple[int, str]], layout: ContractLayout):
        if layout.results_size is not None and layout.results_size != len(options):
            raise ValueError(
                f"Layout pins {layout.results_size} results but {len(options)} options were given")

        self.address = address.lower()
        self.owner = owner.lower()
        self.question = question
        self.options = [(int(i), str(label)) for i, label in options]
        self.layout = layout

        self.election_opened = True
        self._voters: Dict[str, VoterRecord] = {}
        self._voter_addresses: List[str] = []

        self._vote_counts: Dict[int, int] = {i: 0 for i, _ in self.options}
        self._tallied: Set[str] = set()
        # authorized ballots that can never be read; skipped on re-aggregation
        self._rejected: List[str] = []
        self._aggregated = False
        self._published = False

        self._events: List[EventLog] = []

    # ---- plumbing ----------------------------------------------------------

    def dispatch(self, ctx: CallContext, function: str, args: List[Any]) -> Any:
        is_mutating(function)
        method = getattr(self, ABI[function][0])
        try:
            return method(ctx, *args)
        except TypeError as e:
            raise ContractRevert("InvalidArguments", function, str(e)) from e

    def drain_events(self) -> List[EventLog]:
        events, self._events = self._events, []
        return events

    def _emit(self, event: str, **args: Any):
        self._events.append(EventLog(contract=self.address, name=event, args=args))

    def _only_owner(self, ctx: CallContext):
        if ctx.sender != self.owner:
            raise ContractRevert("OnlyOwnerAllowed", ctx.sender)

    def _only_closed(self):
        if self.election_opened:
            raise ContractRevert("ElectionStillOpen")

    def _results(self) -> List[Tuple[int, str, int]]:
        return [(i, label, self._vote_counts[i]) for i, label in self.options]

    # ---- registration ------------------------------------------------------

    def add_voter(self, ctx: CallContext, name: str, voter_id: str):
        self._only_owner(ctx)
        if not isinstance(name, str) or not name.strip():
            raise ContractRevert("EmptyVoterName")
        address = _normalize_address(voter_id)
        if address is None or address == ZERO_ADDRESS:
            raise ContractRevert("InvalidVoterAddress", voter_id)
        if address in self._voters:
            raise ContractRevert("VoterAlreadyRegistered", address)

        self._voters[address] = VoterRecord(name=name.strip(), voter_id=address)
        self._voter_addresses.append(address)
        self._emit("VoterRegistered", name=name.strip(), voter=address)

    def is_voter_registered(self, ctx: CallContext, voter_id: str) -> bool:
        record = self._voters.get(_normalize_address(voter_id) or "")
        return bool(record and record.is_registered)

    def voters(self, ctx: CallContext, voter_id: str) -> Tuple[str, str, Any, bool, bool, bool]:
        address = _normalize_address(voter_id) or ZERO_ADDRESS
        record = self._voters.get(address)
        if record is None:
            # unset mapping slot
            record = VoterRecord(name="", voter_id=ZERO_ADDRESS, is_registered=False)
        return (
            record.name,
            record.voter_id,
            encode_ciphertext(record.encrypted_vote, self.layout.ciphertext_encoding),
            record.is_registered,
            record.has_voted,
            record.has_authorized_owner,
        )

    def voter_addresses(self, ctx: CallContext, index: int) -> str:
        if not isinstance(index, int) or not 0 <= index < len(self._voter_addresses):
            raise ContractRevert("IndexOutOfBounds", index)
        return self._voter_addresses[index]

    def get_voter_addresses(self, ctx: CallContext) -> List[str]:
        return list(self._voter_addresses)

    def get_registered_voter_count(self, ctx: CallContext) -> int:
        return len(self._voter_addresses)

    # ---- election ----------------------------------------------------------

    def get_voting_question(self, ctx: CallContext) -> str:
        return self.question

    def get_voting_options(self, ctx: CallContext) -> List[Tuple[int, str]]:
        return list(self.options)

    def get_election_status(self, ctx: CallContext) -> Tuple[bool, int, str]:
        return (self.election_opened, len(self._voter_addresses), self.owner)

    def toggle_election(self, ctx: CallContext):
        self._only_owner(ctx)
        self.election_opened = not self.election_opened
        self._emit("ElectionStateChanged", is_open=self.election_opened)

    # ---- voting ------------------------------------------------------------

    def cast_vote(self, ctx: CallContext, encrypted_vote: Dict[str, str]):
        if not self.election_opened:
            raise ContractRevert("ElectionClosed")
        record = self._voters.get(ctx.sender)
        if record is None or not record.is_registered:
            raise ContractRevert("VoterNotRegistered", ctx.sender)
        if record.has_voted:
            raise ContractRevert("AlreadyVoted", ctx.sender)

        try:
            ballot = Ballot.from_dict(encrypted_vote)
        except (KeyError, TypeError, ValueError) as e:
            raise ContractRevert("InvalidBallot", ctx.sender) from e
        if ctx.sender_public_key is None or not verify_ballot(
                ballot, self.address, CAST_VOTE_SELECTOR, ctx.sender_public_key):
            raise ContractRevert("InvalidBallot", ctx.sender)
        if ctx.sender not in ctx.decryption_keys:
            raise ContractRevert("AccountNotOnboarded", ctx.sender)

        record.encrypted_vote = ballot.ciphertext
        record.has_voted = True
        self._emit("VoteCast", voter=ctx.sender)

    def authorize_owner_to_read_vote(self, ctx: CallContext):
        record = self._voters.get(ctx.sender)
        if record is None or not record.is_registered:
            raise ContractRevert("VoterNotRegistered", ctx.sender)
        if not record.has_voted:
            raise ContractRevert("VoteNotCast", ctx.sender)
        if record.has_authorized_owner:
            raise ContractRevert("OwnerAlreadyAuthorized", ctx.sender)

        record.has_authorized_owner = True
        self._emit("OwnerAuthorized", voter=ctx.sender)

    # ---- tally -------------------------------------------------------------

    def _read_ballot(self, ctx: CallContext, address: str, record: VoterRecord) -> Optional[int]:
        key = ctx.decryption_keys.get(address)
        if key is None:
            logger.warning(f"No onboarding key for {address}, ballot unreadable")
            return None
        try:
            option = decrypt_ballot(
                record.encrypted_vote, key, self.address, CAST_VOTE_SELECTOR, address)
        except BallotBindingError:
            logger.warning(f"Ballot from {address} failed to decrypt")
            return None
        if option not in self._vote_counts:
            logger.warning(f"Ballot from {address} selects unknown option {option}")
            return None
        return option

    def _aggregate(self, ctx: CallContext) -> Tuple[int, int]:
        counted = 0
        excluded = 0
        for address in self._voter_addresses:
            record = self._voters[address]
            if not record.has_voted or address in self._tallied or address in self._rejected:
                continue
            if not record.has_authorized_owner:
                excluded += 1
                continue

            option = self._read_ballot(ctx, address, record)
            if option is None:
                self._rejected.append(address)
                excluded += 1
                continue

            self._vote_counts[option] += 1
            self._tallied.add(address)
            counted += 1

        self._aggregated = True
        return counted, excluded

    def aggregate_votes(self, ctx: CallContext):
        self._only_owner(ctx)
        self._only_closed()
        counted, excluded = self._aggregate(ctx)
        self._emit("VotesAggregated", counted=counted, excluded=excluded,
                   total_tallied=len(self._tallied))

    def get_results(self, ctx: CallContext) -> List[Tuple[int, str, int]]:
        self._only_owner(ctx)
        self._only_closed()
        counted, excluded = self._aggregate(ctx)
        if counted:
            self._emit("VotesAggregated", counted=counted, excluded=excluded,
                       total_tallied=len(self._tallied))
        self._published = True
        self._emit("ResultsPublished", total_tallied=len(self._tallied))
        return self._results()

    def view_results(self, ctx: CallContext) -> List[Tuple[int, str, int]]:
        self._only_closed()
        if not self._aggregated:
            raise ContractRevert("VotesNotAggregated")
        return self._results()

    def get_aggregation_status(self, ctx: CallContext) -> Tuple[bool, bool, int]:
        return (self._aggregated, self._published, len(self._tallied))

    def get_rejected_voters(self, ctx: CallContext) -> List[str]:
        return list(self._rejected)
