"""Typed views over the raw tuples returned by the election contract."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from ballot.ballot_crypto import decode_ciphertext
from config.config import ContractLayoutMismatch


class ElectionPhase(Enum):
    OPEN = "open"
    CLOSED = "closed"
    AGGREGATING = "aggregating"
    TALLIED = "tallied"


class VoteState(Enum):
    VOTED = "voted"
    NOT_VOTED = "not_voted"
    UNKNOWN = "unknown"


class TxOutcome(Enum):
    CONFIRMED = "confirmed"
    ALREADY_DONE = "already_done"
    # broadcast but inclusion not observed; re-query before acting again
    PENDING = "pending"


@dataclass(frozen=True)
class Voter:
    name: str
    address: str
    encrypted_vote: Optional[bytes]
    is_registered: bool
    has_voted: bool
    has_authorized_owner: bool

    @classmethod
    def from_record(cls, record: Sequence[Any]) -> "Voter":
        name, address, encrypted_vote, is_registered, has_voted, has_authorized_owner = record
        return cls(
            name=name,
            address=address,
            encrypted_vote=decode_ciphertext(encrypted_vote),
            is_registered=bool(is_registered),
            has_voted=bool(has_voted),
            has_authorized_owner=bool(has_authorized_owner),
        )

    @property
    def counts_toward_tally(self) -> bool:
        return self.has_voted and self.has_authorized_owner


@dataclass(frozen=True)
class ElectionStatus:
    is_open: bool
    voter_count: int
    owner: str

    @classmethod
    def from_tuple(cls, raw: Sequence[Any]) -> "ElectionStatus":
        is_open, voter_count, owner = raw
        return cls(bool(is_open), int(voter_count), owner)


@dataclass(frozen=True)
class AggregationStatus:
    aggregated: bool
    published: bool
    tallied_count: int

    @classmethod
    def from_tuple(cls, raw: Sequence[Any]) -> "AggregationStatus":
        aggregated, published, tallied_count = raw
        return cls(bool(aggregated), bool(published), int(tallied_count))


@dataclass(frozen=True)
class TallyEntry:
    option_id: int
    option_label: str
    vote_count: int


@dataclass(frozen=True)
class Tally:
    entries: Tuple[TallyEntry, ...]

    @classmethod
    def from_results(cls, raw: Sequence[Sequence[Any]],
                     expected_size: Optional[int] = None) -> "Tally":
        if expected_size is not None and len(raw) != expected_size:
            raise ContractLayoutMismatch(
                f"Expected {expected_size} result entries, contract returned {len(raw)}")
        return cls(tuple(
            TallyEntry(int(option_id), str(label), int(count))
            for option_id, label, count in raw
        ))

    @property
    def total_votes(self) -> int:
        return sum(e.vote_count for e in self.entries)

    @property
    def is_all_zero(self) -> bool:
        return self.total_votes == 0

    def count_for(self, option_id: int) -> int:
        for entry in self.entries:
            if entry.option_id == option_id:
                return entry.vote_count
        raise KeyError(option_id)

    def counts_by_label(self) -> Dict[str, int]:
        return {e.option_label: e.vote_count for e in self.entries}

    def to_list(self):
        return [
            {'option_id': e.option_id, 'option_label': e.option_label, 'vote_count': e.vote_count}
            for e in self.entries
        ]
