"""Voter and authority clients plus the aggregation orchestrator."""

from .errors import (
    VotingError,
    PreconditionError,
    ElectionClosed,
    ElectionStillOpen,
    ElectionAlreadyClosed,
    NotRegistered,
    AlreadyVoted,
    NotVotedYet,
    NotOwner,
    InvalidRegistration,
    ResultsNotAvailable,
    StepOutcomeUnknown,
    TallyMismatch,
    raise_for_revert,
)
from .models import (
    ElectionPhase,
    VoteState,
    TxOutcome,
    Voter,
    ElectionStatus,
    AggregationStatus,
    TallyEntry,
    Tally,
)
from .single_flight import SingleFlight
from .voter_client import VoterClient
from .authority_client import AuthorityClient
from .orchestrator import AggregationOrchestrator, AggregationReport, StepResult

__all__ = [
    'VoterClient',
    'AuthorityClient',
    'AggregationOrchestrator',
    'AggregationReport',
    'StepResult',
    'SingleFlight',

    'ElectionPhase',
    'VoteState',
    'TxOutcome',
    'Voter',
    'ElectionStatus',
    'AggregationStatus',
    'TallyEntry',
    'Tally',

    'VotingError',
    'PreconditionError',
    'ElectionClosed',
    'ElectionStillOpen',
    'ElectionAlreadyClosed',
    'NotRegistered',
    'AlreadyVoted',
    'NotVotedYet',
    'NotOwner',
    'InvalidRegistration',
    'ResultsNotAvailable',
    'StepOutcomeUnknown',
    'TallyMismatch',
    'raise_for_revert',
]
