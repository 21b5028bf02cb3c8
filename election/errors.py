"""Client-side error taxonomy for the election workflow."""

from ballot.ballot_crypto import EncryptionUnavailable
from ledger.ledger_gateway import ContractRevert


class VotingError(Exception):
    """Base exception for election client operations"""
    pass


class PreconditionError(VotingError):
    """Operation rejected because the ledger state does not allow it; never retried"""
    pass


class ElectionClosed(PreconditionError):
    pass


class ElectionStillOpen(PreconditionError):
    pass


class ElectionAlreadyClosed(PreconditionError):
    pass


class NotRegistered(PreconditionError):
    pass


class AlreadyVoted(PreconditionError):
    pass


class NotVotedYet(PreconditionError):
    """Authorization attempted before a ballot was cast"""
    pass


class NotOwner(PreconditionError):
    pass


class InvalidRegistration(PreconditionError):
    pass


class ResultsNotAvailable(PreconditionError):
    pass


class StepOutcomeUnknown(VotingError):
    """A step could not be confirmed on the ledger after all retries"""
    pass


class TallyMismatch(VotingError):
    """Published tally disagrees with the authorized ballot count"""
    pass


REVERT_ERRORS = {
    'ElectionClosed': ElectionClosed,
    'ElectionStillOpen': ElectionStillOpen,
    'VoterNotRegistered': NotRegistered,
    'AlreadyVoted': AlreadyVoted,
    'VoteNotCast': NotVotedYet,
    'OnlyOwnerAllowed': NotOwner,
    'EmptyVoterName': InvalidRegistration,
    'InvalidVoterAddress': InvalidRegistration,
    'VotesNotAggregated': ResultsNotAvailable,
    # the network holds no key to read the ballot with
    'AccountNotOnboarded': EncryptionUnavailable,
}


def raise_for_revert(exc: ContractRevert):
    """Re-raise a contract revert as the matching client-side error"""
    error_cls = REVERT_ERRORS.get(exc.reason)
    if error_cls is None:
        raise exc
    raise error_cls(str(exc)) from exc
