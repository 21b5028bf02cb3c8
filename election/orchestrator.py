"""
Aggregation Orchestrator
========================
Drives a closed-out election from whatever phase the ledger reports to a
published tally: close, collect owner authorizations, aggregate, publish.

Every step first re-derives its completion from ledger state, so a run that
crashed or timed out can simply be started again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ledger.ledger_gateway import TransactionTimeout, TransportError
from utils.utils import PerformanceMonitor
from .authority_client import AuthorityClient
from .errors import (
    ElectionAlreadyClosed,
    ElectionStillOpen,
    PreconditionError,
    StepOutcomeUnknown,
    TallyMismatch,
)
from .models import ElectionPhase, Tally, TxOutcome, Voter
from .voter_client import VoterClient

logger = logging.getLogger(__name__)

# failures that leave the step outcome undecided; anything else propagates
RETRYABLE_ERRORS = (TransportError, TransactionTimeout, StepOutcomeUnknown)


@dataclass
class StepResult:
    step: str
    outcome: str  # skipped | completed
    attempts: int
    detail: str = ""


@dataclass
class AggregationReport:
    contract_address: str
    phase: ElectionPhase = ElectionPhase.OPEN
    tally: Optional[Tally] = None
    registered: int = 0
    voted: int = 0
    authorized: int = 0
    excluded_voters: List[str] = field(default_factory=list)
    # authorized, but the ballot could not be read at aggregation
    rejected_voters: List[str] = field(default_factory=list)
    authorizations: Dict[str, str] = field(default_factory=dict)
    steps: List[StepResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contract_address': self.contract_address,
            'phase': self.phase.value,
            'tally': self.tally.to_list() if self.tally else None,
            'turnout': {
                'registered': self.registered,
                'voted': self.voted,
                'authorized': self.authorized,
            },
            'excluded_voters': list(self.excluded_voters),
            'rejected_voters': list(self.rejected_voters),
            'authorizations': dict(self.authorizations),
            'steps': [vars(s) for s in self.steps],
            'warnings': list(self.warnings),
        }


class AggregationOrchestrator:
    """Resumable close -> authorize -> aggregate -> publish pipeline"""

    def __init__(self, authority: AuthorityClient, step_retries: int = 3,
                 retry_delay: float = 0.0,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        if step_retries < 1:
            raise ValueError("step_retries must be at least 1")
        self.authority = authority
        self.step_retries = step_retries
        self.retry_delay = retry_delay
        self.performance_monitor = performance_monitor or PerformanceMonitor()
        self._aggregating = False

    # ---- phase ---------------------------------------------------------------

    async def current_phase(self) -> ElectionPhase:
        status = await self.authority.get_election_status()
        if status.is_open:
            return ElectionPhase.OPEN
        if self._aggregating or self.authority.has_pending("aggregateVotes"):
            return ElectionPhase.AGGREGATING
        aggregation = await self.authority.get_aggregation_status()
        if aggregation.aggregated:
            return ElectionPhase.TALLIED
        return ElectionPhase.CLOSED

    # ---- step runner -----------------------------------------------------------

    async def _run_step(self, name: str,
                        action: Callable[[], Awaitable[TxOutcome]],
                        is_done: Callable[[], Awaitable[bool]]) -> StepResult:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.step_retries + 1):
            if await is_done():
                if attempt == 1:
                    logger.info(f"Step {name}: already complete on ledger, skipping")
                    return StepResult(name, "skipped", 0)
                return StepResult(name, "completed", attempt - 1, str(last_error or ""))

            try:
                with self.performance_monitor.start_operation(name):
                    outcome = await action()
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    f"Step {name} attempt {attempt}/{self.step_retries} undecided: {e}")
            else:
                if outcome is not TxOutcome.PENDING:
                    logger.info(f"✓ Step {name} {outcome.value}")
                    return StepResult(name, "completed", attempt)
                last_error = StepOutcomeUnknown(f"{name} still pending")
                logger.warning(f"Step {name} attempt {attempt}/{self.step_retries} pending")

            if self.retry_delay:
                await asyncio.sleep(self.retry_delay)

        if await is_done():
            return StepResult(name, "completed", self.step_retries, str(last_error or ""))
        raise StepOutcomeUnknown(
            f"Step {name} not confirmed after {self.step_retries} attempts: {last_error}")

    # ---- steps -----------------------------------------------------------------

    async def _is_closed(self) -> bool:
        return not (await self.authority.get_election_status()).is_open

    async def _close(self) -> TxOutcome:
        is_open = await self.authority.toggle_election()
        return TxOutcome.PENDING if is_open else TxOutcome.CONFIRMED

    async def close_election(self) -> StepResult:
        """Close an open election; an already-closed one is a precondition error"""
        if await self._is_closed():
            raise ElectionAlreadyClosed(
                f"Election {self.authority.contract_address} is already closed")
        return await self._run_step("close", self._close, self._is_closed)

    async def authorize_voters(self, voters: Sequence[VoterClient]) -> Dict[str, str]:
        """Have every voter who voted authorize the owner; voters run concurrently"""

        async def authorize(voter: VoterClient) -> str:
            try:
                record = await voter.get_record()
                if not record.is_registered:
                    return "not_registered"
                if not record.has_voted:
                    return "not_voted"
                if record.has_authorized_owner:
                    return TxOutcome.ALREADY_DONE.value
                with self.performance_monitor.start_operation("authorize"):
                    outcome = await voter.authorize_owner()
                return outcome.value
            except (PreconditionError, *RETRYABLE_ERRORS) as e:
                logger.warning(f"Authorization for {voter.name} failed: {e}")
                return f"failed: {e}"

        outcomes = await asyncio.gather(*(authorize(v) for v in voters))
        return {voter.name: outcome for voter, outcome in zip(voters, outcomes)}

    async def _expected_tally_count(self) -> int:
        voters = await self.authority.list_voters()
        rejected = set(await self.authority.list_rejected_voters())
        return sum(1 for v in voters if v.counts_toward_tally and v.address.lower() not in rejected)

    async def _is_aggregated(self) -> bool:
        status = await self.authority.get_aggregation_status()
        if not status.aggregated:
            return False
        return status.tallied_count >= await self._expected_tally_count()

    async def aggregate(self) -> StepResult:
        if not await self._is_closed():
            raise ElectionStillOpen("Election must be closed before aggregation")

        voters = await self.authority.list_voters()
        if not any(v.has_voted for v in voters):
            logger.warning("No votes were cast; the tally will be all zero")

        self._aggregating = True
        try:
            step = await self._run_step(
                "aggregate", self.authority.aggregate_votes, self._is_aggregated)
        finally:
            self._aggregating = False

        self.check_tally(await self.authority.view_results(), await self.authority.list_voters(),
                         await self.authority.list_rejected_voters())
        return step

    async def fetch_results(self, report: Optional[AggregationReport] = None) -> Tally:
        """Publish results and cross-check them against the authorized ballots"""
        published: Dict[str, Tally] = {}

        async def publish() -> TxOutcome:
            published['tally'] = await self.authority.get_results()
            status = await self.authority.get_aggregation_status()
            return TxOutcome.CONFIRMED if status.published else TxOutcome.PENDING

        async def is_published() -> bool:
            return (await self.authority.get_aggregation_status()).published

        step = await self._run_step("publish", publish, is_published)
        if report is not None:
            report.steps.append(step)

        tally = await self.authority.view_results()
        if 'tally' in published and published['tally'] != tally:
            raise TallyMismatch(
                f"Published tally {published['tally'].counts_by_label()} differs "
                f"from stored results {tally.counts_by_label()}")
        self.check_tally(tally, await self.authority.list_voters(),
                         await self.authority.list_rejected_voters())
        return tally

    @staticmethod
    def check_tally(tally: Tally, voters: Sequence[Voter], rejected: Sequence[str] = ()):
        """Total votes must equal the number of voters who voted and authorized,
        less the authorized ballots the contract rejected as unreadable"""
        rejected = {address.lower() for address in rejected}
        expected = sum(1 for v in voters
                       if v.counts_toward_tally and v.address.lower() not in rejected)
        if tally.total_votes != expected:
            raise TallyMismatch(
                f"Tally counts {tally.total_votes} votes but {expected} were authorized")

    # ---- full run ----------------------------------------------------------------

    async def run(self, voters: Sequence[VoterClient] = ()) -> AggregationReport:
        report = AggregationReport(contract_address=self.authority.contract_address)

        phase = await self.current_phase()
        logger.info(f"Orchestrating election {report.contract_address[:10]}... from phase {phase.value}")

        if phase is ElectionPhase.OPEN:
            report.steps.append(await self.close_election())
        else:
            report.steps.append(StepResult("close", "skipped", 0))

        if voters:
            report.authorizations = await self.authorize_voters(voters)
            failed = [n for n, o in report.authorizations.items() if o.startswith("failed")]
            for name in failed:
                report.warnings.append(f"Authorization for {name} failed")

        report.steps.append(await self.aggregate())
        report.tally = await self.fetch_results(report)

        roster = await self.authority.list_voters()
        report.registered = len(roster)
        report.voted = sum(1 for v in roster if v.has_voted)
        report.authorized = sum(1 for v in roster if v.counts_toward_tally)
        report.excluded_voters = [
            v.name for v in roster if v.has_voted and not v.has_authorized_owner]
        if report.tally.is_all_zero:
            report.warnings.append("No votes counted; tally is all zero")
        for name in report.excluded_voters:
            logger.warning(f"Ballot from {name} excluded: owner not authorized")

        rejected = set(await self.authority.list_rejected_voters())
        report.rejected_voters = [v.name for v in roster if v.address.lower() in rejected]
        for name in report.rejected_voters:
            report.warnings.append(f"Ballot from {name} could not be read and was not counted")

        report.phase = await self.current_phase()
        logger.info(f"✓ Election tallied: {report.tally.counts_by_label()}")
        return report
