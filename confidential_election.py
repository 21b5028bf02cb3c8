#!/usr/bin/env python3
"""
Confidential Election System
============================
Wires configuration, the ledger gateway, the election contract, voter and
authority clients and the aggregation orchestrator into one object.

Typical flow:
    system = ConfidentialElectionSystem(load_config())
    await system.initialize()
    await system.register_all_voters()
    await system.cast_votes({"Bob": 1, "Bea": 2})
    report = await system.run_aggregation()
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ballot.ballot_crypto import BallotError, KeyMaterial, generate_key_material
from config.config import SystemConfig
from election.authority_client import AuthorityClient
from election.errors import PreconditionError
from election.models import TxOutcome, Voter
from election.orchestrator import AggregationOrchestrator, AggregationReport
from election.single_flight import SingleFlight
from election.voter_client import VoterClient
from ledger.ledger_gateway import LedgerError, LedgerGateway
from ledger.memory_gateway import InMemoryLedgerGateway
from utils.utils import PerformanceMonitor, save_results

logger = logging.getLogger(__name__)

# ============================================================================
# SYSTEM FACADE
# ============================================================================


class ConfidentialElectionSystem:
    """One election contract, its owner and its configured voters"""

    def __init__(self, config: SystemConfig, gateway: Optional[LedgerGateway] = None):
        self.config = config
        self.gateway = gateway or InMemoryLedgerGateway(
            max_retries=config.ledger.max_retries,
            base_delay=config.ledger.base_delay,
            confirmation_timeout=config.ledger.confirmation_timeout,
        )
        self.performance_monitor = PerformanceMonitor()
        self.flight_guard = SingleFlight()

        self.authority: Optional[AuthorityClient] = None
        self.voters: Dict[str, VoterClient] = {}
        self.orchestrator: Optional[AggregationOrchestrator] = None

        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def contract_address(self) -> Optional[str]:
        return self.config.ledger.contract_address

    def _provision_missing_keys(self):
        if self.config.owner_private_key is None:
            self.config.owner_private_key = generate_key_material().private_key_hex()
            logger.info("Generated owner key")
        for voter in self.config.voters:
            if voter.private_key is None or voter.aes_key is None:
                wallet = generate_key_material()
                voter.private_key = voter.private_key or wallet.private_key_hex()
                voter.aes_key = voter.aes_key or wallet.aes_key_hex()
                logger.info(f"Generated key material for {voter.name}")

    async def initialize(self):
        """Validate config, deploy the contract if none is configured, build clients"""
        async with self._lock:
            if self._initialized:
                return

            logger.info("Initializing confidential election system...")
            if self.config.generate_missing_keys:
                self._provision_missing_keys()
            self.config.validate(require_contract=False)

            if not await self.gateway.check_connectivity():
                raise LedgerError("Ledger is unreachable")

            owner = KeyMaterial.from_hex(self.config.owner_private_key)
            if not self.config.ledger.contract_address:
                self.config.ledger.contract_address = await self.gateway.deploy_election(
                    owner,
                    self.config.voting_question,
                    [(o.id, o.label) for o in self.config.options],
                    self.config.layout,
                )
            self.config.validate()

            self.authority = AuthorityClient(
                self.gateway, self.contract_address, owner,
                layout=self.config.layout, flight_guard=self.flight_guard)

            for voter in self.config.voters:
                wallet = KeyMaterial.from_hex(voter.private_key, voter.aes_key)
                self.voters[voter.name] = VoterClient(
                    voter.name, self.gateway, self.contract_address, wallet,
                    option_ids=self.config.option_ids, layout=self.config.layout)

            self.orchestrator = AggregationOrchestrator(
                self.authority,
                step_retries=self.config.ledger.step_retries,
                retry_delay=self.config.ledger.base_delay,
                performance_monitor=self.performance_monitor,
            )

            self._initialized = True
            logger.info(
                f"✓ System ready: contract {self.contract_address}, {len(self.voters)} voters")

    async def _ensure_initialized(self):
        if not self._initialized:
            await self.initialize()

    def get_voter(self, name: str) -> VoterClient:
        if name not in self.voters:
            raise KeyError(f"Unknown voter {name!r}")
        return self.voters[name]

    # ---- voting phase --------------------------------------------------------

    async def register_all_voters(self) -> List[Voter]:
        """Onboard and register every configured voter; already registered ones are skipped"""
        await self._ensure_initialized()
        records = []
        for voter in self.voters.values():
            with self.performance_monitor.start_operation("register"):
                await voter.onboard()
                records.append(await voter.register(self.authority))
        logger.info(f"✓ {sum(1 for r in records if r.is_registered)} voters registered")
        return records

    async def cast_votes(self, votes: Mapping[str, int]) -> Dict[str, str]:
        """Cast votes concurrently; returns a per-voter outcome"""
        await self._ensure_initialized()

        async def cast(name: str, option_id: int) -> str:
            if name not in self.voters:
                logger.warning(f"Ignoring vote for unknown voter {name!r}")
                return "rejected: UnknownVoter"
            try:
                with self.performance_monitor.start_operation("cast_vote"):
                    outcome = await self.get_voter(name).cast_vote(option_id)
                return outcome.value
            except (PreconditionError, BallotError) as e:
                logger.warning(f"{name} could not vote: {e}")
                return f"rejected: {e.__class__.__name__}"

        names = list(votes)
        outcomes = await asyncio.gather(*(cast(n, votes[n]) for n in names))
        return dict(zip(names, outcomes))

    async def authorize_owner(self, names: Optional[List[str]] = None) -> Dict[str, TxOutcome]:
        await self._ensure_initialized()
        names = names if names is not None else list(self.voters)
        return {name: await self.get_voter(name).authorize_owner() for name in names}

    # ---- tally phase ---------------------------------------------------------

    async def run_aggregation(self, authorize: bool = True) -> AggregationReport:
        """Close (if open), collect authorizations, aggregate and publish"""
        await self._ensure_initialized()
        voters = list(self.voters.values()) if authorize else []
        return await self.orchestrator.run(voters)

    def verify_ledger(self) -> bool:
        """Verify the block hash chain when the gateway keeps one"""
        if not isinstance(self.gateway, InMemoryLedgerGateway):
            return True
        ok, errors = self.gateway.verify_chain()
        for error in errors:
            logger.error(f"✗ {error}")
        return ok

    def get_system_metrics(self) -> Dict[str, Any]:
        return {
            'contract_address': self.contract_address,
            'voters': len(self.voters),
            'performance': self.performance_monitor.get_summary(),
        }

    def build_results(self, report: AggregationReport) -> Dict[str, Any]:
        results = report.to_dict()
        results['election'] = {
            'contract_address': self.contract_address,
            'question': self.config.voting_question,
            'phase': report.phase,
        }
        results['integrity_checks'] = {
            'sum_law_holds': (report.tally is not None and
                              report.tally.total_votes == report.authorized - len(report.rejected_voters)),
            'ledger_hash_chain_valid': self.verify_ledger(),
        }
        results['performance_metrics'] = self.performance_monitor.get_summary()
        return results


# ============================================================================
# DEMO
# ============================================================================


async def demonstrate_confidential_election(
    config: SystemConfig,
    votes: Optional[Mapping[str, int]] = None,
    authorize: bool = True,
    results_path: Optional[Path] = None,
) -> AggregationReport:
    """Run a complete election against the in-memory chain"""
    system = ConfidentialElectionSystem(config)
    await system.initialize()

    question = await system.authority.get_voting_question()
    options = await system.authority.get_voting_options()
    logger.info(f"Question: {question}")
    for option in options:
        logger.info(f"  {option.id}. {option.label}")

    await system.register_all_voters()

    if votes is None:
        option_ids = config.option_ids
        votes = {name: option_ids[i % len(option_ids)] for i, name in enumerate(system.voters)}
    outcomes = await system.cast_votes(votes)
    for name, outcome in outcomes.items():
        logger.info(f"  {name}: {outcome}")

    report = await system.run_aggregation(authorize=authorize)

    if results_path is not None:
        save_results(system.build_results(report), results_path)

    return report
