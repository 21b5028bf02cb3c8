import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from config.config import ConfigurationError, SystemConfig, VoterAccountConfig, load_config, save_config
from confidential_election import ConfidentialElectionSystem
from election.errors import VotingError
from ledger.ledger_gateway import LedgerError
from utils.utils import create_performance_report, save_results, setup_logging

logger = logging.getLogger(__name__)


def parse_votes(text: Optional[str]) -> Optional[Dict[str, int]]:
    """Parse 'Bob=1,Bea=2' into {'Bob': 1, 'Bea': 2}"""
    if not text:
        return None
    votes = {}
    for item in text.split(","):
        name, sep, option = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Bad vote entry {item!r}, expected NAME=OPTION")
        votes[name.strip()] = int(option)
    return votes


async def run_demo(config: SystemConfig, votes: Optional[Dict[str, int]] = None,
                   authorize: bool = True) -> bool:
    print("=" * 80)
    print("CONFIDENTIAL ELECTION - ENCRYPTED BALLOTS, OWNER-AUTHORIZED TALLY")
    print("=" * 80)

    system = ConfidentialElectionSystem(config)
    try:
        await system.initialize()

        print(f"\nContract: {system.contract_address}")
        print(f"Question: {config.voting_question}")
        for option in config.options:
            print(f"  {option.id}. {option.label}")

        print(f"\nRegistering {len(system.voters)} voters...")
        await system.register_all_voters()

        if votes is None:
            option_ids = config.option_ids
            votes = {name: option_ids[i % len(option_ids)] for i, name in enumerate(system.voters)}
        print("\nCasting encrypted votes...")
        for name, outcome in (await system.cast_votes(votes)).items():
            print(f"  {name}: {outcome}")

        print("\nClosing, authorizing and aggregating...")
        report = await system.run_aggregation(authorize=authorize)

    except (ConfigurationError, VotingError, LedgerError) as e:
        print(f"\n Election failed: {e}")
        logger.exception("Election run failed")
        return False

    print("\n" + "=" * 40)
    print("ELECTION RESULTS")
    print("=" * 40)
    for entry in report.tally.entries:
        print(f"  {entry.option_label}: {entry.vote_count} votes")
    print(f"\nRegistered: {report.registered}  Voted: {report.voted}  Counted: {report.authorized}")
    for name in report.excluded_voters:
        print(f"  excluded (owner not authorized): {name}")
    for name in report.rejected_voters:
        print(f"  rejected (ballot unreadable): {name}")
    for warning in report.warnings:
        print(f"  warning: {warning}")

    results = system.build_results(report)
    print(f"\nIntegrity Checks:")
    for check, passed in results['integrity_checks'].items():
        status = " PASSED" if passed else " FAILED"
        print(f"  {check}: {status}")

    report_path = config.results_dir / "election_report.json"
    save_results(results, report_path)
    perf_path = config.results_dir / "performance_report.txt"
    with open(perf_path, "w") as f:
        f.write(create_performance_report(system.performance_monitor))
    metrics_path = config.results_dir / "performance_metrics.json"
    system.performance_monitor.save_metrics(metrics_path)

    print(f"\nFull results saved to: {report_path}")
    print(f"Performance report: {perf_path}")
    print(f"Raw metrics: {metrics_path}")
    return all(results['integrity_checks'].values())


def build_config(args: argparse.Namespace) -> SystemConfig:
    config = load_config(Path(args.config))
    if args.voters:
        config.voters = [VoterAccountConfig(name.strip()) for name in args.voters.split(",")]
    if args.results_dir:
        config.results_dir = Path(args.results_dir)
        config.results_dir.mkdir(parents=True, exist_ok=True)
    if args.log_level:
        config.log_level = args.log_level
    # the in-memory chain starts empty: deploy a fresh contract with fresh keys
    config.generate_missing_keys = True
    config.ledger.contract_address = None
    return config


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description='Confidential Election on an in-memory ledger')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--voters', type=str,
                        help='Comma-separated voter names (overrides config)')
    parser.add_argument('--votes', type=str,
                        help='Votes as NAME=OPTION pairs, e.g. Bob=1,Bea=2')
    parser.add_argument('--skip-authorize', action='store_true',
                        help='Do not have voters authorize the owner (their ballots are excluded)')
    parser.add_argument('--results-dir', type=str, help='Directory for reports')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--save-config', type=str,
                        help='Write the effective configuration (without secrets) to this path')

    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        votes = parse_votes(args.votes)
    except (ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}")
        sys.exit(2)

    setup_logging(config.log_level, config.log_dir / "confidential_election.log")

    if args.save_config:
        save_config(config, Path(args.save_config))

    success = asyncio.run(run_demo(config, votes, authorize=not args.skip_authorize))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
