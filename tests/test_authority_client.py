import asyncio

import pytest

from ballot.ballot_crypto import generate_key_material
from config.config import ContractLayout, ContractLayoutMismatch, KeyMaterialMissing, VoteOption
from election.authority_client import AuthorityClient
from election.errors import (
    ElectionStillOpen,
    InvalidRegistration,
    NotOwner,
    ResultsNotAvailable,
    StepOutcomeUnknown,
)
from election.models import TxOutcome


def test_client_requires_owner_keys(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        with pytest.raises(KeyMaterialMissing):
            AuthorityClient(env.gateway, env.address, None)

    asyncio.run(scenario())


def test_question_options_and_roster(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob", "Bea"))
        assert await env.authority.get_voting_question() == "What is your favorite food?"
        options = await env.authority.get_voting_options()
        assert options[0] == VoteOption(1, "Chocolate")
        assert [o.label for o in options] == ["Chocolate", "Raspberry", "Sandwich", "Mango"]

        roster = await env.authority.list_voters()
        assert [v.name for v in roster] == ["Bob", "Bea"]
        assert [v.address for v in roster] == [c.address for c in env.voters.values()]

    asyncio.run(scenario())


def test_invalid_registration_is_a_precondition_error(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        with pytest.raises(InvalidRegistration):
            await env.authority.register_voter("   ", generate_key_material().address)

    asyncio.run(scenario())


def test_non_owner_cannot_toggle(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        impostor = AuthorityClient(env.gateway, env.address, generate_key_material())
        with pytest.raises(NotOwner):
            await impostor.toggle_election()
        assert (await env.authority.get_election_status()).is_open

    asyncio.run(scenario())


def test_reverted_toggle_with_lost_confirmation_is_a_precondition_error(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        impostor = AuthorityClient(env.gateway, env.address, generate_key_material())
        env.gateway.inject_fault("lost_confirmation")

        with pytest.raises(NotOwner):
            await impostor.toggle_election()
        assert not impostor.has_pending("toggleElection")
        assert (await env.authority.get_election_status()).is_open

    asyncio.run(scenario())


def test_toggle_returns_new_state(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        assert await env.authority.toggle_election() is False
        assert await env.authority.toggle_election() is True

    asyncio.run(scenario())


def test_aggregate_requires_closed_election(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        with pytest.raises(ElectionStillOpen):
            await env.authority.aggregate_votes()
        with pytest.raises(ElectionStillOpen):
            await env.authority.get_results()
        assert "aggregateVotes" not in env.gateway.submissions

    asyncio.run(scenario())


def test_view_results_before_aggregation(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        await env.authority.toggle_election()
        with pytest.raises(ResultsNotAvailable):
            await env.authority.view_results()

    asyncio.run(scenario())


def test_aggregate_twice_gives_identical_tally(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob", "Bea"))
        bob, bea = env.voters["Bob"], env.voters["Bea"]
        await bob.cast_vote(1)
        await bea.cast_vote(2)
        await bob.authorize_owner()
        await bea.authorize_owner()
        await env.authority.toggle_election()

        assert await env.authority.aggregate_votes() is TxOutcome.CONFIRMED
        first = await env.authority.view_results()
        assert await env.authority.aggregate_votes() is TxOutcome.CONFIRMED
        second = await env.authority.view_results()

        assert first == second
        assert first.counts_by_label() == {"Chocolate": 1, "Raspberry": 1, "Sandwich": 0, "Mango": 0}

    asyncio.run(scenario())


def test_concurrent_aggregation_shares_one_submission(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        await env.voters["Bob"].cast_vote(3)
        await env.voters["Bob"].authorize_owner()
        await env.authority.toggle_election()

        outcomes = await asyncio.gather(*(env.authority.aggregate_votes() for _ in range(5)))
        assert outcomes == [TxOutcome.CONFIRMED] * 5
        assert env.gateway.submissions.count("aggregateVotes") == 1

        tallies = await asyncio.gather(*(env.authority.get_results() for _ in range(3)))
        assert all(t == tallies[0] for t in tallies)
        assert env.gateway.submissions.count("getResults") == 1
        assert tallies[0].count_for(3) == 1

    asyncio.run(scenario())


def test_get_results_publishes_and_matches_view(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        await env.voters["Bob"].cast_vote(4)
        await env.voters["Bob"].authorize_owner()
        await env.authority.toggle_election()

        published = await env.authority.get_results()
        status = await env.authority.get_aggregation_status()
        assert status.aggregated and status.published and status.tallied_count == 1
        assert await env.authority.view_results() == published

    asyncio.run(scenario())


def test_stalled_aggregation_resolves_without_resubmission(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        await env.voters["Bob"].cast_vote(1)
        await env.voters["Bob"].authorize_owner()
        await env.authority.toggle_election()

        env.gateway.inject_fault("stall")
        assert await env.authority.aggregate_votes() is TxOutcome.PENDING
        assert await env.authority.aggregate_votes() is TxOutcome.CONFIRMED
        assert env.gateway.submissions.count("aggregateVotes") == 1
        assert (await env.authority.view_results()).total_votes == 1

    asyncio.run(scenario())


def test_stalled_toggle_is_not_sent_twice(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        env.gateway.inject_fault("stall")

        with pytest.raises(StepOutcomeUnknown):
            await env.authority.toggle_election()

        assert await env.authority.toggle_election() is False
        assert env.gateway.submissions.count("toggleElection") == 1

    asyncio.run(scenario())


def test_results_arity_is_checked_against_layout(make_election):
    async def scenario():
        env = await make_election(voter_names=(), layout=ContractLayout(results_size=4))
        await env.authority.toggle_election()
        await env.authority.aggregate_votes()

        mismatched = AuthorityClient(env.gateway, env.address, env.owner,
                                     layout=ContractLayout(results_size=3))
        with pytest.raises(ContractLayoutMismatch):
            await mismatched.view_results()

        dynamic = AuthorityClient(env.gateway, env.address, env.owner,
                                  layout=ContractLayout(results_size=None))
        assert len((await dynamic.view_results()).entries) == 4

    asyncio.run(scenario())
