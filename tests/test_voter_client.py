import asyncio

import pytest

from ballot.ballot_crypto import EncryptionUnavailable, InvalidVoteOption, generate_key_material
from config.config import ContractAddressMissing, KeyMaterialMissing
from election.errors import AlreadyVoted, ElectionClosed, NotRegistered, NotVotedYet
from election.models import TxOutcome, VoteState
from election.voter_client import VoterClient
from ledger.memory_gateway import InMemoryLedgerGateway


def test_client_requires_address_and_keys():
    gateway = InMemoryLedgerGateway()
    with pytest.raises(ContractAddressMissing):
        VoterClient("Bob", gateway, None, generate_key_material())
    with pytest.raises(KeyMaterialMissing):
        VoterClient("Bob", gateway, "0x" + "11" * 20, None)
    assert gateway.submissions == []


def test_register_is_idempotent(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]

        again = await bob.register(env.authority)
        assert again.is_registered
        assert env.gateway.submissions.count("addVoter") == 1
        assert (await env.authority.get_election_status()).voter_count == 1

    asyncio.run(scenario())


def test_cast_vote_marks_voter(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]

        assert not await bob.check_voted()
        assert await bob.cast_vote(2) is TxOutcome.CONFIRMED
        assert bob.has_voted
        assert await bob.check_voted()

        record = await bob.get_record()
        assert record.has_voted and not record.has_authorized_owner
        assert record.encrypted_vote is not None

    asyncio.run(scenario())


def test_second_vote_is_rejected_locally(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        await bob.cast_vote(1)

        with pytest.raises(AlreadyVoted):
            await bob.cast_vote(3)
        assert env.gateway.submissions.count("castVote") == 1

    asyncio.run(scenario())


def test_unregistered_voter_is_rejected(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",), register=False)
        with pytest.raises(NotRegistered):
            await env.voters["Bob"].cast_vote(1)
        assert "castVote" not in env.gateway.submissions

    asyncio.run(scenario())


def test_vote_while_closed_is_rejected_and_state_unchanged(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        await env.authority.toggle_election()
        before = await bob.get_record()

        with pytest.raises(ElectionClosed):
            await bob.cast_vote(1)
        assert await bob.get_record() == before
        assert not bob.has_voted

    asyncio.run(scenario())


def test_authorize_before_vote_is_rejected(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]

        with pytest.raises(NotVotedYet):
            await bob.authorize_owner()
        assert not (await bob.get_record()).has_authorized_owner
        assert "authorizeOwnerToReadVote" not in env.gateway.submissions

    asyncio.run(scenario())


def test_authorize_twice_is_a_no_op(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        await bob.cast_vote(4)

        assert await bob.authorize_owner() is TxOutcome.CONFIRMED
        assert await bob.authorize_owner() is TxOutcome.ALREADY_DONE
        assert env.gateway.submissions.count("authorizeOwnerToReadVote") == 1

        record = await bob.get_record()
        assert record.has_authorized_owner and record.has_voted

    asyncio.run(scenario())


def test_invalid_option_never_reaches_the_ledger(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        with pytest.raises(InvalidVoteOption):
            await env.voters["Bob"].cast_vote(42)
        assert "castVote" not in env.gateway.submissions

    asyncio.run(scenario())


def test_voter_without_aes_key_cannot_vote(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        wallet = generate_key_material(with_aes_key=False)
        client = VoterClient("Dora", env.gateway, env.address, wallet)
        await client.register(env.authority)

        with pytest.raises(EncryptionUnavailable):
            await client.cast_vote(1)

    asyncio.run(scenario())


def test_voter_unknown_to_the_network_cannot_vote(make_election):
    async def scenario():
        env = await make_election(voter_names=())
        # has a local AES key but never onboarded it
        client = VoterClient("Ghost", env.gateway, env.address, generate_key_material())
        await client.register(env.authority)

        with pytest.raises(EncryptionUnavailable):
            await client.cast_vote(1)
        record = await client.get_record()
        assert not record.has_voted
        assert not client.has_voted

    asyncio.run(scenario())


def test_lost_confirmation_is_resolved_from_ledger_state(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        env.gateway.inject_fault("lost_confirmation")

        assert await bob.cast_vote(1) is TxOutcome.CONFIRMED
        assert env.gateway.submissions.count("castVote") == 1
        assert not bob.has_pending("castVote")

        with pytest.raises(AlreadyVoted):
            await bob.cast_vote(1)

    asyncio.run(scenario())


def test_stalled_vote_is_pending_then_confirmed_without_resubmission(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        env.gateway.inject_fault("stall")

        assert await bob.cast_vote(3) is TxOutcome.PENDING
        assert await bob.vote_state() is VoteState.NOT_VOTED
        assert env.gateway.pending_count() == 1

        assert await bob.cast_vote(3) is TxOutcome.CONFIRMED
        assert env.gateway.submissions.count("castVote") == 1
        assert await bob.vote_state() is VoteState.VOTED

    asyncio.run(scenario())


def test_stalled_authorization_resolves_on_retry(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        await bob.cast_vote(2)
        env.gateway.inject_fault("stall")

        assert await bob.authorize_owner() is TxOutcome.PENDING
        assert await bob.authorize_owner() is TxOutcome.CONFIRMED
        assert env.gateway.submissions.count("authorizeOwnerToReadVote") == 1

    asyncio.run(scenario())


def test_read_failure_reports_not_voted_or_unknown(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob",))
        bob = env.voters["Bob"]
        await bob.cast_vote(1)

        env.gateway.inject_fault("transport", env.gateway.max_retries)
        assert await bob.vote_state() is VoteState.UNKNOWN
        env.gateway.inject_fault("transport", env.gateway.max_retries)
        assert await bob.check_voted() is False
        assert await bob.check_voted() is True

    asyncio.run(scenario())


def test_independent_voters_vote_concurrently(make_election):
    async def scenario():
        env = await make_election(voter_names=("Bob", "Bea", "Charlie"))
        outcomes = await asyncio.gather(*(
            voter.cast_vote(option)
            for voter, option in zip(env.voters.values(), (1, 2, 1))
        ))
        assert outcomes == [TxOutcome.CONFIRMED] * 3
        voters = await env.authority.list_voters()
        assert all(v.has_voted for v in voters)

    asyncio.run(scenario())
