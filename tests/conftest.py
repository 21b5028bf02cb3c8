from types import SimpleNamespace

import pytest

from ballot.ballot_crypto import generate_key_material
from config.config import DEFAULT_OPTIONS, DEFAULT_QUESTION, LedgerConfig, SystemConfig
from election.authority_client import AuthorityClient
from election.voter_client import VoterClient
from ledger.memory_gateway import InMemoryLedgerGateway


@pytest.fixture
def make_election():
    """Async factory: deployed contract, owner client, onboarded voter clients"""

    async def _make(voter_names=("Bob", "Bea"), register=True, layout=None,
                    options=DEFAULT_OPTIONS):
        gateway = InMemoryLedgerGateway(max_retries=3, base_delay=0.0)
        owner = generate_key_material()
        address = await gateway.deploy_election(owner, DEFAULT_QUESTION, options, layout)
        authority = AuthorityClient(gateway, address, owner, layout=layout)

        voters = {}
        for name in voter_names:
            client = VoterClient(name, gateway, address, generate_key_material(), layout=layout)
            await client.onboard()
            if register:
                await client.register(authority)
            voters[name] = client

        return SimpleNamespace(
            gateway=gateway, owner=owner, address=address,
            authority=authority, voters=voters)

    return _make


@pytest.fixture
def system_config(tmp_path):
    return SystemConfig(
        ledger=LedgerConfig(base_delay=0.0, confirmation_timeout=5.0),
        generate_missing_keys=True,
        log_dir=tmp_path / "logs",
        results_dir=tmp_path / "results",
    )
