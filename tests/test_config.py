import pytest
import yaml

from config.config import (
    ConfigurationError,
    ContractAddressMissing,
    ContractLayout,
    ContractLayoutMismatch,
    KeyMaterialMissing,
    LedgerConfig,
    SystemConfig,
    VoteOption,
    apply_environment,
    load_config,
    save_config,
)


def make_config(tmp_path, **kwargs):
    return SystemConfig(log_dir=tmp_path / "logs", results_dir=tmp_path / "results", **kwargs)


def test_defaults_describe_the_food_poll(tmp_path):
    config = make_config(tmp_path)
    assert config.voting_question == "What is your favorite food?"
    assert config.options == [
        VoteOption(1, "Chocolate"), VoteOption(2, "Raspberry"),
        VoteOption(3, "Sandwich"), VoteOption(4, "Mango")]
    assert [v.name for v in config.voters] == ["Bob", "Bea", "Charlie", "David", "Ethan"]
    assert (tmp_path / "logs").is_dir() and (tmp_path / "results").is_dir()


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml", environ={})
    assert config.ledger.contract_address is None
    assert config.layout.results_size == 4


def test_yaml_round_trip_without_secrets(tmp_path):
    config = make_config(tmp_path, owner_private_key="ab" * 32)
    config.ledger.contract_address = "0x" + "12" * 20
    config.layout = ContractLayout(ciphertext_encoding="uint256", results_size=None)
    config.options = [VoteOption(1, "Yes"), VoteOption(2, "No")]

    path = tmp_path / "config.yaml"
    save_config(config, path)
    raw = yaml.safe_load(path.read_text())
    assert "owner_private_key" not in raw

    loaded = load_config(path, environ={})
    assert loaded.ledger.contract_address == config.ledger.contract_address
    assert loaded.layout == config.layout
    assert loaded.options == config.options
    assert loaded.owner_private_key is None


def test_secrets_are_written_only_on_request(tmp_path):
    config = make_config(tmp_path, owner_private_key="cd" * 32)
    config.voters[0].private_key = "ef" * 32
    path = tmp_path / "config.yaml"
    save_config(config, path, include_secrets=True)

    loaded = load_config(path, environ={})
    assert loaded.owner_private_key == "cd" * 32
    assert loaded.voters[0].private_key == "ef" * 32


def test_environment_overrides(tmp_path):
    config = make_config(tmp_path)
    apply_environment(config, {
        "VOTE_CONTRACT_ADDRESS": "0x" + "aa" * 20,
        "VOTE_RPC_URL": "http://localhost:8545",
        "VOTE_OWNER_PK": "01" * 32,
        "VOTE_BOB_PK": "02" * 32,
        "VOTE_BOB_AES_KEY": "03" * 16,
    })
    assert config.ledger.contract_address == "0x" + "aa" * 20
    assert config.ledger.rpc_url == "http://localhost:8545"
    assert config.owner_private_key == "01" * 32
    bob = config.get_voter("Bob")
    assert (bob.private_key, bob.aes_key) == ("02" * 32, "03" * 16)
    assert config.get_voter("Bea").private_key is None


def test_validate_reports_missing_pieces_in_order(tmp_path):
    config = make_config(tmp_path)
    with pytest.raises(ContractAddressMissing):
        config.validate()

    config.ledger.contract_address = "0x" + "aa" * 20
    with pytest.raises(KeyMaterialMissing):
        config.validate()

    config.owner_private_key = "01" * 32
    with pytest.raises(KeyMaterialMissing) as exc:
        config.validate()
    assert "VOTE_BOB_PK" in str(exc.value)

    for voter in config.voters:
        voter.private_key, voter.aes_key = "02" * 32, "03" * 16
    config.validate()


def test_layout_must_match_option_count(tmp_path):
    config = make_config(tmp_path, owner_private_key="01" * 32, voters=[])
    config.layout = ContractLayout(results_size=3)
    with pytest.raises(ContractLayoutMismatch):
        config.validate(require_contract=False)


def test_invalid_values_are_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        LedgerConfig(max_retries=0)
    with pytest.raises(ConfigurationError):
        ContractLayout(ciphertext_encoding="string")
    with pytest.raises(ConfigurationError):
        make_config(tmp_path, options=[(1, "A"), (1, "B")])


def test_unparseable_yaml_is_a_configuration_error(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("ledger: [unclosed")
    with pytest.raises(ConfigurationError):
        load_config(path, environ={})
