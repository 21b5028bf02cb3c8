from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Mapping
import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://testnet.coti.io/rpc"
DEFAULT_QUESTION = "What is your favorite food?"
DEFAULT_OPTIONS = [
    (1, "Chocolate"),
    (2, "Raspberry"),
    (3, "Sandwich"),
    (4, "Mango"),
]
DEFAULT_VOTERS = ["Bob", "Bea", "Charlie", "David", "Ethan"]

ENV_PREFIX = "VOTE_"


class ConfigurationError(Exception):
    """Fatal configuration problem, raised before any ledger call"""
    pass


class ContractAddressMissing(ConfigurationError):
    pass


class KeyMaterialMissing(ConfigurationError):
    pass


class ContractLayoutMismatch(ConfigurationError):
    """Contract responses do not match the pinned contract layout"""
    pass


@dataclass(frozen=True)
class VoteOption:
    id: int
    label: str


@dataclass
class LedgerConfig:
    rpc_url: str = DEFAULT_RPC_URL
    contract_address: Optional[str] = None
    max_retries: int = 3
    base_delay: float = 1.0
    confirmation_timeout: float = 60.0
    step_retries: int = 3

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.step_retries < 1:
            raise ConfigurationError("step_retries must be at least 1")


@dataclass
class ContractLayout:
    """Pins the ABI shapes that changed between contract versions"""
    ciphertext_encoding: str = "bytes"
    # None means the contract returns a dynamic results array
    results_size: Optional[int] = 4

    def __post_init__(self):
        if self.ciphertext_encoding not in ("bytes", "uint256"):
            raise ConfigurationError(
                f"Unknown ciphertext encoding: {self.ciphertext_encoding}")
        if self.results_size is not None and self.results_size < 1:
            raise ConfigurationError("results_size must be positive or null")


@dataclass
class VoterAccountConfig:
    name: str
    private_key: Optional[str] = None
    aes_key: Optional[str] = None

    @property
    def env_key(self) -> str:
        return self.name.strip().upper().replace(" ", "_")


@dataclass
class SystemConfig:
    voting_question: str = DEFAULT_QUESTION
    options: List[VoteOption] = field(
        default_factory=lambda: [VoteOption(i, label) for i, label in DEFAULT_OPTIONS])

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    layout: ContractLayout = field(default_factory=ContractLayout)

    owner_private_key: Optional[str] = None
    voters: List[VoterAccountConfig] = field(
        default_factory=lambda: [VoterAccountConfig(name) for name in DEFAULT_VOTERS])
    generate_missing_keys: bool = False

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    log_level: str = "INFO"
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)

        self.options = [
            o if isinstance(o, VoteOption) else VoteOption(int(o[0]), str(o[1]))
            for o in self.options
        ]
        ids = [o.id for o in self.options]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Duplicate vote option ids: {ids}")

        if self.enable_debug_mode:
            self.log_level = "DEBUG"

    @property
    def option_ids(self) -> List[int]:
        return [o.id for o in self.options]

    def get_voter(self, name: str) -> VoterAccountConfig:
        for voter in self.voters:
            if voter.name == name:
                return voter
        raise KeyError(f"No voter named {name!r} in configuration")

    def validate(self, require_contract: bool = True):
        """Check for presence of everything the clients need"""
        if require_contract and not self.ledger.contract_address:
            raise ContractAddressMissing(
                f"Contract address not set. Set ledger.contract_address or {ENV_PREFIX}CONTRACT_ADDRESS")
        if not self.owner_private_key:
            raise KeyMaterialMissing(
                f"Owner private key not set. Set owner_private_key or {ENV_PREFIX}OWNER_PK")
        for voter in self.voters:
            if not voter.private_key or not voter.aes_key:
                raise KeyMaterialMissing(
                    f"Key material missing for voter {voter.name}. "
                    f"Set {ENV_PREFIX}{voter.env_key}_PK and {ENV_PREFIX}{voter.env_key}_AES_KEY")
        if self.layout.results_size is not None and self.layout.results_size != len(self.options):
            raise ContractLayoutMismatch(
                f"Contract returns {self.layout.results_size} results but {len(self.options)} options are configured")


def apply_environment(config: SystemConfig, environ: Optional[Mapping[str, str]] = None) -> SystemConfig:
    """Override addresses and key material from the environment"""
    if environ is None:
        environ = os.environ

    if environ.get(f"{ENV_PREFIX}CONTRACT_ADDRESS"):
        config.ledger.contract_address = environ[f"{ENV_PREFIX}CONTRACT_ADDRESS"]
    if environ.get(f"{ENV_PREFIX}RPC_URL"):
        config.ledger.rpc_url = environ[f"{ENV_PREFIX}RPC_URL"]
    if environ.get(f"{ENV_PREFIX}OWNER_PK"):
        config.owner_private_key = environ[f"{ENV_PREFIX}OWNER_PK"]

    for voter in config.voters:
        pk = environ.get(f"{ENV_PREFIX}{voter.env_key}_PK")
        aes = environ.get(f"{ENV_PREFIX}{voter.env_key}_AES_KEY")
        if pk:
            voter.private_key = pk
        if aes:
            voter.aes_key = aes

    return config


def load_config(config_path: Optional[Path] = None,
                environ: Optional[Mapping[str, str]] = None) -> SystemConfig:
    """Load configuration from file (or defaults) and apply environment overrides"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, using defaults")
        return apply_environment(SystemConfig(), environ)

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse config file {config_path}: {e}") from e

    ledger_data = config_data.get('ledger', {})
    ledger_config = LedgerConfig(
        rpc_url=ledger_data.get('rpc_url', DEFAULT_RPC_URL),
        contract_address=ledger_data.get('contract_address'),
        max_retries=ledger_data.get('max_retries', 3),
        base_delay=ledger_data.get('base_delay', 1.0),
        confirmation_timeout=ledger_data.get('confirmation_timeout', 60.0),
        step_retries=ledger_data.get('step_retries', 3)
    )

    layout_data = config_data.get('contract_layout', {})
    layout = ContractLayout(
        ciphertext_encoding=layout_data.get('ciphertext_encoding', 'bytes'),
        results_size=layout_data.get('results_size', 4)
    )

    options = [
        VoteOption(int(o['id']), str(o['label']))
        for o in config_data.get('options', [])
    ] or [VoteOption(i, label) for i, label in DEFAULT_OPTIONS]

    voters = [
        VoterAccountConfig(
            name=v['name'],
            private_key=v.get('private_key'),
            aes_key=v.get('aes_key')
        )
        for v in config_data.get('voters', [])
    ] or [VoterAccountConfig(name) for name in DEFAULT_VOTERS]

    config = SystemConfig(
        voting_question=config_data.get('voting_question', DEFAULT_QUESTION),
        options=options,
        ledger=ledger_config,
        layout=layout,
        owner_private_key=config_data.get('owner_private_key'),
        voters=voters,
        generate_missing_keys=config_data.get('generate_missing_keys', False),
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        log_level=config_data.get('log_level', 'INFO'),
        enable_debug_mode=config_data.get('enable_debug_mode', False)
    )
    logger.info(f"Loaded configuration from {config_path}")
    return apply_environment(config, environ)


def save_config(config: SystemConfig, config_path: Optional[Path] = None,
                include_secrets: bool = False):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data: Dict[str, Any] = {
        'voting_question': config.voting_question,
        'options': [{'id': o.id, 'label': o.label} for o in config.options],
        'ledger': {
            'rpc_url': config.ledger.rpc_url,
            'contract_address': config.ledger.contract_address,
            'max_retries': config.ledger.max_retries,
            'base_delay': config.ledger.base_delay,
            'confirmation_timeout': config.ledger.confirmation_timeout,
            'step_retries': config.ledger.step_retries
        },
        'contract_layout': {
            'ciphertext_encoding': config.layout.ciphertext_encoding,
            'results_size': config.layout.results_size
        },
        'voters': [{'name': v.name} for v in config.voters],
        'generate_missing_keys': config.generate_missing_keys,
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'log_level': config.log_level,
        'enable_debug_mode': config.enable_debug_mode
    }

    if include_secrets:
        config_data['owner_private_key'] = config.owner_private_key
        for entry, voter in zip(config_data['voters'], config.voters):
            entry['private_key'] = voter.private_key
            entry['aes_key'] = voter.aes_key

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Configuration saved to {config_path}")
