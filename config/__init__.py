"""Configuration management for the confidential election clients."""

from .config import (
    SystemConfig,
    LedgerConfig,
    ContractLayout,
    VoterAccountConfig,
    VoteOption,
    ConfigurationError,
    ContractAddressMissing,
    KeyMaterialMissing,
    ContractLayoutMismatch,
    apply_environment,
    load_config,
    save_config,
)

__all__ = [
    'SystemConfig', 'LedgerConfig', 'ContractLayout', 'VoterAccountConfig', 'VoteOption',
    'ConfigurationError', 'ContractAddressMissing', 'KeyMaterialMissing', 'ContractLayoutMismatch',
    'apply_environment', 'load_config', 'save_config'
]
