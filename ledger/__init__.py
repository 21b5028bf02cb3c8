"""Ledger gateway boundary and the in-memory chain that implements it."""

from .ledger_gateway import (
    LedgerGateway,
    SignedTransaction,
    TransactionReceipt,
    EventLog,
    retry_ledger_call,
    ZERO_ADDRESS,

    LedgerError,
    TransportError,
    TransactionTimeout,
    ContractRevert,
)
from .election_registry import ElectionRegistry, CallContext, ABI
from .memory_gateway import InMemoryLedgerGateway

__all__ = [
    'LedgerGateway',
    'InMemoryLedgerGateway',
    'ElectionRegistry',
    'CallContext',
    'ABI',
    'SignedTransaction',
    'TransactionReceipt',
    'EventLog',
    'retry_ledger_call',
    'ZERO_ADDRESS',

    'LedgerError',
    'TransportError',
    'TransactionTimeout',
    'ContractRevert',
]
