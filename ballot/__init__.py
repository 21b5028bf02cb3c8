"""Ballot encryption bound to a contract address and function selector."""

from .ballot_crypto import (
    # Key material
    KeyMaterial,
    generate_key_material,
    address_from_public_key,
    verify_signature,

    # Ballot
    Ballot,
    encrypt_ballot,
    verify_ballot,
    decrypt_ballot,
    function_selector,
    encode_ciphertext,
    decode_ciphertext,

    # Constants
    CAST_VOTE_SIGNATURE,
    CAST_VOTE_SELECTOR,
    BALLOT_CIPHERTEXT_SIZE,
    CIPHERTEXT_ENCODINGS,

    # Exceptions
    BallotError,
    EncryptionUnavailable,
    BallotBindingError,
    InvalidVoteOption,
)

__all__ = [
    'KeyMaterial',
    'generate_key_material',
    'address_from_public_key',
    'verify_signature',

    'Ballot',
    'encrypt_ballot',
    'verify_ballot',
    'decrypt_ballot',
    'function_selector',
    'encode_ciphertext',
    'decode_ciphertext',

    'CAST_VOTE_SIGNATURE',
    'CAST_VOTE_SELECTOR',
    'BALLOT_CIPHERTEXT_SIZE',
    'CIPHERTEXT_ENCODINGS',

    'BallotError',
    'EncryptionUnavailable',
    'BallotBindingError',
    'InvalidVoteOption',
]
