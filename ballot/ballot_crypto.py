"""
Ballot Encryption Module
========================
Wraps a voter's plaintext selection into an opaque, authenticated ballot
bound to a target contract address, the casting function's selector and
the sending voter.

Scheme:
- AES-GCM under the voter's network-onboarded AES key
- Associated data: contract address || function selector || sender address
- ECDSA (secp256k1, SHA-256) signature over ciphertext || contract || selector

Addresses and function selectors are derived with SHA3-256, not Keccak-256.
They are stable identifiers for the in-memory ledger only and do not match
the addresses or selectors of any EVM chain.
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

CURVE = ec.SECP256K1()
NONCE_SIZE = 12
TAG_SIZE = 16
PLAINTEXT_SIZE = 1
AES_KEY_SIZE = 16

# nonce || ciphertext || tag, small enough to travel as a uint256
BALLOT_CIPHERTEXT_SIZE = NONCE_SIZE + PLAINTEXT_SIZE + TAG_SIZE

CAST_VOTE_SIGNATURE = "castVote((bytes,bytes))"

CIPHERTEXT_ENCODINGS = ("bytes", "uint256")

# ============================================================================
# EXCEPTIONS
# ============================================================================


class BallotError(Exception):
    """Base exception for ballot operations"""
    pass


class EncryptionUnavailable(BallotError):
    """Raised when the voter has no usable key material"""
    pass


class BallotBindingError(BallotError):
    """Raised when a ballot is not bound to the expected contract/function"""
    pass


class InvalidVoteOption(BallotError):
    """Raised when the selected value is not one of the configured options"""
    pass

# ============================================================================
# KEY MATERIAL
# ============================================================================


def address_from_public_key(public_key_bytes: bytes) -> str:
    """Derive a 20-byte account address from an uncompressed public key"""
    digest = hashlib.sha3_256(public_key_bytes[1:]).digest()
    return "0x" + digest[-20:].hex()


def address_to_bytes(address: str) -> bytes:
    if not isinstance(address, str) or not address.startswith("0x") or len(address) != 42:
        raise ValueError(f"Malformed address: {address!r}")
    return bytes.fromhex(address[2:])


@dataclass
class KeyMaterial:
    """A voter's signing key plus the AES key provisioned at onboarding"""
    private_key: ec.EllipticCurvePrivateKey = field(repr=False)
    aes_key: Optional[bytes] = field(default=None, repr=False)

    @property
    def public_key_bytes(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )

    @property
    def address(self) -> str:
        return address_from_public_key(self.public_key_bytes)

    @property
    def is_onboarded(self) -> bool:
        return self.aes_key is not None and len(self.aes_key) == AES_KEY_SIZE

    def sign(self, data: bytes) -> bytes:
        return self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    def private_key_hex(self) -> str:
        return format(self.private_key.private_numbers().private_value, "064x")

    def aes_key_hex(self) -> Optional[str]:
        return self.aes_key.hex() if self.aes_key is not None else None

    @classmethod
    def from_hex(cls, private_key_hex: str, aes_key_hex: Optional[str] = None) -> "KeyMaterial":
        """Rebuild key material from hex strings (as stored in config/env)"""
        if private_key_hex.startswith("0x"):
            private_key_hex = private_key_hex[2:]
        private_key = ec.derive_private_key(int(private_key_hex, 16), CURVE)
        aes_key = bytes.fromhex(aes_key_hex) if aes_key_hex else None
        if aes_key is not None and len(aes_key) != AES_KEY_SIZE:
            raise ValueError(
                f"AES key must be {AES_KEY_SIZE} bytes, got {len(aes_key)}")
        return cls(private_key=private_key, aes_key=aes_key)


def generate_key_material(with_aes_key: bool = True) -> KeyMaterial:
    """Generate a fresh signing key and, optionally, an onboarding AES key"""
    private_key = ec.generate_private_key(CURVE)
    aes_key = AESGCM.generate_key(bit_length=AES_KEY_SIZE * 8) if with_aes_key else None
    return KeyMaterial(private_key=private_key, aes_key=aes_key)


def load_public_key(public_key_bytes: bytes) -> ec.EllipticCurvePublicKey:
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, public_key_bytes)


def verify_signature(public_key_bytes: bytes, data: bytes, signature: bytes) -> bool:
    """Verify an ECDSA signature. Returns True if valid, False otherwise."""
    try:
        load_public_key(public_key_bytes).verify(
            signature, data, ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, ValueError):
        return False

# ============================================================================
# BALLOT
# ============================================================================


def function_selector(signature: str) -> bytes:
    """First four bytes of the SHA3-256 digest of a canonical function signature"""
    return hashlib.sha3_256(signature.encode("utf-8")).digest()[:4]


CAST_VOTE_SELECTOR = function_selector(CAST_VOTE_SIGNATURE)


@dataclass(frozen=True)
class Ballot:
    """Opaque (ciphertext, signature) pair; only the decryption path reads it"""
    ciphertext: bytes
    signature: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "ciphertext": self.ciphertext.hex(),
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Ballot":
        return cls(
            ciphertext=bytes.fromhex(data["ciphertext"]),
            signature=bytes.fromhex(data["signature"]),
        )


def _binding(target_contract: str, selector: bytes, sender: str) -> bytes:
    return address_to_bytes(target_contract) + selector + address_to_bytes(sender)


def _signed_payload(ciphertext: bytes, target_contract: str, selector: bytes) -> bytes:
    return ciphertext + address_to_bytes(target_contract) + selector


def encrypt_ballot(
    value: int,
    target_contract: str,
    selector: bytes,
    key_material: Optional[KeyMaterial],
    options: Iterable[int],
) -> Ballot:
    """
    Encrypt a vote option into a castable ballot.

    Raises:
        InvalidVoteOption: value is not one of `options`
        EncryptionUnavailable: key material absent or voter not onboarded
    """
    if value not in set(options):
        raise InvalidVoteOption(f"Option {value} is not a configured vote option")
    if key_material is None:
        raise EncryptionUnavailable("No key material provisioned for this voter")
    if not key_material.is_onboarded:
        raise EncryptionUnavailable(
            f"Voter {key_material.address} has not been onboarded (no AES key)")
    if len(selector) != 4:
        raise ValueError("Function selector must be 4 bytes")

    nonce = os.urandom(NONCE_SIZE)
    aad = _binding(target_contract, selector, key_material.address)
    sealed = AESGCM(key_material.aes_key).encrypt(
        nonce, value.to_bytes(PLAINTEXT_SIZE, "big"), aad)
    ciphertext = nonce + sealed

    signature = key_material.sign(
        _signed_payload(ciphertext, target_contract, selector))

    logger.debug(f"Encrypted ballot for {key_material.address} -> {target_contract}")
    return Ballot(ciphertext=ciphertext, signature=signature)


def verify_ballot(
    ballot: Ballot,
    target_contract: str,
    selector: bytes,
    public_key_bytes: bytes,
) -> bool:
    """Check structure and that the ballot was signed for this contract and function"""
    if len(ballot.ciphertext) != BALLOT_CIPHERTEXT_SIZE:
        return False
    return verify_signature(
        public_key_bytes,
        _signed_payload(ballot.ciphertext, target_contract, selector),
        ballot.signature,
    )


def decrypt_ballot(
    ciphertext: bytes,
    aes_key: bytes,
    target_contract: str,
    selector: bytes,
    sender: str,
) -> int:
    """Network-side decryption, only reachable from the aggregation path"""
    if len(ciphertext) != BALLOT_CIPHERTEXT_SIZE:
        raise BallotBindingError("Ciphertext has unexpected length")
    nonce, sealed = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
    try:
        plaintext = AESGCM(aes_key).decrypt(
            nonce, sealed, _binding(target_contract, selector, sender))
    except InvalidTag as e:
        raise BallotBindingError(
            "Ballot is not bound to this contract, function and sender") from e
    return int.from_bytes(plaintext, "big")

# ============================================================================
# CIPHERTEXT REPRESENTATION
# ============================================================================


def encode_ciphertext(ciphertext: bytes, encoding: str) -> Union[bytes, int]:
    """Encode a stored ciphertext the way a given contract version exposes it"""
    if encoding == "bytes":
        return ciphertext
    if encoding == "uint256":
        return int.from_bytes(ciphertext, "big")
    raise ValueError(f"Unknown ciphertext encoding: {encoding}")


def decode_ciphertext(value: Any) -> Optional[bytes]:
    """Inverse of encode_ciphertext; empty/zero values mean no vote stored"""
    if value is None:
        return None
    if isinstance(value, int):
        if value == 0:
            return None
        return value.to_bytes(BALLOT_CIPHERTEXT_SIZE, "big")
    if isinstance(value, str):
        value = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) if value else None
    raise TypeError(f"Unsupported ciphertext representation: {type(value)!r}")
