import base64
import logging
from functools import lru_cache
from typing import Dict, Mapping, Optional

from passlib.context import CryptContext
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import Settings

security_logger = logging.getLogger("security")

# Password hashing; argon2 verification is constant-time
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=4,
    argon2__memory_cost=65536,
    argon2__parallelism=1,
)

# Cipher purposes. Diagnosis and appointment reason share MEDICAL, IC numbers use IC.
MEDICAL = "medical"
IC = "ic"

_KDF_SALT = b"clinic-records/field-cipher/v1"
_KDF_ITERATIONS = 200_000


class EncryptionError(Exception):
    pass


# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unknown/legacy hash formats should not crash login; treat as non-match
        return False


def dummy_verify() -> None:
    """Spend the same time as a real verification when the user does not exist."""
    pwd_context.dummy_verify()


def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return pwd_context.hash(password)


def is_printable_username(username: Optional[str]) -> bool:
    return bool(username) and username.isprintable()


# Field-level encryption
@lru_cache(maxsize=8)
def _fernet_for(key: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


def encrypt(plaintext: str, key: str) -> bytes:
    """Encrypt a field value with the Fernet key derived from ``key``."""
    try:
        return _fernet_for(key).encrypt(plaintext.encode())
    except (TypeError, ValueError) as e:
        raise EncryptionError(str(e)) from e


def decrypt(ciphertext: bytes, key: str) -> Optional[str]:
    """Decrypt a field value; returns None when the key or ciphertext is wrong."""
    if ciphertext is None:
        return None
    try:
        return _fernet_for(key).decrypt(bytes(ciphertext)).decode()
    except (InvalidToken, TypeError, ValueError, UnicodeDecodeError):
        security_logger.warning("Field decryption failed")
        return None


class FieldCipher:
    """A cipher bound to one key; one instance per protected field family."""

    def __init__(self, purpose: str, key: str):
        self.purpose = purpose
        self._key = key

    def encrypt(self, plaintext: str) -> bytes:
        return encrypt(plaintext, self._key)

    def decrypt(self, ciphertext: bytes) -> Optional[str]:
        return decrypt(ciphertext, self._key)


_field_ciphers: Dict[str, FieldCipher] = {}


def configure_field_ciphers(settings: Settings) -> None:
    """Bind the MEDICAL and IC ciphers to the configured keys."""
    _field_ciphers[MEDICAL] = FieldCipher(MEDICAL, settings.encryption_key)
    _field_ciphers[IC] = FieldCipher(IC, settings.secure_key)


def get_field_cipher(purpose: str) -> FieldCipher:
    try:
        return _field_ciphers[purpose]
    except KeyError:
        raise EncryptionError(f"Field cipher '{purpose}' is not configured")


# Client address for audit records
def resolve_client_ip(headers: Mapping[str, str], client_host: Optional[str]) -> str:
    """Pick the client IP: X-Forwarded-For, then X-Real-IP, then the socket peer."""
    lowered = {k.lower(): v for k, v in headers.items()}
    forwarded = lowered.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = lowered.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return client_host or "Unknown"


__all__ = [
    "pwd_context",
    "MEDICAL",
    "IC",
    "EncryptionError",
    "verify_password",
    "dummy_verify",
    "get_password_hash",
    "is_printable_username",
    "encrypt",
    "decrypt",
    "FieldCipher",
    "configure_field_ciphers",
    "get_field_cipher",
    "resolve_client_ip",
]
