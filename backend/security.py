"""
Security utilities for Prompt Forge
- Credential presence/format checks (run before any network call)
- Masking for logs and API responses
- Encryption of the stored credential
"""
import os
import base64
import hashlib
import logging
from typing import Optional, Tuple
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

OPENROUTER_KEY_PREFIX = "sk-or-v1-"

_fernet = None


class CredentialError(ValueError):
    """Base class for credential problems detected before a request is sent"""


class CredentialMissing(CredentialError):
    """No credential was supplied"""

    def __init__(self, message: str = "Please enter your OpenRouter API key"):
        super().__init__(message)


class CredentialMalformed(CredentialError):
    """The credential does not look like an OpenRouter key"""

    def __init__(self, message: str = f'Invalid API key format. OpenRouter API keys should start with "{OPENROUTER_KEY_PREFIX}"'):
        super().__init__(message)


def validate_api_key_format(api_key: Optional[str]) -> Tuple[bool, str]:
    """
    Validate OpenRouter API key format
    Returns (is_valid, error_message)
    """
    if not api_key or not api_key.strip():
        return False, "API key is required"

    if not api_key.strip().startswith(OPENROUTER_KEY_PREFIX):
        return False, f"OpenRouter API keys should start with '{OPENROUTER_KEY_PREFIX}'"

    return True, ""


def require_credential(api_key: Optional[str]) -> str:
    """Return the stripped credential or raise CredentialMissing / CredentialMalformed"""
    if not api_key or not api_key.strip():
        raise CredentialMissing()

    api_key = api_key.strip()
    if not api_key.startswith(OPENROUTER_KEY_PREFIX):
        raise CredentialMalformed()
    return api_key


def mask_api_key(api_key: Optional[str]) -> str:
    """Mask an API key for display (show first 8 and last 4 chars)"""
    if not api_key or len(api_key) < 12:
        return "***"
    return f"{api_key[:8]}...{api_key[-4:]}"


def hash_api_key(api_key: str) -> str:
    """Create a hash of an API key for comparison"""
    return hashlib.sha256(api_key.encode()).hexdigest()[:16]


# ============================================================================
# Encryption at rest
# ============================================================================

def _get_fernet() -> Fernet:
    """Get or create Fernet instance for encryption"""
    global _fernet

    if _fernet is not None:
        return _fernet

    key = os.environ.get("PROMPT_FORGE_ENCRYPTION_KEY")
    if not key:
        # Development fallback: persist a generated key next to the process
        key_file = os.environ.get("PROMPT_FORGE_KEY_FILE", ".encryption_key")
        if os.path.exists(key_file):
            with open(key_file, "rb") as f:
                key = f.read().decode()
        else:
            key = Fernet.generate_key().decode()
            with open(key_file, "wb") as f:
                f.write(key.encode())
            logger.warning(
                "Generated new encryption key. Set PROMPT_FORGE_ENCRYPTION_KEY "
                "environment variable in production!"
            )

    _fernet = Fernet(key.encode())
    return _fernet


def reset_encryption():
    """Forget the cached Fernet instance (key rotation, tests)"""
    global _fernet
    _fernet = None


def encrypt_api_key(api_key: str) -> Tuple[str, str]:
    """
    Encrypt an API key and return (encrypted_key, key_hash)
    The hash is used for quick validation without decryption
    """
    if not api_key:
        return "", ""

    encrypted = _get_fernet().encrypt(api_key.encode())
    return base64.b64encode(encrypted).decode(), hash_api_key(api_key)


def decrypt_api_key(encrypted_key: str) -> Optional[str]:
    """Decrypt an API key, None when the blob cannot be decrypted"""
    if not encrypted_key:
        return None

    try:
        decrypted = _get_fernet().decrypt(base64.b64decode(encrypted_key))
        return decrypted.decode()
    except (InvalidToken, ValueError) as e:
        logger.error(f"Failed to decrypt API key: {type(e).__name__}")
        return None
