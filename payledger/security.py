"""
Security utilities: JWT tokens, Fernet encryption, and webhook signatures.

Three concerns are handled here:

1. JWT TOKENS (JSON Web Tokens)
   - The marketplace's user system signs a JWT with the shared SECRET_KEY
     (HS256); this service only verifies it
   - "sub" carries the user id, "role" one of member / admin / service
   - create_access_token() exists for service-to-service callers and tests

2. FERNET ENCRYPTION (AES-128-CBC + HMAC-SHA256)
   - Used for the gateway payout token stored on a payment method
   - Authenticated encryption: data is both encrypted and integrity-checked
   - The key is loaded from the environment, never hardcoded

3. WEBHOOK SIGNATURES (HMAC-SHA256)
   - The payment gateway signs each webhook body with WEBHOOK_SECRET and
     sends "sha256=<hexdigest>" in the X-Gateway-Signature header
   - Verification uses a constant-time comparison
"""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from jose import jwt

from payledger.config import settings


# ---------------------------------------------------------------------------
# 1. JWT Tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ---------------------------------------------------------------------------
# 2. Fernet Encryption (payout tokens at rest)
# ---------------------------------------------------------------------------

_fernet = Fernet(settings.PAYMENT_METHOD_ENCRYPTION_KEY.encode())


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a string for storage in a LargeBinary column."""
    return _fernet.encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """
    Decrypt a Fernet-encrypted value back to plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the data is corrupted or
            the encryption key doesn't match.
    """
    return _fernet.decrypt(ciphertext).decode()


# ---------------------------------------------------------------------------
# 3. Webhook signatures
# ---------------------------------------------------------------------------

SIGNATURE_PREFIX = "sha256="


def sign_webhook(body: bytes, secret: str | None = None) -> str:
    """Return the X-Gateway-Signature header value for ``body``."""
    secret = secret or settings.WEBHOOK_SECRET
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(
    body: bytes,
    signature: str | None,
    secret: str | None = None,
) -> bool:
    """True if ``signature`` is the gateway's HMAC of ``body``."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign_webhook(body, secret)
    return hmac.compare_digest(expected, signature)
