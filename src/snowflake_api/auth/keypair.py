"""
Key-pair authentication: mints the short-lived JWT the service accepts in place of a password.

The token is a pure function of the private key, the account/user identity and the clock.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from snowflake_api.exc import AuthenticationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "RS256"
DEFAULT_JWT_LIFETIME = timedelta(minutes=59)


@dataclass(frozen=True)
class Credential:
    """A signed bearer token and the moment it stops being accepted."""

    token: str
    expires_at: datetime


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def load_private_key(
    private_key_pem: Union[str, bytes], password: Optional[Union[str, bytes]] = None
) -> rsa.RSAPrivateKey:
    """Load a PKCS#8 PEM encoded RSA private key, optionally encrypted."""
    try:
        key = serialization.load_pem_private_key(
            _to_bytes(private_key_pem),
            password=_to_bytes(password) if password is not None else None,
        )
    except (ValueError, TypeError) as e:
        raise AuthenticationError("Could not load private key: {}".format(e)) from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthenticationError(
            "Key-pair authentication requires an RSA private key, got {}".format(
                type(key).__name__
            )
        )
    return key


def public_key_fingerprint(private_key: rsa.RSAPrivateKey) -> str:
    """SHA256 fingerprint of the DER encoded public key, as registered on the user."""
    public_der = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest = hashlib.sha256(public_der).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii")


def _qualified_username(account_identifier: str, user: str) -> str:
    # Region and cloud suffixes are not part of the account locator in the claims
    account = account_identifier.split(".", 1)[0]
    return "{}.{}".format(account.upper(), user.upper())


def generate_jwt_token(
    private_key_pem: Union[str, bytes],
    account_identifier: str,
    user: str,
    now: Optional[datetime] = None,
    lifetime: timedelta = DEFAULT_JWT_LIFETIME,
    private_key_password: Optional[Union[str, bytes]] = None,
) -> Credential:
    """
    Mint a key-pair JWT.

    Args:
        private_key_pem: PKCS#8 PEM encoded RSA private key
        account_identifier: Account locator, optionally with region suffix
        user: Login name of the user the public key is registered on
        now: Issue time, defaults to the current time
        lifetime: How long the token is valid
        private_key_password: Password of an encrypted private key

    Returns:
        Credential holding the token and its expiry

    Raises:
        AuthenticationError: If the key cannot be loaded or the token cannot be signed
    """
    now = now or datetime.now(tz=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    private_key = load_private_key(private_key_pem, private_key_password)
    qualified_username = _qualified_username(account_identifier, user)

    issued_at = int(now.timestamp())
    expires_at = issued_at + int(lifetime.total_seconds())
    payload = {
        "iss": "{}.{}".format(qualified_username, public_key_fingerprint(private_key)),
        "sub": qualified_username,
        "iat": issued_at,
        "exp": expires_at,
    }

    try:
        token = jwt.encode(payload, private_key, algorithm=JWT_ALGORITHM)
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise AuthenticationError("Could not sign JWT: {}".format(e)) from e

    logger.debug("Generated JWT for %s expiring at %s", qualified_username, expires_at)
    return Credential(
        token=token,
        expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
    )
