"""Caller authentication with address-bound JWT bearer tokens."""

import jwt
from datetime import datetime, timedelta, UTC
from typing import Optional, Dict, Any

from zkpool.config import PoolSettings, get_settings
from zkpool.utils.encoding import normalize_address


def create_access_token(address: str, settings: Optional[PoolSettings] = None,
                        expires_delta: Optional[timedelta] = None) -> tuple[str, datetime]:
    """
    Create a JWT access token for an address.

    The API takes the caller identity for privilege checks from the
    ``address`` claim.

    Returns:
        tuple: (token, expiry_datetime)
    """
    settings = settings or get_settings()
    if expires_delta is None:
        expires_delta = timedelta(hours=settings.token_expire_hours)

    now = datetime.now(UTC)
    expire = now + expires_delta

    to_encode = {
        "address": normalize_address(address),
        "exp": expire,
        "iat": now,
    }

    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.token_algorithm)
    return encoded_jwt, expire


def verify_access_token(token: str, settings: Optional[PoolSettings] = None) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a JWT access token.

    Returns:
        Dictionary with token payload if valid, None if invalid/expired
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.token_algorithm])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    if "address" not in payload:
        return None
    return payload


if __name__ == "__main__":
    # Out-of-band issuance, e.g. the administrator's first token
    import sys

    if len(sys.argv) != 2:
        sys.exit("usage: python -m zkpool.security.auth <address>")
    token, expire = create_access_token(sys.argv[1])
    print(token)
    print(f"expires {expire.isoformat()}", file=sys.stderr)
