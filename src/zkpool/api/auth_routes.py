"""Caller token endpoints.

Endpoints:
    POST /auth/token - Issue a bearer token for an address (administrator only)
    GET /auth/verify - Verify token validity

Tokens bind a caller address; the pool still checks that address against
the privilege root on every deposit and withdrawal. The administrator's own
first token is issued out of band with ``python -m zkpool.security.auth``.
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Optional

from fastapi import FastAPI, Depends, Request
from pydantic import BaseModel, Field, field_validator

from zkpool.api.dependencies import get_caller, get_mixer, get_token_payload
from zkpool.core.mixer import PrivilegedMixer
from zkpool.security import create_access_token
from zkpool.utils.encoding import normalize_address
from zkpool.exceptions import NotAdminError

logger = logging.getLogger(__name__)


# ===========================================
# Request/Response Models
# ===========================================


class TokenRequest(BaseModel):
    """Token issuance request."""

    address: str
    expires_in_hours: Optional[int] = Field(default=None, ge=1)

    @field_validator("address")
    @classmethod
    def _address(cls, value: str) -> str:
        return normalize_address(value)


class TokenResponse(BaseModel):
    """Issued token."""

    access_token: str
    token_type: str = "bearer"
    address: str
    expires_in: int  # seconds


class VerifyResponse(BaseModel):
    address: str
    expires_at: datetime


def register_auth_routes(app: FastAPI):
    """Add the token endpoints to ``app``."""

    @app.post("/auth/token", response_model=TokenResponse, tags=["Auth"])
    async def issue_token(
        request: TokenRequest,
        http_request: Request,
        caller: str = Depends(get_caller),
        mixer: PrivilegedMixer = Depends(get_mixer),
    ):
        """Issue a token for ``address`` (administrator only)."""
        if not mixer.gatekeeper.is_administrator(caller):
            logger.warning(f"Token issuance refused for non-administrator {caller}")
            raise NotAdminError("Only the administrator can issue tokens")

        expires_delta = (
            timedelta(hours=request.expires_in_hours) if request.expires_in_hours else None
        )
        token, expire = create_access_token(request.address, http_request.app.state.settings, expires_delta)
        logger.info(f"Issued token for {request.address}")

        return TokenResponse(
            access_token=token,
            address=request.address,
            expires_in=int((expire - datetime.now(UTC)).total_seconds()),
        )

    @app.get("/auth/verify", response_model=VerifyResponse, tags=["Auth"])
    async def verify_token(payload: dict = Depends(get_token_payload)):
        """Verify the presented token and return its address."""
        return VerifyResponse(
            address=payload["address"],
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
