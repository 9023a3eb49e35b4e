"""FastAPI dependencies shared by the pool and auth routes."""

from typing import Optional

from fastapi import HTTPException, Header, Request

from zkpool.core.indexer import CommitmentIndexer
from zkpool.core.mixer import PrivilegedMixer
from zkpool.storage import DatabaseManager
from zkpool.security import verify_access_token


def get_mixer(request: Request) -> PrivilegedMixer:
    return request.app.state.mixer


def get_db(request: Request) -> DatabaseManager:
    """Get database manager."""
    return request.app.state.db


def get_indexer(request: Request) -> CommitmentIndexer:
    return request.app.state.indexer


async def get_token_payload(request: Request, authorization: Optional[str] = Header(None)) -> dict:
    """Decoded bearer token of the request."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    token = authorization[7:]
    payload = verify_access_token(token, request.app.state.settings)

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_caller(request: Request, authorization: Optional[str] = Header(None)) -> str:
    """Address of the authenticated caller, from the bearer token."""
    payload = await get_token_payload(request, authorization)
    return payload["address"]
