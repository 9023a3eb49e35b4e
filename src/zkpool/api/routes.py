"""REST API endpoints for the privileged pool.

Serve with the application factory:

    uvicorn zkpool.api.routes:create_app --factory
"""

import logging
from datetime import datetime, UTC
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from zkpool.config import PoolSettings, get_settings
from zkpool.core.indexer import CommitmentIndexer
from zkpool.core.ledger import InMemoryLedger
from zkpool.core.mixer import DepositReceipt, PrivilegedMixer
from zkpool.storage import DatabaseManager, RootKind
from zkpool.models.schemas import (
    DepositRequest,
    DepositResponse,
    WithdrawalRequest,
    WithdrawalResponse,
    MixerStateResponse,
    RootsResponse,
    RootKnownResponse,
    SpentRequest,
    SpentResponse,
    MerklePathResponse,
    UpdatePrivilegeRootRequest,
    UpdateAdministratorRequest,
    ErrorResponse,
)
from zkpool.api.auth_routes import register_auth_routes
from zkpool.api.dependencies import get_caller, get_db, get_indexer, get_mixer
from zkpool.utils.encoding import to_fixed_hex, to_int
from zkpool.exceptions import (
    ZKPoolException,
    AccessControlError,
    AlreadySpentError,
    CommitmentAlreadyUsedError,
    InconsistentStateError,
    InsufficientFundsError,
    LeafNotFoundError,
    TreeFullError,
    UnknownRootError,
    ValueReleaseError,
)

# Configure logging
logger = logging.getLogger(__name__)

# Most specific class first
ERROR_STATUS = [
    (AccessControlError, 403),
    (AlreadySpentError, 409),
    (CommitmentAlreadyUsedError, 409),
    (UnknownRootError, 409),
    (TreeFullError, 409),
    (LeafNotFoundError, 404),
    (InsufficientFundsError, 402),
    (ValueReleaseError, 503),
    (InconsistentStateError, 500),
]


def status_for(error: ZKPoolException) -> int:
    """HTTP status code for a pool error."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 400


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    version: str = "0.1.0"


def restore_from_storage(mixer: PrivilegedMixer, db: DatabaseManager) -> None:
    """
    Rebuild a freshly built pool from stored records.

    Replays the latest privilege root, every stored deposit in leaf order and
    every withdrawn nullifier. An in-memory ledger is credited with the value
    the pool still holds for unspent deposits.

    Raises:
        InconsistentStateError: If the stored deposits do not replay to their
            stored roots
    """
    with db.get_session() as session:
        stored_root = db.get_current_privilege_root(session)
        receipts = [
            DepositReceipt(
                commitment=to_int(record.commitment),
                leaf_index=record.leaf_index,
                merkle_root=to_int(record.merkle_root),
                depositor=record.depositor,
                deposit_hash=record.deposit_hash,
                timestamp=record.timestamp,
            )
            for record in db.get_deposits(session)
        ]
        spent = [to_int(record.nullifier_hash) for record in db.get_withdrawals(session)]

    if mixer.privilege_root is None and stored_root is not None:
        mixer.update_root(mixer.administrator, to_int(stored_root.root))
        logger.info(f"Restored privilege root {stored_root.root} from storage")

    mixer.restore(receipts, spent)

    if isinstance(mixer.ledger, InMemoryLedger):
        held = (len(receipts) - len(spent)) * mixer.denomination
        if held > 0:
            mixer.ledger.fund(InMemoryLedger.POOL_ACCOUNT, held)


def create_app(
    mixer: Optional[PrivilegedMixer] = None,
    db: Optional[DatabaseManager] = None,
    settings: Optional[PoolSettings] = None,
) -> FastAPI:
    """
    Build the API around one pool instance.

    Args:
        mixer: Pool to serve (built from settings when omitted)
        db: Record store (opened from ``settings.database_url`` when omitted)
        settings: Deployment settings (process settings when omitted)

    Returns:
        FastAPI: Application with the pool on ``app.state``
    """
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level)

    if db is None:
        db = DatabaseManager(settings.database_url)
        db.create_tables()
    if mixer is None:
        mixer = PrivilegedMixer.from_settings(settings)
        restore_from_storage(mixer, db)

    app = FastAPI(
        title="Privileged ZK Pool API",
        description="Fixed-denomination privacy pool gated by a privilege allow-list",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.mixer = mixer
    app.state.db = db
    # The mirror is fed under the pool lock, so its leaf order is the pool's
    indexer = CommitmentIndexer(height=mixer.tree.height, compressor=mixer.compressor)
    mixer.add_insert_listener(indexer.on_insert)
    app.state.indexer = indexer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ZKPoolException)
    async def pool_exception_handler(request: Request, exc: ZKPoolException):
        """Render pool errors as {"error", "code"}."""
        return JSONResponse(
            status_code=status_for(exc),
            content=ErrorResponse(error=str(exc), code=exc.code).model_dump(),
        )

    # Convert 422 to 400
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        error_messages = []

        for error in errors:
            field = " -> ".join(str(loc) for loc in error["loc"])
            error_messages.append(f"{field}: {error['msg']}")

        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="; ".join(error_messages), code="ValidationError").model_dump(),
        )

    # ========================================================================
    # Health & State Endpoints
    # ========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Check service health and status."""
        return HealthResponse(status="operational")

    @app.get("/state", response_model=MixerStateResponse, tags=["System"])
    async def get_state(mixer: PrivilegedMixer = Depends(get_mixer)):
        """Get current pool state."""
        return MixerStateResponse(**mixer.get_state().to_dict())

    @app.get("/roots", response_model=RootsResponse, tags=["System"])
    async def get_roots(mixer: PrivilegedMixer = Depends(get_mixer)):
        """Retained commitment roots, oldest first."""
        return RootsResponse(
            current=to_fixed_hex(mixer.get_last_root()),
            roots=[to_fixed_hex(root) for root in mixer.tree.roots],
        )

    @app.get("/roots/{root}/known", response_model=RootKnownResponse, tags=["System"])
    async def is_known_root(root: str, mixer: PrivilegedMixer = Depends(get_mixer)):
        """Whether a root is inside the retention window."""
        try:
            value = to_int(root)
        except ValueError:
            raise HTTPException(status_code=400, detail="Root must be a hex or decimal integer")
        return RootKnownResponse(root=root, known=mixer.is_known_root(value))

    @app.post("/nullifiers/spent", response_model=SpentResponse, tags=["System"])
    async def is_spent_array(request: SpentRequest, mixer: PrivilegedMixer = Depends(get_mixer)):
        """Spent status for a batch of nullifier hashes."""
        return SpentResponse(spent=mixer.is_spent_array(request.nullifier_hashes))

    @app.get("/path/{commitment}", response_model=MerklePathResponse, tags=["System"])
    async def get_path(commitment: str, indexer: CommitmentIndexer = Depends(get_indexer)):
        """Authentication path of a deposited commitment."""
        try:
            value = to_int(commitment)
        except ValueError:
            raise HTTPException(status_code=400, detail="Commitment must be a hex or decimal integer")
        return MerklePathResponse(**indexer.get_path(value).to_dict())

    # ========================================================================
    # Deposit & Withdrawal Endpoints
    # ========================================================================

    @app.post("/deposit", response_model=DepositResponse, tags=["Deposit"])
    def deposit(
        request: DepositRequest,
        caller: str = Depends(get_caller),
        mixer: PrivilegedMixer = Depends(get_mixer),
        db: DatabaseManager = Depends(get_db),
    ):
        """
        Deposit one denomination.

        - **commitment**: H(nullifier, secret) of a fresh note
        - **privilege**: caller's index, level and privilege proof
        """
        receipt = mixer.deposit(
            caller,
            request.commitment,
            request.privilege.index,
            request.privilege.level,
            request.privilege.steps(),
            value=request.value,
        )

        session = db.get_session()
        try:
            db.add_deposit(
                session,
                commitment=receipt.commitment,
                leaf_index=receipt.leaf_index,
                merkle_root=receipt.merkle_root,
                depositor=receipt.depositor,
                deposit_hash=receipt.deposit_hash,
            )
            db.add_root(session, receipt.merkle_root, RootKind.COMMITMENT, leaf_count=receipt.leaf_index + 1)
        except SQLAlchemyError as e:
            # Log but don't fail the deposit if record storage fails
            session.rollback()
            logger.error(f"Failed to store deposit {receipt.deposit_hash}: {e}")
        finally:
            session.close()

        return DepositResponse(**receipt.to_dict())

    @app.post("/withdraw", response_model=WithdrawalResponse, tags=["Withdrawal"])
    def withdraw(
        request: WithdrawalRequest,
        caller: str = Depends(get_caller),
        mixer: PrivilegedMixer = Depends(get_mixer),
        db: DatabaseManager = Depends(get_db),
    ):
        """
        Withdraw one deposit to ``recipient``.

        - **proof**: withdrawal proof for the configured proof system
        - **root**, **nullifier_hash**, **recipient**, **relayer**, **fee**,
          **refund**: public inputs of the proof
        - **privilege**: caller's index, level and privilege proof
        """
        proof = mixer.verifier.parse_proof(request.proof)
        receipt = mixer.withdraw(
            caller,
            proof,
            request.root,
            request.nullifier_hash,
            request.recipient,
            request.relayer,
            request.fee,
            request.refund,
            privilege_index=request.privilege.index,
            privilege_level=request.privilege.level,
            privilege_proof=request.privilege.steps(),
        )

        session = db.get_session()
        try:
            db.add_withdrawal(
                session,
                nullifier_hash=receipt.nullifier_hash,
                transaction_hash=receipt.transaction_hash,
                merkle_root=receipt.merkle_root,
                recipient=receipt.recipient,
                relayer=receipt.relayer,
                amount=receipt.amount,
                fee=receipt.fee,
                refund=receipt.refund,
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to store withdrawal {receipt.transaction_hash}: {e}")
        finally:
            session.close()

        return WithdrawalResponse(**receipt.to_dict())

    # ========================================================================
    # Admin Endpoints
    # ========================================================================

    @app.post("/admin/privilege-root", tags=["Admin"])
    def update_privilege_root(
        request: UpdatePrivilegeRootRequest,
        caller: str = Depends(get_caller),
        mixer: PrivilegedMixer = Depends(get_mixer),
        db: DatabaseManager = Depends(get_db),
    ):
        """Publish a new privilege root (administrator only)."""
        mixer.update_root(caller, request.root)

        session = db.get_session()
        try:
            db.add_root(session, request.root, RootKind.PRIVILEGE)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to store privilege root: {e}")
        finally:
            session.close()

        return {"privilege_root": to_fixed_hex(request.root)}

    @app.post("/admin/administrator", tags=["Admin"])
    def update_administrator(
        request: UpdateAdministratorRequest,
        caller: str = Depends(get_caller),
        mixer: PrivilegedMixer = Depends(get_mixer),
    ):
        """Transfer the administrator role (administrator only)."""
        mixer.update_administrator(caller, request.administrator)
        return {"administrator": mixer.administrator}

    register_auth_routes(app)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
