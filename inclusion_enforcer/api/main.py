"""
Forced Inclusion Enforcer API

FastAPI surface over a single InclusionEngine: message submission and
inclusion, operator administration, and the batch gate for off-chain
monitoring. The calling account is taken from the X-Caller header.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Add project root to path for imports
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from inclusion_enforcer.control_plane.engine import InclusionEngine
from inclusion_enforcer.control_plane.settings import load_settings
from inclusion_enforcer.core.errors import (
    AccountBlacklisted,
    AlreadyIncluded,
    AlreadyProcessed,
    DeadlinePassed,
    EnforcementError,
    InvalidMessageId,
    Unauthorized,
    UnknownMessage,
    UnprocessedMessages,
)
from inclusion_enforcer.core.ledger_height import LedgerHeightClock
from inclusion_enforcer.version import get_version

logger = logging.getLogger(__name__)


# ============================================================================
# Request/Response Schemas
# ============================================================================

class SubmitRequest(BaseModel):
    """Track a message."""
    message_id: str = Field(..., description="32-byte message hash, hex encoded")


class UpperBoundRequest(BaseModel):
    value: int = Field(..., ge=0, description="Inclusion window in height units")


class BlacklistRequest(BaseModel):
    account: str = Field(..., min_length=1)


class HeightRequest(BaseModel):
    height: int = Field(..., ge=0)


class MessageView(BaseModel):
    """Tracked message with its status at the current height."""
    message_id: str
    included: bool
    deadline: int
    sequence: int
    status: str


class GateView(BaseModel):
    height: int
    may_proceed: bool
    reject_new_batch: bool
    blocking: List[str] = []


class BatchResult(BaseModel):
    accepted: bool
    height: int
    result: Optional[Any] = None


# ============================================================================
# Error mapping
# ============================================================================

_STATUS_BY_ERROR = [
    (Unauthorized, 403),
    (AccountBlacklisted, 403),
    (UnknownMessage, 404),
    (AlreadyProcessed, 409),
    (AlreadyIncluded, 409),
    (UnprocessedMessages, 409),
    (DeadlinePassed, 422),
    (InvalidMessageId, 400),
]


def status_for_error(error: EnforcementError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


# ============================================================================
# FastAPI App
# ============================================================================

def create_app(
    engine: Optional[InclusionEngine] = None,
    clock: Optional[LedgerHeightClock] = None,
    api_key: Optional[str] = None,
) -> FastAPI:
    """
    Build the API around an engine.

    Without an engine, one is opened from settings at startup, driven by a
    LedgerHeightClock starting at INCLUSION_START_HEIGHT (default 0).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            settings = load_settings()
            app.state.clock = LedgerHeightClock(height=int(os.environ.get("INCLUSION_START_HEIGHT", "0")))
            app.state.engine = InclusionEngine.open(settings, app.state.clock)
            app.state.api_key = settings.api_key
        logger.info("Inclusion enforcer API starting (operator %s)", app.state.engine.operator)
        yield
        logger.info("Inclusion enforcer API shutting down")

    app = FastAPI(
        title="Forced Inclusion Enforcer API",
        description="Deadline-based L1 -> L2 message inclusion gate",
        version=get_version(),
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.clock = clock if clock is not None else getattr(engine, "height_source", None)
    app.state.api_key = api_key

    def verify_token(x_api_key: Optional[str]) -> None:
        if app.state.api_key and x_api_key != app.state.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def get_engine() -> InclusionEngine:
        return app.state.engine

    def message_view(message_id: str) -> MessageView:
        eng = get_engine()
        entry = eng.get_entry(message_id)
        if entry is None:
            raise UnknownMessage(message_id, eng.current_height())
        return MessageView(status=eng.message_status(message_id).value, **entry.to_dict())

    @app.exception_handler(EnforcementError)
    async def enforcement_error_handler(request: Request, exc: EnforcementError):
        body: Dict[str, Any] = {"code": exc.code, "detail": str(exc)}
        if isinstance(exc, UnprocessedMessages):
            body["blocking"] = exc.blocking
        return JSONResponse(status_code=status_for_error(exc), content=body)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"code": "INVALID", "detail": str(exc)})

    # ------------------------------------------------------------------
    # Health / monitoring
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": get_version()}

    @app.get("/gate", response_model=GateView)
    async def gate(x_api_key: Optional[str] = Header(None)):
        """Batch gate state. Read-only, safe to poll."""
        verify_token(x_api_key)
        eng = get_engine()
        reject = eng.reject_new_batch()
        return GateView(
            height=eng.current_height(),
            may_proceed=not reject,
            reject_new_batch=reject,
            blocking=eng.blocking_messages(),
        )

    @app.get("/summary")
    async def summary(x_api_key: Optional[str] = Header(None)):
        verify_token(x_api_key)
        return get_engine().summary()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @app.get("/messages", response_model=List[MessageView])
    async def list_messages(x_api_key: Optional[str] = Header(None)):
        verify_token(x_api_key)
        eng = get_engine()
        height = eng.current_height()
        return [
            MessageView(status=e.status_at(height).value, **e.to_dict())
            for e in eng.entries()
        ]

    @app.get("/messages/{message_id}", response_model=MessageView)
    async def get_message(message_id: str, x_api_key: Optional[str] = Header(None)):
        verify_token(x_api_key)
        return message_view(message_id)

    @app.post("/messages", response_model=MessageView, status_code=201)
    async def submit_message(
        request: SubmitRequest,
        x_caller: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None),
    ):
        verify_token(x_api_key)
        entry = get_engine().submit(request.message_id, caller=x_caller)
        return message_view(entry.message_id)

    @app.post("/messages/{message_id}/include", response_model=MessageView)
    async def include_message(
        message_id: str,
        x_caller: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None),
    ):
        verify_token(x_api_key)
        entry = get_engine().mark_included(message_id, caller=x_caller)
        return message_view(entry.message_id)

    # ------------------------------------------------------------------
    # Operator administration
    # ------------------------------------------------------------------

    @app.put("/upper-bound")
    async def set_upper_bound(
        request: UpperBoundRequest,
        x_caller: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None),
    ):
        verify_token(x_api_key)
        return {"upper_bound": get_engine().set_upper_bound(x_caller, request.value)}

    @app.post("/blacklist")
    async def add_to_blacklist(
        request: BlacklistRequest,
        x_caller: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None),
    ):
        verify_token(x_api_key)
        changed = get_engine().add_to_blacklist(x_caller, request.account)
        return {"account": request.account, "blacklisted": True, "changed": changed}

    @app.delete("/blacklist/{account}")
    async def remove_from_blacklist(
        account: str,
        x_caller: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None),
    ):
        verify_token(x_api_key)
        changed = get_engine().remove_from_blacklist(x_caller, account)
        return {"account": account, "blacklisted": False, "changed": changed}

    @app.put("/height")
    async def advance_height(
        request: HeightRequest,
        x_caller: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None),
    ):
        """Feed a new L1 height. Operator only; height never moves back."""
        verify_token(x_api_key)
        eng = get_engine()
        eng.guard.require_operator(x_caller, "advance_height")
        if not isinstance(app.state.clock, LedgerHeightClock):
            raise HTTPException(status_code=409, detail="Height source is not externally driven")
        return {"height": app.state.clock.advance_to(request.height)}

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    @app.post("/batches", response_model=BatchResult)
    async def process_batch(x_api_key: Optional[str] = Header(None)):
        verify_token(x_api_key)
        eng = get_engine()
        result = eng.process_new_batch()
        return BatchResult(accepted=True, height=eng.current_height(), result=result)

    return app


app = create_app()


# ============================================================================
# Run with: uvicorn inclusion_enforcer.api.main:app --reload
# ============================================================================
