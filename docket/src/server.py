"""FastAPI router for the Docket review service.

Exposes REST endpoints for listing reviews, applying reviewer actions
(approve, reject, edit, submit-edit, cancel-edit), dispatching composite
action ids, and sweeping expired reviews. Designed to be mounted at
``/api/docket/`` by the parent application.

Example::

    from fastapi import FastAPI
    from docket.src.server import configure, router

    configure(lifecycle=lifecycle, processor=processor)
    app = FastAPI()
    app.include_router(router, prefix="/api/docket")
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from docket.src.actions import ActionOutcome, ActionProcessor, parse_action_id
from docket.src.lifecycle import DEFAULT_TIMEOUT_MINUTES, ReviewLifecycle, allowed_actions
from docket.src.models import ReviewAction, ReviewStatus
from shared.errors import (
    InvalidTransitionError,
    PersistenceError,
    ReviewNotFoundError,
)
from shared.hardening import ErrorFormatter

logger = logging.getLogger(__name__)

_formatter = ErrorFormatter()

# ===================================================================
# Pydantic request models
# ===================================================================


class ActorRequest(BaseModel):
    """Request body identifying the acting reviewer."""

    actor: str = Field(..., min_length=1, max_length=200)


class SubmitEditRequest(BaseModel):
    """Request body for submitting an edited answer."""

    actor: str = Field(..., min_length=1, max_length=200)
    text: str = Field(..., min_length=1, max_length=10_000)


class ActionIdRequest(BaseModel):
    """Request body for a composite action id such as ``approve_<review_id>``."""

    action_id: str = Field(..., min_length=1, max_length=300)
    actor: str = Field(..., min_length=1, max_length=200)
    text: str | None = Field(default=None, max_length=10_000)


class SweepRequest(BaseModel):
    """Request body for an expiry sweep."""

    timeout_minutes: float | None = Field(default=None, gt=0)


# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "lifecycle": None,
    "processor": None,
    "timeout_minutes": DEFAULT_TIMEOUT_MINUTES,
}


def get_lifecycle() -> ReviewLifecycle:
    """Return the ReviewLifecycle singleton, raising 503 if not initialised.

    Raises:
        HTTPException: 503 if the lifecycle has not been initialised.
    """
    lifecycle = _state.get("lifecycle")
    if lifecycle is None:
        raise HTTPException(
            status_code=503,
            detail="Docket not initialised. Call configure() first.",
        )
    return lifecycle


def get_processor() -> ActionProcessor:
    """Return the ActionProcessor singleton, raising 503 if not initialised.

    Raises:
        HTTPException: 503 if the processor has not been initialised.
    """
    processor = _state.get("processor")
    if processor is None:
        raise HTTPException(
            status_code=503,
            detail="Action processor not initialised.",
        )
    return processor


def configure(
    lifecycle: ReviewLifecycle,
    processor: ActionProcessor,
    review_timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
) -> None:
    """Inject dependencies into the module-level state.

    Args:
        lifecycle: Lifecycle over the review store.
        processor: Processor used for reviewer actions.
        review_timeout_minutes: Default age for the expiry sweep.
    """
    _state["lifecycle"] = lifecycle
    _state["processor"] = processor
    _state["timeout_minutes"] = review_timeout_minutes


def _run_action(
    review_id: str,
    action: ReviewAction,
    actor: str,
    text: str | None = None,
) -> dict[str, Any]:
    """Process one action and map domain errors to HTTP errors."""
    try:
        outcome: ActionOutcome = get_processor().process(review_id, action, actor, text=text)
        return outcome.to_dict()
    except ReviewNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except PersistenceError as exc:
        logger.exception("Failed to persist %s on review %s", action.value, review_id)
        raise HTTPException(
            status_code=500, detail=_formatter.format_review_error(exc).to_dict()
        ) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to %s review %s", action.value, review_id)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------


@router.get("/health")
def health() -> dict[str, Any]:
    """Return Docket service health and review counts."""
    lifecycle = _state.get("lifecycle")
    if lifecycle is None:
        return {"status": "not_configured", "version": "0.1.0", "reviews": {}}
    try:
        counts = lifecycle.store.count_by_status()
    except PersistenceError:
        logger.exception("Health check could not read review counts")
        return {"status": "degraded", "version": "0.1.0", "reviews": {}}
    return {"status": "ok", "version": "0.1.0", "reviews": counts}


# -------------------------------------------------------------------
# Reviews
# -------------------------------------------------------------------


@router.get("/reviews")
def list_reviews(status: str | None = None, limit: int | None = None) -> dict[str, Any]:
    """List reviews, optionally filtered by status.

    Args:
        status: Optional status value (pending, editing, approved, ...).
        limit: Optional maximum number of results.

    Returns:
        Dictionary with the list of review dicts.
    """
    try:
        status_filter = ReviewStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}") from exc
    try:
        reviews = get_lifecycle().store.list_reviews(status=status_filter, limit=limit)
        return {"reviews": [r.to_dict() for r in reviews]}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to list reviews")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.post("/reviews/sweep")
def sweep_reviews(request: SweepRequest | None = None) -> dict[str, Any]:
    """Expire pending reviews older than the timeout.

    Args:
        request: Optional override of the configured timeout.

    Returns:
        Dictionary with the expired review ids and count.
    """
    timeout = _state["timeout_minutes"]
    if request is not None and request.timeout_minutes is not None:
        timeout = request.timeout_minutes
    try:
        expired = get_lifecycle().sweep_expired(timeout_minutes=timeout)
        return {"expired": [r.review_id for r in expired], "count": len(expired)}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Expiry sweep failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/reviews/{review_id}")
def get_review(review_id: str) -> dict[str, Any]:
    """Return a review and the actions currently allowed on it."""
    try:
        record = get_lifecycle().get(review_id)
    except ReviewNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    data = record.to_dict()
    data["allowed_actions"] = [
        a.value for a in allowed_actions(record.status) if a is not ReviewAction.EXPIRE
    ]
    return data


# -------------------------------------------------------------------
# Reviewer actions
# -------------------------------------------------------------------


@router.post("/reviews/{review_id}/approve")
def approve_review(review_id: str, request: ActorRequest) -> dict[str, Any]:
    """Approve a pending review and deliver its answer."""
    return _run_action(review_id, ReviewAction.APPROVE, request.actor)


@router.post("/reviews/{review_id}/reject")
def reject_review(review_id: str, request: ActorRequest) -> dict[str, Any]:
    """Reject a pending review."""
    return _run_action(review_id, ReviewAction.REJECT, request.actor)


@router.post("/reviews/{review_id}/edit")
def edit_review(review_id: str, request: ActorRequest) -> dict[str, Any]:
    """Open a pending review for editing."""
    return _run_action(review_id, ReviewAction.EDIT, request.actor)


@router.post("/reviews/{review_id}/submit-edit")
def submit_edit(review_id: str, request: SubmitEditRequest) -> dict[str, Any]:
    """Replace the proposed answer, approve, and deliver it."""
    return _run_action(review_id, ReviewAction.SUBMIT_EDIT, request.actor, text=request.text)


@router.post("/reviews/{review_id}/cancel-edit")
def cancel_edit(review_id: str, request: ActorRequest) -> dict[str, Any]:
    """Return an editing review to pending."""
    return _run_action(review_id, ReviewAction.CANCEL_EDIT, request.actor)


@router.post("/actions")
def dispatch_action(request: ActionIdRequest) -> dict[str, Any]:
    """Dispatch a composite action id such as ``approve_review_ab12cd34ef56``."""
    try:
        action, review_id = parse_action_id(request.action_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _run_action(review_id, action, request.actor, text=request.text)
