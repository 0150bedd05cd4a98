"""FastAPI router for the Relay message service.

Exposes REST endpoints for submitting inbound chat messages, replacing
the FAQ corpus, adjusting the direct-match threshold, and reading the
active configuration and recent activity. Designed to be mounted at
``/api/relay/`` by the parent application.

Example::

    from fastapi import FastAPI
    from relay.src.server import configure, router

    configure(pipeline=pipeline)
    app = FastAPI()
    app.include_router(router, prefix="/api/relay")
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from relay.src.pipeline import IncomingMessage, MessagePipeline
from shared.hardening import ErrorFormatter, ValidationError
from sieve.src.corpus import corpus_from_records

logger = logging.getLogger(__name__)

_formatter = ErrorFormatter()

# ===================================================================
# Pydantic request models
# ===================================================================


class MessageRequest(BaseModel):
    """Request body for an inbound chat message."""

    message_id: str = Field(..., min_length=1, max_length=200)
    room_id: str = Field(..., min_length=1, max_length=200)
    text: str = Field(default="", max_length=20_000)
    room_name: str = Field(default="", max_length=200)
    sender_id: str = Field(default="", max_length=200)
    sender_username: str = Field(default="", max_length=200)
    sender_is_bot: bool = False


class CorpusEntryModel(BaseModel):
    """One question/answer pair."""

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class CorpusRequest(BaseModel):
    """Request body replacing the FAQ corpus."""

    entries: list[CorpusEntryModel] = Field(..., min_length=1)


class ThresholdRequest(BaseModel):
    """Request body for a new direct-match threshold."""

    threshold: float = Field(..., ge=0)


# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "pipeline": None,
}


def get_pipeline() -> MessagePipeline:
    """Return the MessagePipeline singleton, raising 503 if not initialised.

    Raises:
        HTTPException: 503 if the pipeline has not been initialised.
    """
    pipeline = _state.get("pipeline")
    if pipeline is None:
        raise HTTPException(
            status_code=503,
            detail="Relay not initialised. Call configure() first.",
        )
    return pipeline


def configure(pipeline: MessagePipeline) -> None:
    """Inject the pipeline into the module-level state.

    Args:
        pipeline: Fully wired message pipeline.
    """
    _state["pipeline"] = pipeline


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


@router.get("/health")
def health() -> dict[str, Any]:
    """Return Relay service health."""
    pipeline = _state.get("pipeline")
    if pipeline is None:
        return {"status": "not_configured", "version": "0.1.0"}
    return {
        "status": "ok",
        "version": "0.1.0",
        "corpus_size": len(pipeline.classifier.corpus),
        "threshold": pipeline.classifier.threshold,
        "review_mode": pipeline.config.enable_review_mode,
    }


@router.post("/messages")
def submit_message(request: MessageRequest) -> dict[str, Any]:
    """Run one inbound message through the pipeline.

    Args:
        request: The chat message.

    Returns:
        Dictionary describing the pipeline outcome.
    """
    pipeline = get_pipeline()
    try:
        result = pipeline.handle(IncomingMessage(**request.model_dump()))
        return result.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to process message %s", request.message_id)
        raise HTTPException(
            status_code=500, detail=_formatter.format_pipeline_error(exc).to_dict()
        ) from exc


@router.put("/corpus")
def replace_corpus(request: CorpusRequest) -> dict[str, Any]:
    """Replace the FAQ corpus and rebuild the ranker.

    Args:
        request: The new entries.

    Returns:
        Dictionary with the new corpus size.
    """
    pipeline = get_pipeline()
    try:
        corpus = corpus_from_records([e.model_dump() for e in request.entries])
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    pipeline.classifier.update_corpus(corpus)
    return {"entries": len(corpus)}


@router.put("/threshold")
def update_threshold(request: ThresholdRequest) -> dict[str, Any]:
    """Set the direct-match threshold.

    Values below the configured floor are clamped up to it.

    Args:
        request: Requested threshold.

    Returns:
        Dictionary with the requested and effective thresholds.
    """
    pipeline = get_pipeline()
    effective = pipeline.classifier.update_threshold(request.threshold)
    pipeline.config.similarity_threshold = effective
    return {"requested": request.threshold, "threshold": effective}


@router.get("/config")
def get_config() -> dict[str, Any]:
    """Return the active configuration with secrets masked."""
    return get_pipeline().config.to_dict()


@router.get("/activity")
def list_activity(limit: int = 50) -> dict[str, Any]:
    """Return the most recent activity entries, newest last."""
    entries = get_pipeline().activity.entries
    if limit >= 0:
        entries = entries[-limit:] if limit else []
    return {"entries": [e.to_dict() for e in entries]}
