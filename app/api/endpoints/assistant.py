import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends

from app.core import schemas
from app.ai_feature import fallback
from app.ai_feature.conversation import SessionRegistry
from app.ai_feature.errors import InvalidInput
from app.ai_feature.pipeline import Orchestrator
from app.ai_feature.service import get_orchestrator, get_session_id, get_session_registry

router = APIRouter(prefix="/api/assistant", tags=["Assistant"])

orchestrator_dep = Annotated[Orchestrator, Depends(get_orchestrator)]
registry_dep = Annotated[SessionRegistry, Depends(get_session_registry)]
session_id_dep = Annotated[str, Depends(get_session_id)]


@router.post("/chat", response_model=schemas.ChatResponse)
async def chat(
    payload: schemas.ChatRequest,
    orchestrator: orchestrator_dep,
    registry: registry_dep,
    session_id: session_id_dep,
):
    """
    Answer a natural-language question about the patient / inventory data.
    Model and sandbox failures still come back as 200 with an apologetic text.
    """
    if payload.message is None or not payload.message.strip():
        raise InvalidInput("Message is required")

    session = registry.get_or_create(session_id)
    try:
        turn = await orchestrator.handle(session, payload.message)
    except InvalidInput:
        raise
    except Exception as error:
        logging.error(f"Assistant pipeline crashed for session {session_id}: {error}")
        return schemas.ChatResponse(
            response=schemas.AssistantReply(
                text=fallback.GENERATION_APOLOGY,
                action=None,
                suggestions=list(fallback.RETRY_SUGGESTIONS),
            ),
            timestamp=datetime.now(timezone.utc),
        )

    return schemas.ChatResponse(
        response=schemas.AssistantReply(
            text=turn.text,
            action=turn.action,
            suggestions=list(turn.suggestions),
        ),
        python_code=turn.generated_code,
        analysis_results=turn.execution.output if turn.execution else None,
        timestamp=turn.timestamp,
    )


@router.get("/history", response_model=schemas.HistoryResponse)
async def history(registry: registry_dep, session_id: session_id_dep):
    """Return the ordered turns of the caller's session (empty if none yet)."""
    session = registry.get(session_id)
    turns = list(session.store.all()) if session else []
    return schemas.HistoryResponse(history=turns, timestamp=datetime.now(timezone.utc))


@router.post("/clear", response_model=schemas.ClearResponse)
async def clear(registry: registry_dep, session_id: session_id_dep):
    registry.clear(session_id)
    return schemas.ClearResponse(
        message="Conversation history cleared", timestamp=datetime.now(timezone.utc)
    )
