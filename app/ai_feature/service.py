"""Orchestration layer wiring.

Flow per request:
1. Resolve the caller's session (X-Session-Id header)
2. Build an orchestrator around the request's DB session
3. Prompt -> generate script -> sandbox run -> explain
4. Record the user/assistant pair in the session history

Shared pieces (model client, sandbox executor, session registry) live for
the process; the data snapshot provider is per request.
"""
from functools import lru_cache
from typing import Annotated, Optional
import logging

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.ai_feature.conversation import SessionRegistry
from app.ai_feature.llm_client import CodeGenerator, ModelClient, ResponseSynthesizer
from app.ai_feature.pipeline import Orchestrator
from app.ai_feature.sandbox import SandboxExecutor
from app.ai_feature.snapshot import DatabaseSnapshotProvider

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

session_registry = SessionRegistry()


def get_session_registry() -> SessionRegistry:
    return session_registry


def get_session_id(
    x_session_id: Annotated[Optional[str], Header()] = None,
) -> str:
    return (x_session_id or "").strip() or DEFAULT_SESSION_ID


@lru_cache
def get_model_client() -> Optional[ModelClient]:
    """None means fallback mode: canned keyword answers, no model calls."""
    if settings.ASSISTANT_MODE == "fallback":
        logger.info("Assistant running in fallback mode (ASSISTANT_MODE=fallback)")
        return None
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set, assistant running in fallback mode")
        return None
    return ModelClient(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        timeout=settings.OPENAI_TIMEOUT,
        max_retries=settings.OPENAI_MAX_RETRIES,
        base_url=settings.OPENAI_BASE_URL,
    )


@lru_cache
def get_executor() -> SandboxExecutor:
    return SandboxExecutor(
        scratch_dir=settings.SANDBOX_SCRATCH_DIR,
        timeout_seconds=settings.SANDBOX_TIMEOUT_SECONDS,
        python_executable=settings.SANDBOX_PYTHON,
        memory_limit_mb=settings.SANDBOX_MEMORY_LIMIT_MB,
        max_output_bytes=settings.SANDBOX_MAX_OUTPUT_BYTES,
    )


db_dep = Annotated[AsyncSession, Depends(get_db)]
model_dep = Annotated[Optional[ModelClient], Depends(get_model_client)]
executor_dep = Annotated[SandboxExecutor, Depends(get_executor)]


async def get_orchestrator(
    db: db_dep, model_client: model_dep, executor: executor_dep
) -> Orchestrator:
    generator = synthesizer = None
    if model_client is not None:
        generator = CodeGenerator(model_client)
        synthesizer = ResponseSynthesizer(
            model_client, history_window=settings.HISTORY_WINDOW
        )

    return Orchestrator(
        snapshot_provider=DatabaseSnapshotProvider(db, row_limit=settings.SNAPSHOT_ROW_LIMIT),
        executor=executor,
        generator=generator,
        synthesizer=synthesizer,
        history_window=settings.HISTORY_WINDOW,
    )
