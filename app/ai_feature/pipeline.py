from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple
import logging

from app.ai_feature import fallback
from app.ai_feature.conversation import Role, Session, Turn
from app.ai_feature.errors import (
    GenerationFailure,
    InvalidInput,
    SnapshotUnavailable,
    SynthesisFailure,
)
from app.ai_feature.llm_client import CodeGenerator, ResponseSynthesizer
from app.ai_feature.prompt_builder import DEFAULT_HISTORY_WINDOW, build_generation_prompt
from app.ai_feature.sandbox import ExecutionResult, SandboxExecutor
from app.ai_feature.snapshot import DATA_SCHEMA, SchemaDescriptor


# -----------------------------------------------------------------------------
# PIPELINE MODULE - Orchestration of one assistant query
# Purpose: query -> prompt -> generated script -> sandbox run -> explanation,
#          absorb every stage failure, record exactly one user/assistant pair
# -----------------------------------------------------------------------------


logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Orchestrator states for a single query."""

    IDLE = "idle"
    GENERATING = "generating"
    EXECUTING = "executing"
    SYNTHESIZING = "synthesizing"
    FAILED = "failed"
    DONE = "done"


class SnapshotProvider(Protocol):
    async def snapshot(self) -> Dict[str, List[Dict[str, Any]]]: ...

    async def counts(self) -> Dict[str, int]: ...


class QueryTrace:
    """Records the state transitions of one query, with timings."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.start_time = datetime.now()
        self.state = PipelineState.IDLE
        self.transitions: List[Dict[str, Any]] = []

    def advance(self, state: PipelineState, message: str = "", level: str = "info"):
        entry = {
            "from": self.state.value,
            "to": state.value,
            "message": message,
            "elapsed_seconds": (datetime.now() - self.start_time).total_seconds(),
        }
        self.transitions.append(entry)
        self.state = state

        line = f"[Session {self.session_id}] {entry['from']} -> {entry['to']}"
        if message:
            line += f": {message}"
        if level == "warning":
            logger.warning(line)
        else:
            logger.info(line)

    @property
    def states(self) -> List[PipelineState]:
        return [PipelineState(entry["to"]) for entry in self.transitions]


class Orchestrator:
    """
    Runs one query through the assistant pipeline and records the result.

    Idle -> Generating -> Executing -> Synthesizing -> Done, with Failed
    reachable from the three middle states. Every path ends in Done with a
    completed assistant turn; only InvalidInput escapes to the caller.

    Without a generator the orchestrator is in fallback mode and answers
    from fixed keyword rules.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        executor: SandboxExecutor,
        generator: Optional[CodeGenerator] = None,
        synthesizer: Optional[ResponseSynthesizer] = None,
        schema: SchemaDescriptor = DATA_SCHEMA,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ):
        self.snapshot_provider = snapshot_provider
        self.executor = executor
        self.generator = generator
        self.synthesizer = synthesizer
        self.schema = schema
        self.history_window = history_window
        self.last_trace: Optional[QueryTrace] = None

    @property
    def fallback_mode(self) -> bool:
        return self.generator is None or self.synthesizer is None

    async def handle(self, session: Session, query: Optional[str]) -> Turn:
        if query is None or not query.strip():
            raise InvalidInput("Message is required")

        user_turn = Turn(role=Role.USER, text=query)
        history = session.store.recent(self.history_window)
        trace = QueryTrace(session.session_id)
        self.last_trace = trace

        if self.fallback_mode:
            reply = self._fallback_turn(query)
        else:
            reply = await self._run_pipeline(query, history, trace)
        trace.advance(PipelineState.DONE)

        # both turns go in together, no await in between
        session.store.append(user_turn)
        session.store.append(reply)
        return reply

    async def generate_report(self, session: Session) -> str:
        if self.fallback_mode:
            counts = await self._safe_counts()
            return fallback.build_static_report(counts, datetime.now(timezone.utc))
        turn = await self.handle(session, fallback.REPORT_QUERY)
        return turn.text

    async def _run_pipeline(self, query: str, history: List[Turn], trace: QueryTrace) -> Turn:
        trace.advance(PipelineState.GENERATING)
        prompt = build_generation_prompt(self.schema, history, query, self.history_window)
        try:
            code = await self.generator.generate(prompt, query)
        except GenerationFailure as e:
            trace.advance(PipelineState.FAILED, f"generation failed: {e}", level="warning")
            return Turn(
                role=Role.ASSISTANT,
                text=fallback.GENERATION_APOLOGY,
                action=None,
                suggestions=fallback.RETRY_SUGGESTIONS,
            )

        trace.advance(PipelineState.EXECUTING, f"{len(code)} chars of code")
        result = await self._execute(code)

        if result.success:
            trace.advance(PipelineState.SYNTHESIZING, "execution succeeded")
        else:
            trace.advance(PipelineState.SYNTHESIZING, f"execution failed: {result.error}")

        action, suggestions = self._outcome(result)
        try:
            text = await self.synthesizer.synthesize(query, result, history)
        except SynthesisFailure as e:
            trace.advance(PipelineState.FAILED, f"synthesis failed: {e}", level="warning")
            # includes output printed before a non-zero exit
            if result.output.strip():
                text = result.output
            else:
                text = fallback.SYNTHESIS_APOLOGY

        return Turn(
            role=Role.ASSISTANT,
            text=text,
            generated_code=code,
            execution=result,
            action=action,
            suggestions=suggestions,
        )

    async def _execute(self, code: str) -> ExecutionResult:
        try:
            snapshot = await self.snapshot_provider.snapshot()
        except SnapshotUnavailable as e:
            logger.error(f"Skipping execution, no data snapshot: {e}")
            return ExecutionResult(success=False, error=str(e))
        return await self.executor.execute(code, snapshot)

    def _outcome(self, result: ExecutionResult) -> Tuple[Optional[str], Tuple[str, ...]]:
        if result.success:
            return fallback.ANALYSIS_COMPLETE, fallback.DEFAULT_SUGGESTIONS
        return None, fallback.DEFAULT_SUGGESTIONS

    def _fallback_turn(self, query: str) -> Turn:
        return Turn(
            role=Role.ASSISTANT,
            text=fallback.keyword_response(query),
            action=fallback.ANALYSIS_COMPLETE,
            suggestions=fallback.DEFAULT_SUGGESTIONS,
        )

    async def _safe_counts(self) -> Dict[str, int]:
        try:
            return await self.snapshot_provider.counts()
        except SnapshotUnavailable as e:
            logger.error(f"Report without row counts: {e}")
            return {}
