"""
LLM CLIENT - the two outbound calls of the assistant

STEP 1: Code generation (prompt → candidate script, untrusted text)
STEP 2: Answer synthesis (query + execution output → natural language)

Both go through ModelClient, which turns every transport/API problem into
ModelCallError. The generator and synthesizer re-raise it as their own
failure type so the orchestrator knows which stage broke.
"""

import logging
import re
from typing import Optional, Sequence

from openai import APIError, AsyncOpenAI

from app.ai_feature.conversation import Turn
from app.ai_feature.errors import GenerationFailure, ModelCallError, SynthesisFailure
from app.ai_feature.prompt_builder import DEFAULT_HISTORY_WINDOW, build_synthesis_prompt
from app.ai_feature.sandbox import ExecutionResult

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r"```[ \t]*(?:python|py)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)


class ModelClient:
    """Thin async wrapper around the chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4",
        timeout: float = 30.0,
        max_retries: int = 2,
        base_url: Optional[str] = None,
    ):
        self.model = model
        self.timeout = timeout
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout: Optional[float] = None,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except APIError as e:
            raise ModelCallError(f"{type(e).__name__}: {e}") from e

        if not response.choices:
            raise ModelCallError("model returned no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise ModelCallError("model returned an empty message")
        return content.strip()


def extract_code(text: str) -> str:
    """
    Pull the script out of a model reply.

    Models are told not to use markdown but sometimes do anyway; the first
    fenced block wins, otherwise the whole reply is taken as code.
    """
    match = CODE_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip().strip("`").strip()


class CodeGenerator:
    def __init__(self, client: ModelClient, temperature: float = 0.3, max_tokens: int = 2000):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(
        self, prompt: str, user_query: str, timeout: Optional[float] = None
    ) -> str:
        """Return the candidate script for a rendered generation prompt."""
        try:
            reply = await self.client.complete(
                prompt,
                user_query,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=timeout,
            )
        except ModelCallError as e:
            raise GenerationFailure(str(e)) from e

        code = extract_code(reply)
        if not code:
            raise GenerationFailure("model reply contained no code")
        return code


class ResponseSynthesizer:
    def __init__(
        self,
        client: ModelClient,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.history_window = history_window

    async def synthesize(
        self,
        user_query: str,
        execution_result: ExecutionResult,
        recent_turns: Sequence[Turn],
        timeout: Optional[float] = None,
    ) -> str:
        prompt = build_synthesis_prompt(
            user_query, execution_result, recent_turns, self.history_window
        )
        grounding = execution_result.output if execution_result.success else execution_result.error
        try:
            return await self.client.complete(
                prompt,
                f"Query: {user_query}\nResults: {grounding or ''}",
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=timeout,
            )
        except ModelCallError as e:
            raise SynthesisFailure(str(e)) from e
