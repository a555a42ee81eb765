"""
Prompt rendering for code generation and answer synthesis.

Both builders are pure: same schema, history and query give the exact same
text. Nothing here reads the clock, the environment or the database.

History is a fixed window of the most recent turns, oldest first. Older turns
are dropped, never summarized.
"""

from typing import Sequence

from app.ai_feature.conversation import Turn
from app.ai_feature.sandbox import ExecutionResult
from app.ai_feature.snapshot import SchemaDescriptor

DEFAULT_HISTORY_WINDOW = 4


def render_schema(schema: SchemaDescriptor) -> str:
    return "\n".join(f"- {table}: {', '.join(fields)}" for table, fields in schema.items())


def render_history(recent_turns: Sequence[Turn], window: int = DEFAULT_HISTORY_WINDOW) -> str:
    if window <= 0:
        return "(none)"
    turns = list(recent_turns)[-window:]
    if not turns:
        return "(none)"
    return "\n".join(f"{turn.role.value}: {turn.text}" for turn in turns)


def build_generation_prompt(
    schema: SchemaDescriptor,
    recent_turns: Sequence[Turn],
    user_query: str,
    window: int = DEFAULT_HISTORY_WINDOW,
) -> str:
    """
    Render the system prompt asking the model for an analysis script.

    Example:
        prompt = build_generation_prompt(DATA_SCHEMA, store.recent(4), "Which drugs are low?")
        prompt.startswith("You are DeepScanRx")  # True
    """
    table_names = ", ".join(f"`{table}`" for table in schema)
    return f"""You are DeepScanRx, an AI assistant that generates Python code for healthcare data analysis.

Available tables and fields:
{render_schema(schema)}

The rows are already loaded for you as global Python lists of dicts named {table_names}.
Each dict has exactly the fields listed above. Dates are ISO strings.

Generate Python code that:
1. Analyzes the preloaded data based on the user's query
2. Prints its results to stdout, as JSON when possible
3. Uses only the Python standard library
4. Does not open files, does not use the network and does not start processes
5. Handles missing or empty values without crashing

Previous conversation context:
{render_history(recent_turns, window)}

User Query: {user_query}

Return ONLY the Python code, no explanations or markdown formatting."""


def build_synthesis_prompt(
    user_query: str,
    execution_result: ExecutionResult,
    recent_turns: Sequence[Turn],
    window: int = DEFAULT_HISTORY_WINDOW,
) -> str:
    if execution_result.success:
        results = execution_result.output or "(the analysis printed nothing)"
        results_block = f"Python Analysis Results:\n{results}"
    else:
        error = execution_result.error or "unknown error"
        results_block = (
            "The Python analysis FAILED with this error:\n"
            f"{error}\n"
            "Explain in plain language what went wrong and how the user could rephrase the question."
        )

    return f"""You are DeepScanRx, an AI assistant for healthcare analytics.

Generate a natural language response based on the user's query and the Python analysis results.
Be professional, insightful, and provide actionable recommendations for hospital pharmacy management.
Only state figures that appear in the results below.

Conversation history:
{render_history(recent_turns, window)}

User Query: {user_query}
{results_block}

Provide a concise response that explains the findings and offers practical recommendations."""
