"""
Error taxonomy for the assistant pipeline.

Only InvalidInput ever reaches the HTTP client (as a 400). Everything else is
absorbed by the orchestrator and turned into a best-effort assistant turn.
"""


class AssistantError(Exception):
    """Base class for every assistant pipeline error."""


class InvalidInput(AssistantError):
    """Empty or whitespace-only query, rejected before the pipeline starts."""


class ModelCallError(AssistantError):
    """The external model could not be reached or returned nothing usable."""


class GenerationFailure(AssistantError):
    """No runnable script could be obtained for the query."""


class ExecutionFailure(AssistantError):
    """The sandbox could not run the script at all (launch error, id collision)."""


class SynthesisFailure(AssistantError):
    """The model failed while explaining the execution output."""


class SnapshotUnavailable(AssistantError):
    """The data snapshot for the generated script could not be read."""
