from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field

from app.ai_feature.conversation import Turn


# =========================
# ASSISTANT
# =========================
class ChatRequest(BaseModel):
    # optional so a missing message gets the same 400 as an empty one
    message: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class AssistantReply(BaseModel):
    text: str
    action: Optional[str] = None
    suggestions: List[str] = []


class ChatResponse(BaseModel):
    response: AssistantReply
    python_code: Optional[str] = Field(default=None, alias="pythonCode")
    analysis_results: Optional[str] = Field(
        default=None, alias="analysisResults"
    )
    timestamp: datetime

    model_config = ConfigDict(populate_by_name=True)


class HistoryResponse(BaseModel):
    history: List[Turn]
    timestamp: datetime


class ClearResponse(BaseModel):
    message: str
    timestamp: datetime


# =========================
# REPORTS / STATS
# =========================
class ReportResponse(BaseModel):
    report: str
    generated_at: datetime = Field(alias="generatedAt")

    model_config = ConfigDict(populate_by_name=True)


class StatsResponse(BaseModel):
    patients: int
    inventory: int
