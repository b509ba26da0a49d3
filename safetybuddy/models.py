"""
Data Models
===========
Pydantic models shared by the knowledge base, conversation store, session
engine and HTTP layer.

Corpus models (InjuryRecord, EmergencyKeywordSet) are frozen: they are
validated once when the knowledge files are loaded and never change after.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Severity = Literal["minor", "moderate", "serious", "emergency"]
Role = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Knowledge corpus
# ---------------------------------------------------------------------------

class FirstAidStep(BaseModel):
    """One numbered first-aid instruction."""

    model_config = ConfigDict(frozen=True)

    step: int
    instruction: str


class InjuryRecord(BaseModel):
    """A knowledge-corpus entry describing one injury type."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    keywords: tuple[str, ...]
    severity: Severity
    symptoms: tuple[str, ...] = ()
    first_aid_steps: tuple[FirstAidStep, ...] = ()
    emergency_triggers: tuple[str, ...] = ()
    prevention_tips: tuple[str, ...] = ()


class EmergencyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class EmergencyKeywordSet(BaseModel):
    """Trigger phrases that short-circuit retrieval, plus the canned reply."""

    model_config = ConfigDict(frozen=True)

    critical_keywords: tuple[str, ...]
    emergency_response: EmergencyResponse


class EmergencyNumbers(BaseModel):
    model_config = ConfigDict(frozen=True)

    general: str
    poison_control_us: Optional[str] = None
    disclaimer: str = ""


class KnowledgeCorpus(BaseModel):
    """Top-level shape of first_aid_knowledge.json."""

    model_config = ConfigDict(frozen=True)

    injuries: tuple[InjuryRecord, ...]
    emergency_numbers: EmergencyNumbers
    general_disclaimer: str


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    """A single message in a session's history."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    is_emergency: bool = False


class ConversationContext(BaseModel):
    """Per-session state. Mutated only through ConversationStore."""

    session_id: str
    messages: list[ChatMessage] = Field(default_factory=list)
    current_injury: Optional[InjuryRecord] = None
    emergency_detected: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# API boundary
# ---------------------------------------------------------------------------

class ChatResponse(BaseModel):
    """Result of one conversational turn.

    Serialised with camelCase aliases (isEmergency, sessionId,
    suggestedInjury) for the web and messaging clients.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    is_emergency: bool
    session_id: str
    suggested_injury: Optional[InjuryRecord] = None


class ChatRequest(BaseModel):
    """Inbound turn from the web chat client.

    image is a base64 string (optionally a full data: URL).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: Optional[str] = Field(default=None, max_length=4000)
    session_id: Optional[str] = None
    image: Optional[str] = None
    mime_type: Optional[str] = None
