from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, field_validator


def _wall_clock(value: datetime) -> datetime:
    # Timestamps are wall-clock times in the user's frame; offsets are dropped
    return value.replace(tzinfo=None) if value.tzinfo is not None else value


WallTime = Annotated[datetime, AfterValidator(_wall_clock)]

Priority = Literal["low", "medium", "high"]
Frequency = Literal["daily", "weekly"]
CommitmentKind = Literal["task", "routine", "appointment"]


class Task(BaseModel):
    id: str
    title: str
    priority: Priority = "medium"
    due_date: Optional[WallTime] = None
    created_at: WallTime
    completed_at: Optional[WallTime] = None


class RoutineCompletion(BaseModel):
    date: WallTime


class Routine(BaseModel):
    id: str
    title: str
    frequency: Frequency = "daily"
    created_at: WallTime
    completions: list[RoutineCompletion] = Field(default_factory=list)


class Appointment(BaseModel):
    id: str
    title: str
    datetime: WallTime
    created_at: WallTime


class CommitmentSnapshot(BaseModel):
    tasks: list[Task] = Field(default_factory=list)
    routines: list[Routine] = Field(default_factory=list)
    appointments: list[Appointment] = Field(default_factory=list)


# Classification decisions: a closed union tagged by "action"

class AddDecision(BaseModel):
    action: Literal["add"] = "add"
    kind: CommitmentKind
    title: str = Field(min_length=1)
    confidence: float = 1.0
    schedule: Optional[WallTime] = None  # due date for tasks, start time for appointments
    frequency: Optional[Frequency] = None
    priority: Optional[Priority] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        if value is None:
            return 1.0
        return min(1.0, max(0.0, float(value)))


class UpdatePriorityDecision(BaseModel):
    action: Literal["update_priority"] = "update_priority"
    target_title: str = Field(min_length=1)
    new_priority: Priority


class RespondDecision(BaseModel):
    action: Literal["respond"] = "respond"
    message: str


class ErrorDecision(BaseModel):
    action: Literal["error"] = "error"
    message: str


Decision = Annotated[
    Union[AddDecision, UpdatePriorityDecision, RespondDecision, ErrorDecision],
    Field(discriminator="action"),
]
PendingDecision = Union[AddDecision, UpdatePriorityDecision]


class ConversationTurn(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str


# Request/response bodies

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    current_datetime: Optional[WallTime] = None


class ConfirmRequest(BaseModel):
    """User edits made on the confirmation card; each wins over the inferred value."""
    title: Optional[str] = None
    priority: Optional[Priority] = None
    schedule: Optional[WallTime] = None
    frequency: Optional[Frequency] = None
    # Client clock used to stamp created_at; not an edit
    current_datetime: Optional[WallTime] = None


class ClassifyRequest(BaseModel):
    utterance: str = Field(min_length=1)
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    commitment_snapshot: CommitmentSnapshot = Field(default_factory=CommitmentSnapshot)
    current_datetime: Optional[WallTime] = None


class ChatResponse(BaseModel):
    decision: Decision
    state: Literal["idle", "pending_confirmation"]
    commitments: CommitmentSnapshot


class ConversationState(BaseModel):
    messages: list[ConversationTurn]
    pending: Optional[PendingDecision] = None
    state: Literal["idle", "pending_confirmation"]


class TaskCompletionRequest(BaseModel):
    current_datetime: Optional[WallTime] = None


class RoutineCompletionRequest(BaseModel):
    date: Optional[WallTime] = None
    current_datetime: Optional[WallTime] = None


Voice = Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"]


class SpeechRequest(BaseModel):
    text: str = Field(min_length=1)
    voice: Voice = "nova"


class QuotaStatus(BaseModel):
    allowed: bool
    remaining: float
    used: float
