"""
Conversation state: per-session history and the confirmation gate.

A session is idle or holds one pending add/update_priority decision. Nothing
reaches the commitment store until the user confirms; a new utterance
cancels whatever was pending before it is processed (the most recent
instruction wins).
"""
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Optional, Sequence

import config
from decision_parser import parse_decision
from errors import StaleResult
from models import (
    AddDecision,
    Appointment,
    CommitmentSnapshot,
    ConfirmRequest,
    ConversationState,
    ConversationTurn,
    Decision,
    PendingDecision,
    RespondDecision,
    Routine,
    Task,
    UpdatePriorityDecision,
)
from oracle import Oracle
from policy import enforce
from prompts import build_system_prompt, format_human_date, format_human_datetime
from store import CommitmentStore, new_id
from usage import UsageTracker

logger = logging.getLogger(__name__)

KIND_LABELS = {"task": "tasks", "routine": "routines", "appointment": "appointments"}


def describe_pending(decision: PendingDecision) -> str:
    """Assistant line shown while a decision waits for confirmation."""
    if isinstance(decision, UpdatePriorityDecision):
        return f"I'll set \"{decision.target_title}\" to {decision.new_priority} priority. Should I go ahead?"

    detail = ""
    if decision.kind == "task":
        detail = f" ({decision.priority} priority"
        if decision.schedule:
            detail += f", due {format_human_date(decision.schedule)}"
        detail += ")"
    elif decision.kind == "routine":
        detail = f" ({decision.frequency})"
    elif decision.schedule:
        detail = f" on {format_human_datetime(decision.schedule)}"
    return f"I'll add this {decision.kind}: \"{decision.title}\"{detail}. Should I go ahead?"


class ConversationSession:
    def __init__(self, store: Optional[CommitmentStore] = None, history_limit: int = config.HISTORY_LIMIT):
        self.store = store or CommitmentStore()
        self.history: deque[ConversationTurn] = deque(maxlen=history_limit)
        self.pending: Optional[PendingDecision] = None
        self.sequence = 0

    @property
    def state(self) -> str:
        return "idle" if self.pending is None else "pending_confirmation"

    def append(self, role: str, content: str) -> ConversationTurn:
        turn = ConversationTurn(id=new_id(), role=role, content=content)
        self.history.append(turn)
        return turn

    def recent(self, limit: int = config.ORACLE_HISTORY_WINDOW) -> list[ConversationTurn]:
        return list(self.history)[-limit:] if limit > 0 else []

    def to_state(self) -> ConversationState:
        return ConversationState(messages=list(self.history), pending=self.pending, state=self.state)


class ConversationManager:
    """
    Runs the classification pipeline for each session:
    prompt -> usage gate -> oracle -> parse -> policy -> pending or reply.
    """

    def __init__(self, oracle: Oracle, usage: UsageTracker, clock: Callable[[], datetime] = datetime.now):
        self.oracle = oracle
        self.usage = usage
        self._clock = clock
        self._sessions: dict[str, ConversationSession] = {}
        self._sessions_lock = threading.Lock()

    def session(self, identity: str) -> ConversationSession:
        with self._sessions_lock:
            if identity not in self._sessions:
                self._sessions[identity] = ConversationSession()
            return self._sessions[identity]

    def now(self, current_datetime: Optional[datetime] = None) -> datetime:
        """Client-supplied time wins over the server clock."""
        return current_datetime or self._clock()

    async def decide(
        self,
        utterance: str,
        history: Sequence[ConversationTurn],
        snapshot: CommitmentSnapshot,
        now: datetime,
    ) -> Decision:
        """One classification: no session state is read or written."""
        self.usage.try_acquire("chat")
        system_prompt = build_system_prompt(snapshot, now)
        raw = await self.oracle.classify(system_prompt, list(history)[-config.ORACLE_HISTORY_WINDOW:], utterance)
        return enforce(parse_decision(raw), utterance, snapshot, now)

    async def submit(
        self, session: ConversationSession, utterance: str, current_datetime: Optional[datetime] = None
    ) -> Decision:
        """
        Process a user utterance.

        Raises QuotaExceeded or OracleUnavailable; in both cases the utterance
        stays in history without an assistant reply and nothing is pending.
        Raises StaleResult when a newer utterance arrived while the oracle was
        working; that result is dropped.
        """
        if session.pending is not None:
            logger.info("New utterance supersedes pending %s", session.pending.action)
            session.pending = None

        prior = session.recent()
        session.append("user", utterance)
        session.sequence += 1
        sequence = session.sequence

        decision = await self.decide(utterance, prior, session.store.snapshot(), self.now(current_datetime))

        if sequence != session.sequence:
            logger.info("Dropping stale oracle result %d (latest %d)", sequence, session.sequence)
            raise StaleResult("A newer message superseded this one")

        if isinstance(decision, (AddDecision, UpdatePriorityDecision)):
            session.pending = decision
            session.append("assistant", describe_pending(decision))
        else:
            session.append("assistant", decision.message)
        return decision

    def confirm(
        self,
        session: ConversationSession,
        overrides: Optional[ConfirmRequest] = None,
        current_datetime: Optional[datetime] = None,
    ) -> RespondDecision:
        """Apply the pending decision. Values the user edited win over inferred ones."""
        pending = session.pending
        if pending is None:
            return RespondDecision(message="Nothing to confirm.")

        overrides = overrides or ConfirmRequest()
        now = self.now(current_datetime or overrides.current_datetime)
        session.pending = None

        if isinstance(pending, AddDecision):
            commitment = self._build_commitment(pending, overrides, now)
            session.store.add(commitment)
            message = f"Done! Added to your {KIND_LABELS[pending.kind]}."
        else:
            task = session.store.find_task_by_title(pending.target_title)
            if task is None:
                message = f"I couldn't find a task called \"{pending.target_title}\" anymore."
            else:
                priority = overrides.priority or pending.new_priority
                session.store.set_priority(task.id, priority)
                message = f"Got it. \"{task.title}\" is now {priority} priority."

        session.append("assistant", message)
        return RespondDecision(message=message)

    def cancel(self, session: ConversationSession) -> RespondDecision:
        if session.pending is None:
            return RespondDecision(message="Nothing to cancel.")
        session.pending = None
        message = "No problem, cancelled."
        session.append("assistant", message)
        return RespondDecision(message=message)

    @staticmethod
    def _build_commitment(pending: AddDecision, overrides: ConfirmRequest, now: datetime):
        title = (overrides.title or "").strip() or pending.title
        schedule = overrides.schedule or pending.schedule

        if pending.kind == "task":
            return Task(
                id=new_id(),
                title=title,
                priority=overrides.priority or pending.priority or "medium",
                due_date=schedule,
                created_at=now,
            )
        if pending.kind == "routine":
            return Routine(
                id=new_id(),
                title=title,
                frequency=overrides.frequency or pending.frequency or "daily",
                created_at=now,
            )
        return Appointment(
            id=new_id(),
            title=title,
            datetime=schedule or now,
            created_at=now,
        )
