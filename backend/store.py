import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Optional, Union

from models import (
    Appointment,
    CommitmentSnapshot,
    Priority,
    Routine,
    RoutineCompletion,
    Task,
)

logger = logging.getLogger(__name__)

Commitment = Union[Task, Routine, Appointment]


def new_id() -> str:
    return str(uuid.uuid4())


class CommitmentStore:
    """
    In-memory keyed store for one identity's commitments.

    Each variant lives in its own collection keyed by id. Mutations go through
    the methods below so the completion invariants hold: a task's completed_at
    is stamped once, and routine completions are only ever appended.
    """

    def __init__(self, snapshot: Optional[CommitmentSnapshot] = None):
        self._lock = threading.Lock()
        self._tasks: dict[str, Task] = {}
        self._routines: dict[str, Routine] = {}
        self._appointments: dict[str, Appointment] = {}
        if snapshot:
            for item in [*snapshot.tasks, *snapshot.routines, *snapshot.appointments]:
                self.add(item)

    def snapshot(self) -> CommitmentSnapshot:
        with self._lock:
            return CommitmentSnapshot(
                tasks=[t.model_copy(deep=True) for t in self._tasks.values()],
                routines=[r.model_copy(deep=True) for r in self._routines.values()],
                appointments=sorted(
                    (a.model_copy(deep=True) for a in self._appointments.values()),
                    key=lambda a: a.datetime,
                ),
            )

    def add(self, commitment: Commitment) -> Commitment:
        """Insert a commitment. Raises ValueError if its id is already taken."""
        collection = self._collection_for(commitment)
        with self._lock:
            if commitment.id in collection:
                raise ValueError(f"Duplicate id: {commitment.id}")
            collection[commitment.id] = commitment
        logger.info("Added %s %s: %s", type(commitment).__name__.lower(), commitment.id, commitment.title)
        return commitment

    def get_task(self, task_id: str) -> Task:
        return self._tasks[task_id]

    def get_routine(self, routine_id: str) -> Routine:
        return self._routines[routine_id]

    def get_appointment(self, appointment_id: str) -> Appointment:
        return self._appointments[appointment_id]

    def set_completed(self, task_id: str, when: Optional[datetime] = None) -> Task:
        """Mark a task done. Completing an already completed task keeps the first stamp."""
        with self._lock:
            task = self._tasks[task_id]
            if task.completed_at is None:
                task.completed_at = when or datetime.now()
            return task

    def set_priority(self, task_id: str, priority: Priority) -> Task:
        with self._lock:
            task = self._tasks[task_id]
            task.priority = priority
            return task

    def append_completion(self, routine_id: str, date: Optional[datetime] = None) -> Routine:
        with self._lock:
            routine = self._routines[routine_id]
            routine.completions.append(RoutineCompletion(date=date or datetime.now()))
            return routine

    def find_task_by_title(self, title: str) -> Optional[Task]:
        """
        Find an open task by title, case-insensitive.
        An exact match wins over a partial one.
        """
        with self._lock:
            tasks = list(self._tasks.values())
        return match_task(tasks, title)

    def _collection_for(self, commitment: Commitment) -> dict:
        if isinstance(commitment, Task):
            return self._tasks
        if isinstance(commitment, Routine):
            return self._routines
        if isinstance(commitment, Appointment):
            return self._appointments
        raise TypeError(f"Not a commitment: {type(commitment).__name__}")


def match_task(tasks: list[Task], title: str) -> Optional[Task]:
    """Open task whose title matches, exact (case-insensitive) before partial."""
    needle = " ".join(title.split()).lower()
    if not needle:
        return None
    open_tasks = [t for t in tasks if t.completed_at is None]
    for task in open_tasks:
        if task.title.lower() == needle:
            return task
    for task in open_tasks:
        if needle in task.title.lower() or task.title.lower() in needle:
            return task
    return None


# Routine progress helpers

def completion_days(routine: Routine) -> set:
    """Distinct calendar days on which the routine was completed."""
    return {c.date.date() for c in routine.completions}


def is_done_today(routine: Routine, now: datetime) -> bool:
    """Calendar-day check (midnight to midnight), not a rolling 24h window."""
    return now.date() in completion_days(routine)


def current_streak(routine: Routine, now: datetime) -> int:
    """
    Count consecutive days (or weeks, for weekly routines) ending today.
    An incomplete current period does not break the streak yet.
    """
    days = completion_days(routine)
    if not days:
        return 0

    if routine.frequency == "weekly":
        weeks = {d.isocalendar()[:2] for d in days}
        cursor = now.date()
        if cursor.isocalendar()[:2] not in weeks:
            cursor -= timedelta(weeks=1)
        streak = 0
        while cursor.isocalendar()[:2] in weeks:
            streak += 1
            cursor -= timedelta(weeks=1)
        return streak

    cursor = now.date()
    if cursor not in days:
        cursor -= timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak
