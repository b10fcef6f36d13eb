"""
Classification policy.

The oracle is told these rules in the prompt; this module applies the ones
that can be checked deterministically to its decision after the fact:
lexical priority and cadence cues, the task/routine/appointment tie-breaks,
priority targets that must exist, and category isolation in answers.
Everything here is a pure function of (utterance, snapshot, now).
"""
import logging
import re
from datetime import date, datetime, timedelta

from models import (
    AddDecision,
    CommitmentSnapshot,
    Decision,
    RespondDecision,
    UpdatePriorityDecision,
)
from prompts import format_human_datetime
from store import match_task

logger = logging.getLogger(__name__)

WEEKDAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"

HIGH_PRIORITY_CUES = re.compile(
    r"\b(urgent|urgently|asap|a\.s\.a\.p|immediately|right away|critical|important|emergency)\b"
)
LOW_PRIORITY_CUES = re.compile(
    r"\b(eventually|sometime|someday|some day|when possible|whenever|no rush|no hurry|low priority)\b"
)
REPETITION_CUES = re.compile(
    r"\b(every(?! (other )?(month|year))|daily|nightly|weekly"
    r"|each (day|morning|afternoon|evening|night|week|weekday)"
    rf"|once a (day|week)|twice a (day|week)|(on )?({WEEKDAYS})s)\b"
)
# Cadences a routine cannot express; only daily and weekly are tracked
UNSUPPORTED_CADENCE_CUES = re.compile(
    r"\b(monthly|yearly|annually|(every|each|once a|twice a) (other )?(month|year))\b"
)
WEEKLY_CUES = re.compile(
    rf"\b(weekly|every week|each week|once a week|twice a week|every ({WEEKDAYS})|(on )?({WEEKDAYS})s)\b"
)
CLOCK_TIME_CUES = re.compile(
    r"\b(\d{1,2}(:\d{2})?\s*(am|pm|a\.m|p\.m)|\d{1,2}:\d{2}|noon|midnight|at \d{1,2})\b"
)
DATE_CUES = re.compile(
    rf"\b(today|tonight|tomorrow|next week|({WEEKDAYS})|"
    r"january|february|march|april|may|june|july|august|september|october|november|december"
    r"|\d{1,2}(st|nd|rd|th))\b"
)

TASK_QUERY_CUES = re.compile(r"\b(to-?dos?|to do|tasks?|get done|need to do)\b")
APPOINTMENT_QUERY_CUES = re.compile(r"\b(schedule|calendar|appointments?|meetings?|events?)\b")
ROUTINE_QUERY_CUES = re.compile(r"\b(routines?|habits?|daily|streaks?)\b")

LEADING_FILLER = re.compile(
    r"^(please\s+)?(i\s+)?(really\s+)?(need to|have to|must|should|gotta|want to|remind me to|don't forget to)\s+",
    re.IGNORECASE,
)
TRAILING_URGENCY = re.compile(
    r"(\s+(asap|urgently|immediately|right away|as soon as possible|no rush|eventually|sometime))+\s*$",
    re.IGNORECASE,
)


def infer_priority(text: str) -> str | None:
    """Priority carried by urgency words, or None when there is no cue."""
    lowered = text.lower()
    if HIGH_PRIORITY_CUES.search(lowered):
        return "high"
    if LOW_PRIORITY_CUES.search(lowered):
        return "low"
    return None


def has_repetition_cue(text: str) -> bool:
    return bool(REPETITION_CUES.search(text.lower()))


def has_unsupported_cadence(text: str) -> bool:
    return bool(UNSUPPORTED_CADENCE_CUES.search(text.lower()))


def infer_frequency(text: str) -> str:
    return "weekly" if WEEKLY_CUES.search(text.lower()) else "daily"


def has_clock_time(text: str) -> bool:
    return bool(CLOCK_TIME_CUES.search(text.lower()))


def infer_kind(text: str) -> tuple[str, float]:
    """Deterministic kind guess with a confidence, repetition before time before task."""
    lowered = text.lower()
    if has_repetition_cue(lowered):
        return "routine", 0.9
    if has_clock_time(lowered):
        return "appointment", 0.85
    if DATE_CUES.search(lowered):
        return "appointment", 0.7
    return "task", 0.7


def query_categories(text: str) -> set[str]:
    lowered = text.lower()
    asked = set()
    if TASK_QUERY_CUES.search(lowered):
        asked.add("task")
    if APPOINTMENT_QUERY_CUES.search(lowered):
        asked.add("appointment")
    if ROUTINE_QUERY_CUES.search(lowered):
        asked.add("routine")
    return asked


def clean_title(title: str) -> str:
    title = " ".join(title.split())
    title = LEADING_FILLER.sub("", title)
    title = TRAILING_URGENCY.sub("", title)
    title = title.rstrip(".!?,; ")
    return title[:1].upper() + title[1:]


def day_scope(text: str, now: datetime) -> date | None:
    """The single day a question is about, if it names one."""
    lowered = text.lower()
    if "tomorrow" in lowered:
        return now.date() + timedelta(days=1)
    if "today" in lowered or "tonight" in lowered:
        return now.date()
    return None


def _titles_by_kind(snapshot: CommitmentSnapshot, now: datetime, today_only: bool) -> dict[str, set[str]]:
    titles = {
        "task": {t.title.lower() for t in snapshot.tasks},
        "routine": {r.title.lower() for r in snapshot.routines},
        "appointment": set(),
        "passed": set(),
    }
    for appointment in snapshot.appointments:
        passed_today = appointment.datetime.date() == now.date() and appointment.datetime < now
        if today_only and passed_today:
            titles["passed"].add(appointment.title.lower())
        else:
            titles["appointment"].add(appointment.title.lower())
    return {kind: {t for t in names if len(t) >= 3} for kind, names in titles.items()}


def _covered(text: str, start: int, end: int, allowed: set[str]) -> bool:
    """True when a longer allowed title spans text[start:end]."""
    for title in allowed:
        if len(title) <= end - start:
            continue
        found = text.find(title, max(0, end - len(title)))
        if found != -1 and found <= start:
            return True
    return False


def _names_forbidden(sentence: str, allowed: set[str], forbidden: set[str]) -> bool:
    text = sentence.lower()
    for title in sorted(forbidden, key=len, reverse=True):
        start = text.find(title)
        while start != -1:
            if not _covered(text, start, start + len(title), allowed):
                return True
            start = text.find(title, start + 1)
    return False


def summarize(kinds: set[str], snapshot: CommitmentSnapshot, now: datetime, day: date | None = None) -> str:
    """Plain answer built only from the asked categories, limited to day when given."""
    when = ""
    if day is not None:
        when = " today" if day == now.date() else " tomorrow"

    parts = []
    if "task" in kinds:
        open_tasks = [t for t in snapshot.tasks if t.completed_at is None]
        if day is not None:
            open_tasks = [t for t in open_tasks if t.due_date is not None and t.due_date.date() == day]
        if open_tasks:
            parts.append(f"On your to-do list{when}: {', '.join(t.title for t in open_tasks)}.")
        elif day is not None:
            parts.append(f"Nothing on your to-do list{when}.")
        else:
            parts.append("Your to-do list is clear.")
    if "appointment" in kinds:
        upcoming = [a for a in snapshot.appointments if a.datetime >= now]
        if day is not None:
            upcoming = [a for a in upcoming if a.datetime.date() == day]
        if upcoming:
            listed = ", ".join(f"{a.title} ({format_human_datetime(a.datetime)})" for a in upcoming[:5])
            parts.append(f"Coming up{when}: {listed}.")
        else:
            parts.append(f"Nothing on your calendar{when}.")
    if "routine" in kinds:
        routines = [r.title for r in snapshot.routines]
        parts.append(f"Your routines: {', '.join(routines)}." if routines else "No routines yet.")
    return " ".join(parts)


def isolate_categories(message: str, utterance: str, snapshot: CommitmentSnapshot, now: datetime) -> str:
    """
    Drop sentences naming items from categories the user did not ask about,
    and, for questions about today, appointments that have already passed.
    A title inside a longer allowed title does not count as a mention.
    """
    asked = query_categories(utterance)
    day = day_scope(utterance, now)
    today_only = day == now.date()
    if not asked and not today_only:
        return message

    titles = _titles_by_kind(snapshot, now, today_only)
    allowed_kinds = asked or {"task", "routine", "appointment"}
    allowed = set().union(*(titles[k] for k in allowed_kinds))
    forbidden = set().union(*(titles[k] for k in ("task", "routine", "appointment") if k not in allowed_kinds))
    forbidden = (forbidden - allowed) | titles["passed"]
    if not forbidden:
        return message

    kept_lines = []
    dropped = 0
    for line in message.split("\n"):
        sentences = re.split(r"(?<=[.!?])\s+", line)
        kept = []
        for sentence in sentences:
            if _names_forbidden(sentence, allowed, forbidden):
                dropped += 1
                continue
            kept.append(sentence)
        if kept or not line.strip():
            kept_lines.append(" ".join(kept))

    if not dropped:
        return message

    logger.info("Removed %d sentence(s) outside the asked categories %s", dropped, sorted(allowed_kinds))
    filtered = "\n".join(kept_lines).strip()
    if not filtered and asked:
        return summarize(asked, snapshot, now, day)
    return filtered


def enforce(decision: Decision, utterance: str, snapshot: CommitmentSnapshot, now: datetime) -> Decision:
    """Apply the deterministic rules to an oracle decision."""
    if isinstance(decision, AddDecision):
        return _enforce_add(decision, utterance)

    if isinstance(decision, UpdatePriorityDecision):
        task = match_task(snapshot.tasks, decision.target_title)
        if task is None:
            logger.info("Priority target not found: %s", decision.target_title)
            return RespondDecision(
                message=f"I couldn't find a task called \"{decision.target_title}\". Want me to add it instead?"
            )
        return decision.model_copy(update={"target_title": task.title})

    if isinstance(decision, RespondDecision):
        return RespondDecision(message=isolate_categories(decision.message, utterance, snapshot, now))

    return decision


def _enforce_add(decision: AddDecision, utterance: str) -> Decision:
    title = clean_title(decision.title)
    if not title:
        return RespondDecision(message="What would you like me to add?")

    kind = decision.kind
    if kind == "task" and has_repetition_cue(utterance):
        kind = "routine"
    elif kind == "task" and decision.schedule is not None and has_clock_time(utterance):
        kind = "appointment"

    updates = {"title": title, "kind": kind}
    if kind != decision.kind:
        # The oracle's confidence was for another kind
        guessed, guessed_confidence = infer_kind(utterance)
        updates["confidence"] = (
            guessed_confidence if guessed == kind else min(decision.confidence, guessed_confidence)
        )

    if kind == "task":
        updates["priority"] = infer_priority(utterance) or decision.priority or "medium"
        updates["frequency"] = None
    elif kind == "routine":
        if decision.frequency is None and has_unsupported_cadence(utterance):
            return RespondDecision(message=f"I can track {title} daily or weekly. Which would you like?")
        updates["frequency"] = decision.frequency or infer_frequency(utterance)
        updates["priority"] = None
    else:
        if decision.schedule is None:
            return RespondDecision(message=f"What day and time should I set for {title}?")
        updates["frequency"] = None
        updates["priority"] = None

    return decision.model_copy(update=updates)
