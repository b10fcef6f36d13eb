"""
Turns raw oracle text into a classification decision.

The oracle is best effort, so decoding never fails: anything that does not
validate as one of the known decision shapes comes back as a respond decision
carrying the raw text verbatim. The parser keeps no state, so the same text
always yields the same decision.
"""
import json
import logging

from pydantic import TypeAdapter, ValidationError

from models import Decision, RespondDecision
from policy import infer_kind

logger = logging.getLogger(__name__)

_decision_adapter = TypeAdapter(Decision)

# Tags and values used by earlier prompt versions, mapped to the current schema
ACTION_ALIASES = {
    "response": "respond",
    "reply": "respond",
    "answer": "respond",
    "create": "add",
    "set_priority": "update_priority",
    "update-priority": "update_priority",
    "updatepriority": "update_priority",
}
KIND_ALIASES = {
    "todo": "task",
    "to-do": "task",
    "habit": "routine",
    "event": "appointment",
    "meeting": "appointment",
}
SCHEDULE_KEYS = ("schedule", "datetime", "due_date", "dueDate", "scheduled_date")
TARGET_KEYS = ("target_title", "targetTitle", "title")
NEW_PRIORITY_KEYS = ("new_priority", "newPriority", "priority")


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]  # Remove first line (```json)
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]  # Remove last line (```)
        text = "\n".join(lines).strip()
    return text


def extract_json_object(text: str) -> dict | None:
    """Load the JSON object in text, tolerating prose around it."""
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start and (start, end) != (0, len(text) - 1):
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _first(data: dict, keys: tuple) -> object:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


def normalize(data: dict) -> dict:
    """Map legacy field names and values onto the current decision schema."""
    action = _lower(data.get("action"))
    kind = _lower(data.get("kind") or data.get("type"))

    # The bare classifier format carries a type but no action
    if action is None and kind is not None and data.get("title"):
        action = "add"
    if isinstance(action, str):
        action = ACTION_ALIASES.get(action, action)
    if isinstance(kind, str):
        kind = KIND_ALIASES.get(kind, kind)

    if action == "add":
        title = data.get("title")
        confidence = data.get("confidence")
        if kind is None and isinstance(title, str) and title.strip():
            # No kind given: fall back to the lexical guess from the title
            kind, guessed_confidence = infer_kind(title)
            if confidence is None:
                confidence = guessed_confidence
        normalized = {
            "action": "add",
            "kind": kind,
            "title": title,
            "confidence": confidence,
            "schedule": _first(data, SCHEDULE_KEYS),
            "frequency": _lower(data.get("frequency")),
            "priority": _lower(data.get("priority")),
        }
        for key in ("frequency", "priority"):
            if normalized[key] in ("null", "none", ""):
                normalized[key] = None
        schedule = normalized["schedule"]
        if isinstance(schedule, str) and len(schedule.strip()) == 10:
            normalized["schedule"] = schedule.strip() + "T00:00"  # date-only due dates
        return normalized

    if action == "update_priority":
        return {
            "action": "update_priority",
            "target_title": _first(data, TARGET_KEYS),
            "new_priority": _lower(_first(data, NEW_PRIORITY_KEYS)),
        }

    if action in ("respond", "error"):
        return {"action": action, "message": data.get("message")}

    return {"action": action}


def parse_decision(raw: str) -> Decision:
    """Decode oracle text into a decision, falling back to a plain reply."""
    data = extract_json_object(strip_code_fence(raw or ""))
    if data is None:
        logger.info("Oracle reply is not JSON, treating as plain message")
        return RespondDecision(message=raw or "")

    try:
        return _decision_adapter.validate_python(normalize(data))
    except ValidationError as e:
        logger.info("Oracle reply failed validation (%d errors), treating as plain message", e.error_count())
        return RespondDecision(message=raw or "")
