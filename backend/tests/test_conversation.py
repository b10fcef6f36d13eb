"""
Tests for conversation.py - the classification pipeline and confirmation gate.
The oracle is a FakeOracle with canned replies.
"""
import asyncio
import json
import threading
from datetime import datetime

import pytest

from conversation import ConversationManager
from errors import OracleUnavailable, QuotaExceeded, StaleResult
from models import (
    AddDecision,
    Appointment,
    ConfirmRequest,
    RespondDecision,
    Task,
    UpdatePriorityDecision,
)
from usage import UsageTracker

from conftest import NOW, FakeOracle

pytestmark = pytest.mark.asyncio


def add_reply(**fields):
    return json.dumps({"action": "add", **fields})


class TestScenarios:
    async def test_appointment_on_friday(self, manager, oracle, session):
        oracle.queue(add_reply(kind="appointment", title="Dentist appointment", confidence=0.95,
                               schedule="2026-01-16T15:00"))

        decision = await manager.submit(session, "Dentist appointment Friday at 3pm")

        assert isinstance(decision, AddDecision)
        assert decision.kind == "appointment"
        assert decision.title == "Dentist appointment"
        assert decision.schedule == datetime(2026, 1, 16, 15, 0)
        assert session.state == "pending_confirmation"
        assert "Friday, January 16th at 3:00 PM" in session.history[-1].content

    async def test_routine_every_morning(self, manager, oracle, session):
        oracle.queue(add_reply(kind="routine", title="exercise", confidence=0.9))

        decision = await manager.submit(session, "exercise every morning")

        assert (decision.kind, decision.title, decision.frequency) == ("routine", "Exercise", "daily")

    async def test_urgent_task(self, manager, oracle, session):
        oracle.queue(add_reply(kind="task", title="Submit the report", confidence=0.9))

        decision = await manager.submit(session, "need to submit the report asap")

        assert (decision.kind, decision.title, decision.priority) == ("task", "Submit the report", "high")

    async def test_todo_question_lists_only_tasks(self, manager, oracle, session, now):
        tomorrow = datetime(2026, 1, 13, 9, 0)
        session.store.add(Task(id="t1", title="Submit expense report", due_date=tomorrow, created_at=now))
        session.store.add(Task(id="t2", title="Schedule B12 shot", due_date=tomorrow, created_at=now))
        session.store.add(Appointment(id="a1", title="Team lunch", datetime=datetime(2026, 1, 13, 12, 30), created_at=now))
        oracle.queue({
            "action": "respond",
            "message": "Tomorrow: Submit expense report.\nSchedule B12 shot.\nTeam lunch at 12:30 PM.",
        })

        decision = await manager.submit(session, "what's on my to-do list tomorrow")

        assert isinstance(decision, RespondDecision)
        assert "Submit expense report" in decision.message
        assert "Schedule B12 shot" in decision.message
        assert "Team lunch" not in decision.message
        # The prompt gave the oracle all three sections
        assert "=== TASKS ===" in oracle.calls[0]["system_prompt"]

    async def test_oracle_timeout(self, manager, oracle, session):
        oracle.queue(OracleUnavailable())

        with pytest.raises(OracleUnavailable):
            await manager.submit(session, "dentist friday at 3")

        assert session.pending is None
        assert [t.role for t in session.history] == ["user"]
        assert session.history[0].content == "dentist friday at 3"

    async def test_user_priority_override_wins(self, manager, oracle, session):
        oracle.queue(add_reply(kind="task", title="Book hotel for Austin", priority="medium"))
        await manager.submit(session, "book hotel for Austin")

        result = manager.confirm(session, ConfirmRequest(priority="high"))

        tasks = session.store.snapshot().tasks
        assert len(tasks) == 1
        assert tasks[0].priority == "high"
        assert result.message == "Done! Added to your tasks."


class TestConfirmationGate:
    async def test_nothing_stored_until_confirm(self, manager, oracle, session):
        oracle.queue(add_reply(kind="task", title="Buy groceries"))
        await manager.submit(session, "buy groceries")

        assert session.store.snapshot().tasks == []

        manager.confirm(session)
        assert [t.title for t in session.store.snapshot().tasks] == ["Buy groceries"]
        assert session.state == "idle"
        assert session.history[-1].content == "Done! Added to your tasks."

    async def test_cancel_discards(self, manager, oracle, session):
        oracle.queue(add_reply(kind="routine", title="Stretch", frequency="daily"))
        await manager.submit(session, "stretch every day")

        result = manager.cancel(session)

        assert result.message == "No problem, cancelled."
        assert session.pending is None
        assert session.store.snapshot().routines == []

    async def test_new_utterance_supersedes_pending(self, manager, oracle, session):
        oracle.queue(add_reply(kind="task", title="Buy milk"))
        oracle.queue({"action": "respond", "message": "Your day looks calm."})
        await manager.submit(session, "buy milk")

        await manager.submit(session, "how does my day look")
        result = manager.confirm(session)

        assert result.message == "Nothing to confirm."
        assert session.store.snapshot().tasks == []

    async def test_confirm_routine_and_appointment(self, manager, oracle, session):
        oracle.queue(add_reply(kind="routine", title="Call parents", frequency="weekly"))
        await manager.submit(session, "call parents every week")
        manager.confirm(session)

        oracle.queue(add_reply(kind="appointment", title="Dentist", schedule="2026-01-16T15:00"))
        await manager.submit(session, "dentist friday at 3pm")
        manager.confirm(session, ConfirmRequest(schedule=datetime(2026, 1, 16, 16, 0)))

        snapshot = session.store.snapshot()
        assert snapshot.routines[0].frequency == "weekly"
        assert snapshot.routines[0].completions == []
        assert snapshot.appointments[0].datetime == datetime(2026, 1, 16, 16, 0)

    async def test_update_priority_applied_on_confirm(self, manager, oracle, session, now):
        session.store.add(Task(id="t1", title="Renew gym membership", priority="low", created_at=now))
        oracle.queue({"action": "update_priority", "target_title": "gym membership", "new_priority": "high"})

        decision = await manager.submit(session, "the gym membership is urgent")

        assert decision == UpdatePriorityDecision(target_title="Renew gym membership", new_priority="high")
        assert session.store.get_task("t1").priority == "low"

        result = manager.confirm(session)
        assert session.store.get_task("t1").priority == "high"
        assert "Renew gym membership" in result.message

    async def test_update_priority_target_gone_at_confirm(self, manager, oracle, session, now):
        session.store.add(Task(id="t1", title="Renew gym membership", created_at=now))
        oracle.queue({"action": "update_priority", "target_title": "Renew gym membership", "new_priority": "high"})
        await manager.submit(session, "make gym membership high priority")

        session.store.set_completed("t1")
        result = manager.confirm(session)

        assert "couldn't find" in result.message
        assert session.state == "idle"

    async def test_unknown_priority_target_is_a_message(self, manager, oracle, session):
        oracle.queue({"action": "update_priority", "target_title": "Water plants", "new_priority": "low"})

        decision = await manager.submit(session, "water plants is low priority")

        assert isinstance(decision, RespondDecision)
        assert "Water plants" in decision.message
        assert session.pending is None

    async def test_malformed_reply_is_a_message(self, manager, oracle, session):
        oracle.queue("I think you meant something else?")

        decision = await manager.submit(session, "hmm")

        assert decision == RespondDecision(message="I think you meant something else?")
        assert session.history[-1].role == "assistant"


class TestHistory:
    async def test_history_capped_at_fifty(self, manager, oracle, session):
        for i in range(51):
            session.append("user", f"turn {i}")

        assert len(session.history) == 50
        assert session.history[0].content == "turn 1"

    async def test_only_last_ten_turns_forwarded(self, manager, oracle, session):
        for i in range(30):
            session.append("user" if i % 2 == 0 else "assistant", f"turn {i}")

        await manager.submit(session, "what now")

        forwarded = oracle.calls[0]["history"]
        assert len(forwarded) == 10
        assert forwarded[-1].content == "turn 29"
        assert oracle.calls[0]["utterance"] == "what now"

    async def test_sessions_are_independent(self, manager, oracle):
        first = manager.session("user-1")
        second = manager.session("user-2")
        oracle.queue(add_reply(kind="task", title="Buy milk"))
        await manager.submit(first, "buy milk")

        assert second.pending is None
        assert list(second.history) == []
        assert manager.session("user-1") is first

    async def test_concurrent_first_requests_share_one_session(self, manager):
        sessions = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            sessions.append(manager.session("new-user"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(s) for s in sessions}) == 1


class TestQuotaAndConcurrency:
    async def test_quota_short_circuits_oracle(self, oracle):
        usage = UsageTracker(monthly_limit=0, clock=lambda: NOW)
        manager = ConversationManager(oracle, usage, clock=lambda: NOW)
        session = manager.session("user-1")

        with pytest.raises(QuotaExceeded):
            await manager.submit(session, "buy milk")

        assert oracle.calls == []
        assert session.pending is None

    async def test_each_utterance_bills_once(self, manager, oracle, session, usage):
        oracle.queue(OracleUnavailable())
        with pytest.raises(OracleUnavailable):
            await manager.submit(session, "buy milk")

        assert usage.stats()["request_count"] == 1
        assert len(oracle.calls) == 1

    async def test_stale_result_is_dropped(self, usage):
        release = asyncio.Event()

        class SlowOracle(FakeOracle):
            async def classify(self, system_prompt, history, utterance):
                if utterance == "buy milk":
                    await release.wait()
                return await super().classify(system_prompt, history, utterance)

        # Replies are handed out in call order; the fast request reaches the oracle first
        oracle = SlowOracle(
            {"action": "respond", "message": "Noted."},
            add_reply(kind="task", title="Buy milk"),
        )
        manager = ConversationManager(oracle, usage, clock=lambda: NOW)
        session = manager.session("user-1")

        slow = asyncio.create_task(manager.submit(session, "buy milk"))
        await asyncio.sleep(0)
        fast = await manager.submit(session, "actually never mind")
        release.set()

        with pytest.raises(StaleResult):
            await slow

        assert fast == RespondDecision(message="Noted.")
        assert session.pending is None
        manager.confirm(session)
        assert session.store.snapshot().tasks == []

    async def test_client_time_wins(self, manager, oracle, session):
        client_now = datetime(2026, 3, 2, 18, 45)
        await manager.submit(session, "hello", current_datetime=client_now)

        assert "Current date/time: Monday, March 2nd at 6:45 PM" in oracle.calls[0]["system_prompt"]
