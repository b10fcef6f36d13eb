"""
Shared pytest fixtures for backend tests.
The oracle is always a fake returning canned text; no test calls a real model.
"""
import json
import pytest
import sys
import os
from datetime import datetime
from types import SimpleNamespace

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config
from conversation import ConversationManager
from usage import UsageTracker

# Monday, January 12th 2026 at 9:00 AM
NOW = datetime(2026, 1, 12, 9, 0)


class FakeOracle:
    """Returns queued replies in order; an Exception instance is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def queue(self, reply):
        self.replies.append(reply)

    async def classify(self, system_prompt, history, utterance):
        self.calls.append({"system_prompt": system_prompt, "history": list(history), "utterance": utterance})
        reply = self.replies.pop(0) if self.replies else json.dumps({"action": "respond", "message": "Okay."})
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class FakeOpenAI:
    """Stands in for openai.AsyncOpenAI: records audio calls, returns canned output."""

    def __init__(self, transcript="hello there", speech=b"mp3-bytes", error=None):
        self.calls = []
        self.transcript = transcript
        self.speech_bytes = speech
        self.error = error
        self.audio = SimpleNamespace(
            transcriptions=SimpleNamespace(create=self._transcribe),
            speech=SimpleNamespace(create=self._speak),
        )

    async def _transcribe(self, **kwargs):
        self.calls.append(("transcribe", kwargs))
        if self.error:
            raise self.error
        return self.transcript

    async def _speak(self, **kwargs):
        self.calls.append(("speech", kwargs))
        if self.error:
            raise self.error
        return SimpleNamespace(content=self.speech_bytes)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def usage():
    return UsageTracker(monthly_limit=20, clock=lambda: NOW)


@pytest.fixture
def manager(oracle, usage):
    return ConversationManager(oracle, usage, clock=lambda: NOW)


@pytest.fixture
def session(manager):
    return manager.session("user-1")


@pytest.fixture
def app_client(manager, usage, monkeypatch):
    """
    Test client for the FastAPI app with the fake oracle wired in.
    JWT_SECRET is cleared so requests run as the development identity.
    """
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setattr(config, "JWT_SECRET", None)
    main.app.dependency_overrides[main.get_manager] = lambda: manager
    main.app.dependency_overrides[main.get_usage] = lambda: usage

    with TestClient(main.app) as client:
        yield client

    main.app.dependency_overrides.clear()
