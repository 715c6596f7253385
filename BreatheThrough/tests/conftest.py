"""
Pytest configuration file for the BreatheThrough test suite.

This file defines shared fixtures used across the test files:
- An isolated encrypted data store on a temporary path with a freshly generated
  Fernet key, so tests never touch production data or keys.
- A scripted stand-in for the Gemini client that returns queued replies instead of
  calling the network.
- An `AppState` coordinator wired to both.
"""
import asyncio
from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet

from breathe.errors import CapabilityUnavailable
from breathe.models import JournalEntry, Medication
from breathe.state import AppState
from breathe.storage import EncryptedFileBackend, LocalDataStore

PASSWORD = "V4lid!Pass"


def run(coro):
    """Runs a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


class FakeAI:
    """Records calls and replays scripted responses for the three AI capabilities.

    `triage_replies` items are either reply text, a `(text, grounding_chunks)` tuple, or
    an exception instance to raise.
    """

    def __init__(self, triage_replies=None, analysis="Pain peaks on work days.", scene="data:image/png;base64,AAAA"):
        self.triage_replies = list(triage_replies or [])
        self.analysis = analysis
        self.scene = scene
        self.triage_calls = []
        self.analysis_calls = []
        self.scene_calls = []
        self.gate = None

    async def assess_crisis(self, message, chat_history, coordinates=None):
        self.triage_calls.append((message, list(chat_history), coordinates))
        if self.gate is not None:
            await self.gate.wait()
        if not self.triage_replies:
            raise CapabilityUnavailable("no scripted reply")
        reply = self.triage_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, tuple):
            text, chunks = reply
        else:
            text, chunks = reply, []
        return SimpleNamespace(text=text, grounding_chunks=chunks)

    async def analyze_patterns(self, entries):
        self.analysis_calls.append(list(entries))
        return self.analysis

    async def generate_scene(self, prompt):
        self.scene_calls.append(prompt)
        return self.scene


@pytest.fixture
def encryptor():
    """Provides a Fernet instance with a throwaway key."""
    return Fernet(Fernet.generate_key())


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "records.json")


@pytest.fixture
def backend(data_file, encryptor):
    return EncryptedFileBackend(data_file, encryptor)


@pytest.fixture
def store(backend):
    return LocalDataStore(backend)


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def app(store, fake_ai):
    """Provides a coordinator over the temporary store and the scripted AI."""
    return AppState(store, fake_ai)


@pytest.fixture
def signed_in_app(app):
    """Provides a coordinator with a freshly registered patient signed in."""
    run(app.auth.register("amara@example.com", PASSWORD, "Amara Okafor"))
    return app


def make_entry(day, pain=3, crisis=False, meds=False, **extra):
    """Builds a journal entry for `day` (YYYY-MM-DD) with sensible defaults."""
    return JournalEntry(date=day, pain_level=pain, is_crisis=crisis, meds_taken=meds, **extra)


def make_med(name="Hydroxyurea", **extra):
    return Medication(name=name, dosage=extra.pop("dosage", "500mg"), **extra)
