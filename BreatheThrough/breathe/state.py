"""
This module provides the `AppState` coordinator, the single owner of a patient's
in-memory health data.

It is responsible for:
- Wiring the `AuthManager` to the data store and loading or resetting the patient's
  document when the session changes.
- Applying every mutation (regimen, journal, condition type, patient details) to the
  in-memory snapshot and then writing the whole document through to the store.
- Tracking the active view.
- Running the AI-backed features (triage chat, pattern analysis, scene generation)
  whose results land on the coordinator even if the patient has switched views.

Every write returns a `SaveResult`. A failed write is logged and reported in the result
but never undoes the in-memory change, so the app keeps working on local state.
"""
# breathethrough/breathe/state.py

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import List, Optional, Union

from breathe import journal, regimen
from breathe.auth import AuthManager, Session
from breathe.errors import PersistenceFailure
from breathe.gemini import ANALYSIS_UNAVAILABLE_TEXT
from breathe.immersive import SceneState
from breathe.models import (
    DEFAULT_SICKLE_CELL_TYPE,
    JournalEntry,
    Medication,
    PatientInfo,
    TriageMessage,
    User,
    UserData,
    ViewState,
)
from breathe.storage import DataStore
from breathe.triage import TriageConversation

logger = logging.getLogger(__name__)

SICKLE_CELL_TYPES = [
    ('SS', 'HbSS (Sickle Cell Anemia)'),
    ('SC', 'HbSC Disease'),
    ('S-Beta0', 'HbS Beta-Zero Thalassemia'),
    ('S-Beta+', 'HbS Beta-Plus Thalassemia'),
    ('SD', 'HbSD'),
    ('SE', 'HbSE'),
    ('Trait', 'Sickle Cell Trait (AS)'),
    ('Other', 'Other'),
]

BLOOD_TYPES = ['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']


def initials(name: str) -> str:
    """First letters of the first two words of `name`, upper-cased."""
    return ''.join(part[0] for part in name.split() if part).upper()[:2]


@dataclass(frozen=True)
class SaveResult:
    """Outcome of writing the patient's document to the store."""
    ok: bool
    error: Optional[Exception] = None


class AppState:
    """Coordinates session, in-memory data, persistence and views for one app instance.

    Args:
        store (DataStore): Where accounts and documents are kept.
        ai: The AI capabilities (see `breathe.gemini.GeminiClient`). Optional so the data
            features work without a configured model.
        session (Session): Session object to share with the auth manager.
    """

    def __init__(self, store: DataStore, ai=None, session: Optional[Session] = None):
        self.store = store
        self.ai = ai
        self.session = session if session is not None else Session()
        self.auth = AuthManager(store, self.session, on_login=self.load_user_data, on_logout=self.reset)
        self.data = UserData()
        self.view = ViewState.DASHBOARD
        self.loading_data = False
        self.last_save: Optional[SaveResult] = None
        self.analysis: Optional[str] = None
        self.is_analyzing = False
        self._new_ai_state()

    def _new_ai_state(self) -> None:
        self.triage = TriageConversation(self.ai)
        self.scene = SceneState(self.ai)

    # Read-only views of the snapshot

    @property
    def user(self) -> Optional[User]:
        return self.session.user

    @property
    def medications(self) -> List[Medication]:
        return list(self.data.medications)

    @property
    def entries(self) -> List[JournalEntry]:
        return list(self.data.entries)

    @property
    def sickle_cell_type(self) -> str:
        return self.data.sickle_cell_type

    @property
    def patient_info(self) -> PatientInfo:
        return self.data.patient_info

    # Session lifecycle

    async def restore(self) -> Optional[User]:
        """Resumes the persisted session, loading that patient's data."""
        return await self.auth.restore()

    async def load_user_data(self, user: User) -> None:
        self.loading_data = True
        try:
            self.data = await self.store.get_user_data(user.id)
        except Exception as e:
            logger.error("Failed to load user data for %s: %s", user.id, e, exc_info=True)
        finally:
            self.loading_data = False

    async def reset(self) -> None:
        """Clears all patient data and returns to the dashboard. Called on logout."""
        self.data = UserData()
        self.view = ViewState.DASHBOARD
        self.analysis = None
        self.last_save = None
        self._new_ai_state()

    def navigate(self, view: Union[ViewState, str]) -> None:
        self.view = ViewState(view)

    # Write-through persistence

    async def _persist(self) -> SaveResult:
        user = self.session.user
        if user is None:
            result = SaveResult(ok=False, error=PersistenceFailure("No signed-in user"))
        else:
            try:
                await self.store.save_user_data(user.id, self.data)
                result = SaveResult(ok=True)
            except Exception as e:
                logger.error("Failed to save data for %s: %s", user.id, e, exc_info=True)
                result = SaveResult(ok=False, error=e)
        self.last_save = result
        return result

    async def _apply(self, **changes) -> SaveResult:
        self.data = replace(self.data, **changes)
        return await self._persist()

    # Regimen

    async def add_medication(self, medication: Medication) -> SaveResult:
        return await self._apply(medications=regimen.add_medication(self.data.medications, medication))

    async def remove_medication(self, medication_id: str) -> SaveResult:
        return await self._apply(medications=regimen.remove_medication(self.data.medications, medication_id))

    async def toggle_medication(self, medication_id: str) -> SaveResult:
        return await self._apply(medications=regimen.toggle_taken(self.data.medications, medication_id))

    # Journal

    async def save_entry(self, entry: JournalEntry) -> SaveResult:
        return await self._apply(entries=journal.upsert_entry(self.data.entries, entry))

    def select_day(self, day: str) -> journal.DayForm:
        return journal.select_day(self.data.entries, day)

    def adherence(self) -> int:
        return journal.compute_adherence(self.data.entries)

    def crisis_free_days(self, now: Union[date, datetime, None] = None) -> Union[int, str]:
        return journal.compute_crisis_free_streak(self.data.entries, now)

    def health_status(self) -> str:
        return journal.health_status(self.data.entries)

    # Profile

    async def update_condition_type(self, sickle_cell_type: str) -> SaveResult:
        return await self._apply(sickle_cell_type=sickle_cell_type or DEFAULT_SICKLE_CELL_TYPE)

    async def update_patient_info(self, info: PatientInfo) -> SaveResult:
        return await self._apply(patient_info=info)

    # AI-backed features

    async def send_triage_message(self, text: str) -> Optional[TriageMessage]:
        conversation = self.triage
        return await conversation.send(text)

    async def run_analysis(self) -> str:
        if self.ai is None:
            logger.error("Pattern analysis requested but no AI client is configured")
            self.analysis = ANALYSIS_UNAVAILABLE_TEXT
            return self.analysis
        self.is_analyzing = True
        try:
            self.analysis = await self.ai.analyze_patterns(self.data.entries)
        finally:
            self.is_analyzing = False
        return self.analysis

    async def generate_scene(self, prompt: str) -> Optional[str]:
        scene = self.scene
        return await scene.generate(prompt)
