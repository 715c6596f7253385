"""
This module defines the primary data models for the BreatheThrough application.

These classes describe the per-user health document that is managed by the
`AppState` coordinator and persisted by the local data store: the identity record,
the medication regimen, the pain journal and the patient's emergency details.
Transient triage chat types live here too so the GUI and the parser share one shape.

Every persisted model converts to and from a plain dictionary so it can be written
into the encrypted JSON store.
"""
# breathethrough/breathe/models.py

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_SICKLE_CELL_TYPE = 'SS'

T = TypeVar('T')


def new_id() -> str:
    """Returns a fresh unique identifier for users, entries and medications."""
    return str(uuid.uuid4())


class ViewState(str, Enum):
    """The views a signed-in patient can navigate between."""
    DASHBOARD = 'DASHBOARD'
    TRIAGE = 'TRIAGE'
    IMMERSIVE = 'IMMERSIVE'
    JOURNAL = 'JOURNAL'
    PROFILE = 'PROFILE'


class ActivityContext(str, Enum):
    """What the patient was doing on the day a journal entry describes."""
    SCHOOL = 'School'
    WORK = 'Work'
    HOME = 'Home'
    EXERCISE = 'Exercise'
    OTHER = 'Other'

    @classmethod
    def parse(cls, value) -> 'ActivityContext':
        """Converts a stored value to a context, falling back to `HOME` when unknown or missing."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.HOME


@dataclass(frozen=True)
class User:
    """The public identity of an account. Never carries password material.

    Attributes:
        id (str): The unique user id, also the key of the user's data document.
        email (str): The login email (matched case-sensitively).
        name (str): The display name given at registration.
    """
    id: str
    email: str
    name: str

    @property
    def first_name(self) -> str:
        return self.name.split(' ')[0] if self.name else ''

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'User':
        return cls(id=data['id'], email=data['email'], name=data.get('name', ''))


@dataclass
class PatientInfo:
    """Care-team and emergency details shown on the profile view."""
    doctor_name: str = ''
    emergency_contact_name: str = ''
    emergency_contact_phone: str = ''
    blood_type: str = ''

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'PatientInfo':
        data = data or {}
        return cls(
            doctor_name=data.get('doctor_name', ''),
            emergency_contact_name=data.get('emergency_contact_name', ''),
            emergency_contact_phone=data.get('emergency_contact_phone', ''),
            blood_type=data.get('blood_type', ''),
        )


@dataclass(frozen=True)
class Medication:
    """A single medication in the patient's regimen.

    Attributes:
        name (str): The medication name. Must be non-empty when created from the UI.
        dosage (str): Free-text dosage, e.g. "500mg".
        frequency (str): Free-text schedule, e.g. "Daily".
        taken_today (bool): The dashboard check-off flag. Not reset at day boundaries.
        id (str): A unique identifier generated when not supplied.
    """
    name: str
    dosage: str = ''
    frequency: str = 'Daily'
    taken_today: bool = False
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Medication':
        return cls(
            id=data.get('id') or new_id(),
            name=data.get('name', ''),
            dosage=data.get('dosage', ''),
            frequency=data.get('frequency', ''),
            taken_today=bool(data.get('taken_today', False)),
        )


@dataclass(frozen=True)
class JournalEntry:
    """One day of the pain journal. `date` is the unique key within a user's entries.

    Attributes:
        date (str): The calendar day in ISO format (YYYY-MM-DD).
        pain_level (int): Self-reported pain from 0 to 10.
        notes (str): Free-text notes about triggers and feelings.
        activity_context (ActivityContext): What the patient was doing that day.
        is_crisis (bool): Whether the day involved a pain crisis.
        meds_taken (bool): Whether medication was taken as prescribed that day.
        triggers (list): Reserved; always stored, currently never populated by the UI.
        id (str): A unique identifier generated when not supplied.
    """
    date: str
    pain_level: int = 0
    notes: str = ''
    activity_context: ActivityContext = ActivityContext.HOME
    is_crisis: bool = False
    meds_taken: bool = False
    triggers: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['activity_context'] = self.activity_context.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'JournalEntry':
        """Builds an entry from its stored form.

        Raises:
            KeyError: If the record has no date.
            ValueError: If the date is not an ISO calendar day.
        """
        day = data['date']
        if not isinstance(day, str):
            raise ValueError(f"Entry date must be a string, got {day!r}")
        datetime.date.fromisoformat(day)
        return cls(
            id=data.get('id') or new_id(),
            date=day,
            pain_level=int(data.get('pain_level', 0)),
            notes=data.get('notes', ''),
            activity_context=ActivityContext.parse(data.get('activity_context')),
            is_crisis=bool(data.get('is_crisis', False)),
            meds_taken=bool(data.get('meds_taken', False)),
            triggers=list(data.get('triggers') or []),
        )


def _parse_records(raw: Any, parse: Callable[[Dict], T], kind: str) -> List[T]:
    """Parses each stored record on its own, skipping the ones that cannot be read."""
    if not isinstance(raw, list):
        if raw:
            logger.warning("Ignoring %s: expected a list, got %s.", kind, type(raw).__name__)
        return []
    records = []
    for idx, item in enumerate(raw):
        try:
            records.append(parse(item))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed %s record at index %d: %r", kind, idx, e)
    return records


@dataclass
class UserData:
    """The full per-user document persisted under the user's id."""
    medications: List[Medication] = field(default_factory=list)
    entries: List[JournalEntry] = field(default_factory=list)
    sickle_cell_type: str = DEFAULT_SICKLE_CELL_TYPE
    patient_info: PatientInfo = field(default_factory=PatientInfo)

    def to_dict(self) -> Dict:
        return {
            'medications': [med.to_dict() for med in self.medications],
            'entries': [entry.to_dict() for entry in self.entries],
            'sickle_cell_type': self.sickle_cell_type,
            'patient_info': self.patient_info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'UserData':
        """Builds the document field by field. A bad record is dropped, never its siblings."""
        sickle_cell_type = data.get('sickle_cell_type')
        patient_info = data.get('patient_info')
        return cls(
            medications=_parse_records(data.get('medications'), Medication.from_dict, 'medication'),
            entries=_parse_records(data.get('entries'), JournalEntry.from_dict, 'journal entry'),
            sickle_cell_type=sickle_cell_type if isinstance(sickle_cell_type, str) and sickle_cell_type
            else DEFAULT_SICKLE_CELL_TYPE,
            patient_info=PatientInfo.from_dict(patient_info if isinstance(patient_info, dict) else None),
        )


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class GroundingReference:
    """An external citation (place or search result) attached to an AI reply."""
    title: str
    uri: str


@dataclass(frozen=True)
class TriageResult:
    """The parsed outcome of one triage call."""
    severity: int
    requires_emergency: bool
    advice: str
    grounding_references: List[GroundingReference] = field(default_factory=list)


@dataclass(frozen=True)
class TriageMessage:
    """A single message in the triage chat. Never persisted.

    Attributes:
        role (str): Either 'user' or 'model'.
        text (str): The display text, with any status header already removed.
        is_urgent (bool): True when the model flagged the situation as an emergency.
        grounding_references (list): Citations rendered as links under the message.
        id (str): A unique identifier generated when not supplied.
    """
    role: str
    text: str
    is_urgent: bool = False
    grounding_references: List[GroundingReference] = field(default_factory=list)
    id: str = field(default_factory=new_id)
