"""
Medication regimen transforms.

Each function takes the current list of medications and returns a new list; the input
is never modified. The `AppState` coordinator persists the result.
"""
# breathethrough/breathe/regimen.py

from dataclasses import replace
from typing import List, Sequence

from breathe.models import Medication

DEFAULT_FREQUENCY = 'Daily'


def new_medication(name: str, dosage: str = '', frequency: str = '') -> Medication:
    """Builds a medication from the profile form.

    Raises:
        ValueError: If `name` is blank.
    """
    if not name or not name.strip():
        raise ValueError("Medication name is required")
    return Medication(name=name.strip(), dosage=dosage.strip(), frequency=frequency.strip() or DEFAULT_FREQUENCY)


def add_medication(medications: Sequence[Medication], medication: Medication) -> List[Medication]:
    return list(medications) + [medication]


def remove_medication(medications: Sequence[Medication], medication_id: str) -> List[Medication]:
    """Drops the medication with `medication_id`. Unknown ids leave the list unchanged."""
    return [med for med in medications if med.id != medication_id]


def toggle_taken(medications: Sequence[Medication], medication_id: str) -> List[Medication]:
    """Flips `taken_today` on the matching medication."""
    return [replace(med, taken_today=not med.taken_today) if med.id == medication_id else med
            for med in medications]
