"""
This module implements the AI triage chat for the BreatheThrough application.

The triage model is asked to open every reply with a status header:

    STATUS: { "severity": 7, "requiresEmergency": true }

followed by free-text advice. `parse_triage_response` pulls the header out of the raw
reply, decodes it, and returns the advice with the header removed. A missing or broken
header never reaches the patient as an error: the reply is shown verbatim with severity
0 and no emergency flag.

`TriageConversation` holds the chat transcript for one triage session, builds the
history sent with each question, and substitutes fixed safety messages when the AI
capability cannot be reached. Those fallbacks direct the patient to emergency services
but never set the emergency flag themselves.
"""
# breathethrough/breathe/triage.py

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple

from breathe.errors import CapabilityUnavailable, ProtocolParseFailure
from breathe.models import Coordinates, GroundingReference, TriageMessage, TriageResult

logger = logging.getLogger(__name__)

STATUS_MARKER = "STATUS:"

GREETING = (
    "Hello. I am Dr. Gemini, your dedicated medical agent. I can see your location and help "
    "find nearby care if needed. \n\nPlease describe your symptoms in detail."
)
UNAVAILABLE_ADVICE = (
    "I am having trouble connecting to my medical systems. If you are in pain, please call 911."
)
INTERRUPTED_ADVICE = (
    "I am experiencing a connection interruption. If you are in severe distress, "
    "please contact emergency services immediately."
)

LocationProvider = Callable[[], Awaitable[Optional[Coordinates]]]


def find_status_header(text: str) -> Optional[Tuple[int, int, str]]:
    """Locates the first `STATUS:` marker that is followed by a brace-delimited object.

    Braces are matched with awareness of JSON strings, so nested objects and objects
    spanning several lines are captured whole.

    Returns:
        tuple or None: `(start, end, object_text)` where `text[start:end]` is the marker
        and object together, or None if no marker introduces an object.

    Raises:
        ProtocolParseFailure: If a marker opens an object whose braces never close.
    """
    search_from = 0
    while True:
        start = text.find(STATUS_MARKER, search_from)
        if start < 0:
            return None
        pos = start + len(STATUS_MARKER)
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos < len(text) and text[pos] == '{':
            end = _matching_brace(text, pos)
            return start, end, text[pos:end]
        search_from = start + len(STATUS_MARKER)


def _matching_brace(text: str, open_pos: int) -> int:
    """Returns the index just past the brace closing the one at `open_pos`."""
    depth = 0
    in_string = False
    escaped = False
    for pos in range(open_pos, len(text)):
        char = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return pos + 1
    raise ProtocolParseFailure("Status header object is not closed")


def _as_severity(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _as_flag(value: Any) -> bool:
    """Any truthy value marks an emergency; strings are read as words, so "false" is not one."""
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1')
    return bool(value)


def parse_status_header(text: str) -> Tuple[int, bool, str]:
    """Splits a raw model reply into severity, emergency flag and advice.

    Raises:
        ProtocolParseFailure: If a header is present but is not a valid JSON object.

    Returns:
        tuple: `(severity, requires_emergency, advice)`. Without a header the advice is
        the original text unchanged.
    """
    found = find_status_header(text)
    if found is None:
        return 0, False, text
    start, end, payload = found
    try:
        status = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolParseFailure(f"Status header is not valid JSON: {e}") from e
    if not isinstance(status, dict):
        raise ProtocolParseFailure("Status header is not a JSON object")
    severity = _as_severity(status.get('severity'))
    requires_emergency = _as_flag(status.get('requiresEmergency'))
    advice = (text[:start] + text[end:]).strip()
    return severity, requires_emergency, advice


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def filter_grounding_references(chunks: Optional[Iterable[Any]]) -> List[GroundingReference]:
    """Keeps the grounding chunks that carry both a title and a link, in order.

    A chunk may be a mapping or an SDK object, with the citation either at the top level
    or under a `web` or `maps` source. Anything incomplete is dropped.
    """
    references = []
    for chunk in chunks or []:
        for source in (_field(chunk, 'web'), _field(chunk, 'maps'), chunk):
            if source is None:
                continue
            title = _field(source, 'title')
            uri = _field(source, 'uri')
            if isinstance(title, str) and isinstance(uri, str) and title and uri:
                references.append(GroundingReference(title=title, uri=uri))
                break
    return references


def parse_triage_response(text: str, grounding_chunks: Optional[Iterable[Any]] = None) -> TriageResult:
    """Builds a `TriageResult` from raw model text, degrading to plain text on a bad header."""
    references = filter_grounding_references(grounding_chunks)
    try:
        severity, requires_emergency, advice = parse_status_header(text)
    except ProtocolParseFailure as e:
        logger.warning("Failed to parse status header: %s", e)
        return TriageResult(severity=0, requires_emergency=False, advice=text, grounding_references=references)
    return TriageResult(
        severity=severity,
        requires_emergency=requires_emergency,
        advice=advice,
        grounding_references=references,
    )


def unavailable_result() -> TriageResult:
    return TriageResult(severity=0, requires_emergency=False, advice=UNAVAILABLE_ADVICE)


async def assess(capability, message: str, history: List[str],
                 coordinates: Optional[Coordinates] = None) -> TriageResult:
    """Runs one triage call and parses the reply.

    Args:
        capability: An object with an `assess_crisis(message, history, coordinates)` coroutine
            returning an object with `text` and `grounding_chunks`.
        message: The patient's new message.
        history: Prior messages formatted as "Doctor: ..." / "Patient: ...".
        coordinates: Optional location used to ground nearby-care suggestions.

    Returns:
        TriageResult: The parsed reply, or the fixed emergency-services message when the
        capability is unavailable.
    """
    if capability is None:
        logger.error("Crisis assessment failed: no triage capability is configured")
        return unavailable_result()
    try:
        response = await capability.assess_crisis(message, history, coordinates)
    except CapabilityUnavailable as e:
        logger.error("Crisis assessment failed: %s", e)
        return unavailable_result()
    return parse_triage_response(response.text, response.grounding_chunks)


async def locate(provider: Optional[LocationProvider]) -> Optional[Coordinates]:
    """Asks the location provider for coordinates. Any failure means no location."""
    if provider is None:
        return None
    try:
        return await provider()
    except Exception as e:
        logger.warning("Location access denied or error: %s", e)
        return None


def browser_position_provider(position: Any) -> LocationProvider:
    """Wraps a browser Geolocation API result as a location provider.

    `position` is the object the browser reports: `{"coords": {"latitude", "longitude"}, ...}`
    on success or `{"error": {...}}` when the patient denies access.
    """

    async def provider() -> Coordinates:
        if not isinstance(position, dict):
            raise ValueError(f"Unexpected geolocation result: {position!r}")
        if position.get('error'):
            raise PermissionError(position['error'])
        coords = position['coords']
        return Coordinates(latitude=float(coords['latitude']), longitude=float(coords['longitude']))

    return provider


class TriageConversation:
    """The transcript and send loop of one triage chat.

    Args:
        capability: The AI triage capability (see `assess`).
        coordinates: Location to attach to every question, if known.
    """

    def __init__(self, capability, coordinates: Optional[Coordinates] = None):
        self.capability = capability
        self.coordinates = coordinates
        self.messages: List[TriageMessage] = [TriageMessage(role='model', text=GREETING, id='init')]
        self.is_loading = False
        self.location_requested = coordinates is not None

    async def use_location(self, provider: Optional[LocationProvider]) -> Optional[Coordinates]:
        """Asks for the patient's location once per conversation. Denial leaves it unset."""
        self.location_requested = True
        self.coordinates = await locate(provider)
        return self.coordinates

    def history_texts(self) -> List[str]:
        return [f"{'Doctor' if msg.role == 'model' else 'Patient'}: {msg.text}" for msg in self.messages]

    @property
    def is_urgent(self) -> bool:
        """True when the latest model reply flagged an emergency."""
        for msg in reversed(self.messages):
            if msg.role == 'model':
                return msg.is_urgent
        return False

    async def send(self, text: str) -> Optional[TriageMessage]:
        """Adds the patient's message, asks the model, and appends its reply.

        Blank input is ignored and returns None. The reply is appended even if the caller
        has moved on to another view in the meantime.
        """
        if not text or not text.strip():
            return None
        history = self.history_texts()
        self.messages.append(TriageMessage(role='user', text=text))
        self.is_loading = True
        try:
            result = await assess(self.capability, text, history, self.coordinates)
            reply = TriageMessage(
                role='model',
                text=result.advice,
                is_urgent=result.requires_emergency,
                grounding_references=result.grounding_references,
            )
        except Exception as e:
            logger.error("Triage request failed: %s", e, exc_info=True)
            reply = TriageMessage(role='model', text=INTERRUPTED_ADVICE)
        finally:
            self.is_loading = False
        self.messages.append(reply)
        return reply
