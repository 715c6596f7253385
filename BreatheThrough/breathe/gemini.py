"""
This module provides an interface to the Google Gemini models used by BreatheThrough.

It is responsible for:
- Configuring the Gemini API with the key from Streamlit secrets (or the environment).
- Building the triage prompt, calling the model with search grounding, and returning the
  raw reply text and grounding chunks for the triage parser.
- Summarising journal entries into pain-pattern findings.
- Generating calming background images for the immersive view.

Triage failures are raised as `CapabilityUnavailable` so the triage layer can substitute
its safety message. Analysis and image generation degrade inside this module: analysis
returns a fixed apology and image generation returns None.
"""
# breathethrough/breathe/gemini.py

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from breathe.config import Settings, get_api_key
from breathe.errors import CapabilityUnavailable
from breathe.journal import analysis_lines
from breathe.models import Coordinates, JournalEntry

logger = logging.getLogger(__name__)

SEARCH_TOOL = "google_search_retrieval"

EMPTY_TRIAGE_TEXT = "I am unable to process your request at this moment."
NO_ENTRIES_TEXT = "No journal entries to analyze yet."
NO_PATTERNS_TEXT = "No patterns detected yet."
ANALYSIS_UNAVAILABLE_TEXT = "Unable to analyze patterns at this time."


@dataclass
class CrisisResponse:
    """Raw triage reply: model text plus any grounding chunks attached to it."""
    text: str
    grounding_chunks: List[Any] = field(default_factory=list)


def build_triage_prompt(message: str, chat_history: Sequence[str],
                        coordinates: Optional[Coordinates] = None) -> str:
    """Builds the triage prompt, including the status header instructions."""
    history_context = "\n".join(chat_history)
    location_line = ""
    if coordinates is not None:
        location_line = (
            f"\nPatient Location: latitude {coordinates.latitude}, longitude {coordinates.longitude}\n"
        )

    # The STATUS line is parsed by breathe.triage; keep the two in sync.
    return f"""
    You are Dr. Gemini, an expert Hematologist and dedicated medical AI agent specializing in Sickle Cell Disease.

    Patient History Context:
    {history_context}
    {location_line}
    INSTRUCTIONS:
    1. Analyze the input for pain severity (0-10) and emergency symptoms.
    2. If the user asks for hospitals, doctors, or help nearby, search for real locations near their coordinates.
    3. CRITICAL OUTPUT FORMAT:
       Start your response strictly with a status line in this format:
       "STATUS: {{ "severity": 7, "requiresEmergency": true }}"

       Then provide your empathetic, clinical advice and location details (if applicable) in natural language below that line.

    Red Flags (Emergency): Chest pain, fever > 101F, difficulty breathing, seizure, inability to move.

    Patient Message:
    {message}
    """


def build_analysis_prompt(entries: Sequence[JournalEntry]) -> str:
    return f"""
    Analyze these Sickle Cell pain journal entries for patterns and correlations.

    Data:
    {analysis_lines(entries)}

    Tasks:
    1. Identify correlation between pain and specific days of the week (e.g., Work days vs Weekends).
    2. Identify context triggers (School, Work, Exercise).
    3. Look for weather or hydration patterns in the notes.

    Output a helpful, medical-style summary in 3 concise paragraphs. Use bolding for key findings.
    """


def build_scene_prompt(scene_prompt: str) -> str:
    return (
        "Generate a high-quality, photorealistic, serene, wide-angle image for VR meditation. "
        f"Theme: {scene_prompt}. Soft lighting, calming colors, no text, atmospheric."
    )


def _default_model_factory(model_name: str):
    """Configures the SDK and returns a model. Raises `CapabilityUnavailable` without a key."""
    api_key = get_api_key()
    if not api_key:
        raise CapabilityUnavailable("GEMINI_API_KEY is not configured")
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(model_name)


def _response_text(response) -> str:
    """Returns the reply text, or an empty string when the reply has no text part."""
    try:
        return response.text or ""
    except ValueError:
        return ""


def _first_candidate(response):
    candidates = getattr(response, "candidates", None) or []
    return candidates[0] if candidates else None


def _grounding_chunks(response) -> List[Any]:
    candidate = _first_candidate(response)
    metadata = getattr(candidate, "grounding_metadata", None)
    return list(getattr(metadata, "grounding_chunks", None) or [])


class GeminiClient:
    """The three AI capabilities used by the app.

    Args:
        settings (Settings): Supplies the model names.
        model_factory: Callable mapping a model name to an object with
            `generate_content_async`. Defaults to a configured `genai.GenerativeModel`.
    """

    def __init__(self, settings: Optional[Settings] = None, model_factory: Optional[Callable[[str], Any]] = None):
        self.settings = settings or Settings()
        self._model_factory = model_factory or _default_model_factory

    async def assess_crisis(self, message: str, chat_history: Sequence[str],
                            coordinates: Optional[Coordinates] = None) -> CrisisResponse:
        """Asks the triage model about the patient's symptoms.

        Raises:
            CapabilityUnavailable: If the model cannot be reached or errors.
        """
        prompt = build_triage_prompt(message, chat_history, coordinates)
        try:
            model = self._model_factory(self.settings.triage_model)
            try:
                response = await model.generate_content_async(prompt, tools=SEARCH_TOOL)
            except google_exceptions.InvalidArgument as e:
                # Some models reject search grounding; ask again without it.
                logger.warning("Search grounding rejected by %s: %s", self.settings.triage_model, e)
                response = await model.generate_content_async(prompt)
        except CapabilityUnavailable:
            raise
        except Exception as e:
            raise CapabilityUnavailable(f"Crisis assessment error: {e}") from e

        text = _response_text(response) or EMPTY_TRIAGE_TEXT
        return CrisisResponse(text=text, grounding_chunks=_grounding_chunks(response))

    async def analyze_patterns(self, entries: Sequence[JournalEntry]) -> str:
        """Summarises pain patterns. Returns a fixed message for an empty journal or on error."""
        if not entries:
            return NO_ENTRIES_TEXT
        try:
            model = self._model_factory(self.settings.analysis_model)
            response = await model.generate_content_async(build_analysis_prompt(entries))
        except Exception as e:
            logger.error("Analysis error: %s", e)
            return ANALYSIS_UNAVAILABLE_TEXT
        return _response_text(response) or NO_PATTERNS_TEXT

    async def generate_scene(self, scene_prompt: str) -> Optional[str]:
        """Generates a background image and returns it as a data URI, or None on failure."""
        try:
            model = self._model_factory(self.settings.image_model)
            response = await model.generate_content_async(build_scene_prompt(scene_prompt))
        except Exception as e:
            logger.error("Image generation error: %s", e)
            return None

        candidate = _first_candidate(response)
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None)
            if data:
                mime_type = getattr(inline_data, "mime_type", None) or "image/png"
                if isinstance(data, bytes):
                    data = base64.b64encode(data).decode()
                return f"data:{mime_type};base64,{data}"
        return None
