"""
Runtime configuration for the BreatheThrough application.

Settings come from environment variables with sensible defaults. The Gemini API key
is read from Streamlit secrets (`.streamlit/secrets.toml`), falling back to the
`GEMINI_API_KEY` environment variable so the services also work outside Streamlit.
"""
# breathethrough/breathe/config.py

import logging
import os
from dataclasses import dataclass

import streamlit as st
from streamlit.errors import StreamlitAPIException

API_KEY_NAME = "GEMINI_API_KEY"


@dataclass(frozen=True)
class Settings:
    """File locations, model names and log level."""
    data_file: str = "records.json"
    key_file: str = "secret.key"
    triage_model: str = "gemini-2.5-flash"
    analysis_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            data_file=os.environ.get("BREATHE_DATA_FILE", defaults.data_file),
            key_file=os.environ.get("BREATHE_KEY_FILE", defaults.key_file),
            triage_model=os.environ.get("BREATHE_TRIAGE_MODEL", defaults.triage_model),
            analysis_model=os.environ.get("BREATHE_ANALYSIS_MODEL", defaults.analysis_model),
            image_model=os.environ.get("BREATHE_IMAGE_MODEL", defaults.image_model),
            log_level=os.environ.get("BREATHE_LOG_LEVEL", defaults.log_level),
        )


def get_api_key():
    """Returns the Gemini API key, or None when neither secrets nor environment provide one."""
    try:
        return st.secrets[API_KEY_NAME]
    except (FileNotFoundError, KeyError, StreamlitAPIException):
        return os.environ.get(API_KEY_NAME)


def configure_logging(settings: Settings) -> None:
    """Configures root logging once for the Streamlit process."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
