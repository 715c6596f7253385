"""
This is the main entry point for the BreatheThrough Streamlit application.

This script handles the following key responsibilities:
- Sets the overall page configuration and logging.
- Initializes the shared data store and Gemini client once per server process.
- Creates one `AppState` coordinator per browser session and restores that browser's saved session.
- Routes the patient to the sign-in page or the main app based on their login status.

Run it with `streamlit run BreatheThrough/main.py`.
"""
# breathethrough/main.py

import asyncio

import streamlit as st

from breathe.config import Settings, configure_logging
from breathe.encryption import load_or_create_encryptor
from breathe.gemini import GeminiClient
from breathe.models import new_id
from breathe.state import AppState
from breathe.storage import EncryptedFileBackend, LocalDataStore
import gui

# Set the basic configuration for the Streamlit page.
st.set_page_config(
    page_title="BreatheThrough",
    page_icon="🫁",
    layout="centered"
)


# Service Initialization
@st.cache_resource
def get_services():
    """
    Builds the data store and AI client shared by every browser session.

    Decorated with `@st.cache_resource` so the encrypted data file is opened once per
    server process and not on every rerun.

    Returns:
        tuple: The `LocalDataStore` and the `GeminiClient`.
    """
    settings = Settings.from_env()
    configure_logging(settings)
    backend = EncryptedFileBackend(settings.data_file, load_or_create_encryptor(settings.key_file))
    return LocalDataStore(backend), GeminiClient(settings)


store, ai = get_services()


def get_browser_id():
    """
    Returns the id of this browser's sign-in session.

    The id lives in the `sid` query parameter so a page reload resumes the same sign-in.
    A browser without one gets a fresh id and therefore never sees another browser's
    saved session.
    """
    browser_id = st.query_params.get("sid")
    if not browser_id:
        browser_id = new_id()
        st.query_params["sid"] = browser_id
    return browser_id


# Session State Management
# Each browser session gets its own coordinator; only that browser's saved session is restored.
if 'app' not in st.session_state:
    app = AppState(store.for_session(get_browser_id()), ai)
    asyncio.run(app.restore())
    st.session_state.app = app

app = st.session_state.app

# Main App Router
if app.user:
    gui.show_main_app(app)
else:
    gui.show_auth_page(app)
