"""
This module defines the graphical user interface (GUI) for BreatheThrough using Streamlit.

It includes functions for rendering the sign-in page and the five patient views:
the dashboard, the AI triage chat, the pain journal calendar, the immersive breathing
space, and the profile with the medication regimen.

The main entry point for signed-in patients is `show_main_app`, which renders the
navigation and routes to the active view held by the `AppState` coordinator.
"""
# breathethrough/gui.py

import asyncio
import datetime

import streamlit as st
from streamlit_js_eval import get_geolocation

from breathe import journal
from breathe.errors import DuplicateUser, InvalidCredentials, RegistrationError
from breathe.immersive import SCENES, TECHNIQUES, get_technique
from breathe.models import ActivityContext, PatientInfo, ViewState
from breathe.regimen import new_medication
from breathe.state import BLOOD_TYPES, SICKLE_CELL_TYPES, initials
from breathe.triage import browser_position_provider

INDICATOR_ICONS = {
    journal.SEVERE: "🔴",
    journal.MODERATE: "🟠",
    journal.WELLNESS: "🟢",
    journal.MILD: "🔵",
}

NAV_ITEMS = [
    (ViewState.DASHBOARD, "🏠 Home"),
    (ViewState.TRIAGE, "🩺 Triage"),
    (ViewState.JOURNAL, "📅 Journal"),
    (ViewState.IMMERSIVE, "🌙 Breathe"),
    (ViewState.PROFILE, "👤 Profile"),
]

ENTRY_CONTEXTS = [ActivityContext.HOME, ActivityContext.SCHOOL, ActivityContext.WORK,
                  ActivityContext.EXERCISE, ActivityContext.OTHER]


def _run(coro):
    """Runs a coroutine from the Streamlit script thread and returns its result."""
    return asyncio.run(coro)


def _warn_if_unsaved(result):
    """Shows a non-blocking notice when a write to the store failed."""
    if result is not None and not result.ok:
        st.toast("Saved on this device only. Changes may not persist.", icon="⚠️")


# Authentication

def show_auth_page(app):
    """Displays the sign-in and registration forms.

    Args:
        app: The `AppState` coordinator for this browser session.
    """
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        st.markdown("<h1 style='text-align: center;'>BreatheThrough</h1>", unsafe_allow_html=True)
        st.markdown("<p style='text-align: center;'>Sickle cell care, one day at a time.</p>",
                    unsafe_allow_html=True)
        login_tab, register_tab = st.tabs(["Sign In", "Create Account"])

        with login_tab:
            with st.form("login_form"):
                email = st.text_input("Email")
                password = st.text_input("Password", type="password")
                submitted = st.form_submit_button("Sign In", use_container_width=True)
            if submitted:
                with st.spinner("Signing in..."):
                    try:
                        _run(app.auth.login(email, password))
                    except InvalidCredentials as e:
                        st.error(str(e))
                    else:
                        st.rerun()

        with register_tab:
            with st.form("register_form"):
                name = st.text_input("Full Name")
                email = st.text_input("Email", key="register_email")
                password = st.text_input("Password", type="password", key="register_password")
                submitted = st.form_submit_button("Create Account", use_container_width=True)
            if submitted:
                with st.spinner("Creating your account..."):
                    try:
                        _run(app.auth.register(email, password, name))
                    except (DuplicateUser, RegistrationError) as e:
                        st.error(str(e))
                    else:
                        st.rerun()


# Main application

def show_main_app(app):
    """Renders navigation and the active view for a signed-in patient."""
    with st.sidebar:
        st.markdown(f"### {app.user.name}")
        for view, label in NAV_ITEMS:
            button_type = "primary" if app.view == view else "secondary"
            if st.button(label, key=f"nav_{view.value}", use_container_width=True, type=button_type):
                app.navigate(view)
                st.rerun()

    if app.loading_data:
        st.info("Loading health data...")
        return

    if app.view == ViewState.TRIAGE:
        _render_triage_page(app)
    elif app.view == ViewState.JOURNAL:
        _render_journal_page(app)
    elif app.view == ViewState.IMMERSIVE:
        _render_immersive_page(app)
    elif app.view == ViewState.PROFILE:
        _render_profile_page(app)
    else:
        _render_dashboard(app)


def _render_dashboard(app):
    """Renders the patient summary: status, crisis-free streak, adherence and today's regimen."""
    status = app.health_status()
    header, pill = st.columns([3, 1])
    with header:
        st.markdown("## Patient Summary")
        st.caption(f"Welcome back, {app.user.first_name}")
    with pill:
        if status == "MONITOR CLOSELY":
            st.error(status)
        else:
            st.info(status)

    adherence = app.adherence()
    band = journal.adherence_band(adherence)
    col1, col2 = st.columns(2)
    col1.metric("Crisis Free", journal.streak_label(app.crisis_free_days()))
    col2.metric("Log Adherence", f"{adherence}%", help=f"Adherence is {band}.")

    st.markdown("#### Immediate Actions")
    action1, action2 = st.columns(2)
    if action1.button("Report Pain: Start Triage AI", use_container_width=True):
        app.navigate(ViewState.TRIAGE)
        st.rerun()
    if action2.button("Breathe: Immersive Therapy", use_container_width=True):
        app.navigate(ViewState.IMMERSIVE)
        st.rerun()

    st.markdown("#### Today's Regimen")
    if not app.medications:
        st.caption("No medications configured.")
        if st.button("Configure Regimen"):
            app.navigate(ViewState.PROFILE)
            st.rerun()
        return
    for med in app.medications:
        taken = st.checkbox(f"**{med.name}** · {med.dosage} • {med.frequency}",
                            value=med.taken_today, key=f"med_taken_{med.id}")
        if taken != med.taken_today:
            _warn_if_unsaved(_run(app.toggle_medication(med.id)))
            st.rerun()


def _request_location(app):
    """Asks the browser for the patient's position once per triage conversation.

    The geolocation component returns None until the browser answers, then reruns the
    script with the position or an error. A denial leaves the conversation without
    coordinates.
    """
    if app.triage.location_requested:
        return
    position = get_geolocation(component_key="triage_geolocation")
    if position is None:
        return
    _run(app.triage.use_location(browser_position_provider(position)))


def _render_triage_page(app):
    """Renders the triage chat with urgent replies highlighted and grounding links listed."""
    st.markdown("## Dr. Gemini")
    st.caption("AI triage for sickle cell symptoms. In an emergency, call 911.")
    _request_location(app)
    if app.triage.coordinates is not None:
        st.caption("📍 Using your location to find nearby care.")

    for message in app.triage.messages:
        if message.role == 'user':
            with st.chat_message("user", avatar="🙂"):
                st.write(message.text)
            continue
        with st.chat_message("assistant", avatar="🩺"):
            if message.is_urgent:
                st.error("🚨 Emergency: seek care immediately.")
            st.write(message.text)
            if message.grounding_references:
                links = " · ".join(f"[{ref.title}]({ref.uri})" for ref in message.grounding_references)
                st.markdown(f"📍 {links}")

    prompt = st.chat_input("Describe your symptoms...")
    if prompt:
        with st.spinner("Dr. Gemini is assessing..."):
            _run(app.send_triage_message(prompt))
        st.rerun()


def _render_day_cell(app, cell, selected_date):
    if cell is None:
        st.write("")
        return
    label = str(cell.day)
    if cell.indicator:
        label += f" {INDICATOR_ICONS[cell.indicator]}"
    if cell.is_crisis:
        label += "❗"
    if cell.meds_taken:
        label += "✅"
    button_type = "primary" if cell.date == selected_date else "secondary"
    if st.button(label, key=f"day_{cell.date}", use_container_width=True, type=button_type):
        st.session_state.selected_date = cell.date
        st.session_state.day_form = app.select_day(cell.date)
        st.rerun()


def _render_journal_page(app):
    """Renders the month calendar, the selected day's entry or form, and pattern analysis."""
    today = datetime.date.today()
    if 'selected_date' not in st.session_state:
        st.session_state.selected_date = today.isoformat()
    selected_date = st.session_state.selected_date

    st.markdown("## Pain Journal")
    st.caption(today.strftime("%B %Y"))

    header_cols = st.columns(7)
    for col, name in zip(header_cols, journal.WEEKDAY_HEADERS):
        col.markdown(f"**{name}**")
    cells = journal.month_grid(today.year, today.month, app.entries)
    for week_start in range(0, len(cells), 7):
        cols = st.columns(7)
        for col, cell in zip(cols, cells[week_start:week_start + 7]):
            with col:
                _render_day_cell(app, cell, selected_date)
    st.caption("❗ Crisis · ✅ Meds taken · 🟢 Zero pain · 🔵 Mild · 🟠 Moderate · 🔴 Severe")

    st.divider()
    form_state = st.session_state.get('day_form')
    if form_state is None or form_state.date != selected_date:
        form_state = app.select_day(selected_date)
        st.session_state.day_form = form_state
    selected_entry = journal.entry_for_date(app.entries, selected_date)

    st.markdown(f"#### {selected_date}")
    if selected_entry and not form_state.show_form:
        badge = journal.detail_badge(selected_entry.pain_level)
        render = {"high": st.error, "zero": st.success}.get(badge, st.info)
        render(f"Pain Level: {selected_entry.pain_level}")
        tags = [selected_entry.activity_context.value]
        if selected_entry.is_crisis:
            tags.insert(0, "Crisis")
        if selected_entry.meds_taken:
            tags.insert(0, "Meds Taken")
        st.caption(" · ".join(tags))
        st.write(selected_entry.notes)
        if st.button("Edit entry"):
            form_state.show_form = True
            st.rerun()
    elif form_state.show_form:
        with st.form("journal_entry_form"):
            pain = st.slider("Pain Intensity (0-10)", 0, 10, form_state.pain_level)
            context = st.radio("Context", ENTRY_CONTEXTS, horizontal=True,
                               index=ENTRY_CONTEXTS.index(form_state.activity_context),
                               format_func=lambda ctx: ctx.value)
            is_crisis = st.checkbox("Did you experience a crisis?", value=form_state.is_crisis)
            meds_taken = st.checkbox("Meds taken as prescribed?", value=form_state.meds_taken)
            notes = st.text_area("Notes", value=form_state.notes, placeholder="Describe triggers, feelings...")
            submitted = st.form_submit_button("Save Entry", use_container_width=True)
        if submitted:
            form_state.pain_level = pain
            form_state.activity_context = context
            form_state.is_crisis = is_crisis
            form_state.meds_taken = meds_taken
            form_state.notes = notes
            _warn_if_unsaved(_run(app.save_entry(form_state.to_entry())))
            st.session_state.day_form = app.select_day(selected_date)
            st.rerun()
    else:
        if st.button("+ Log symptoms", use_container_width=True):
            form_state.show_form = True
            st.rerun()

    if app.entries:
        st.markdown("#### Pain Trend")
        st.line_chart(journal.entries_frame(app.entries)['pain_level'])

    st.markdown("#### Pattern Recognition")
    if st.button("Analyze patterns"):
        with st.spinner("Analyzing your journal..."):
            _run(app.run_analysis())
    st.markdown(app.analysis or "Gemini analyzes your logs to find hidden triggers between your "
                                "pain levels, weather, and activities.")


def _render_immersive_page(app):
    """Renders the breathing technique picker, the background and the scene generator."""
    st.markdown("## Breathe")
    if app.scene.background:
        st.image(app.scene.background, use_container_width=True)

    labels = {t.id: f"{t.label} ({t.description})" for t in TECHNIQUES}
    technique_id = st.radio("Technique", list(labels), format_func=labels.get, horizontal=True)
    technique = get_technique(technique_id)
    st.caption(" → ".join(f"{phase} {seconds}s" for phase, seconds in technique.phases))

    st.markdown("#### Scenes")
    scene_cols = st.columns(len(SCENES))
    chosen_prompt = None
    for col, scene in zip(scene_cols, SCENES):
        with col:
            st.caption(scene.description)
            if st.button(scene.name, key=f"scene_{scene.id}", use_container_width=True):
                chosen_prompt = scene.prompt

    with st.form("scene_form", clear_on_submit=False):
        prompt = st.text_input("Describe a calm place", value=app.scene.prompt,
                               placeholder="e.g., a quiet snowy cabin")
        submitted = st.form_submit_button("Generate")
    if submitted:
        chosen_prompt = prompt
    if chosen_prompt:
        with st.spinner("Creating your space..."):
            image = _run(app.generate_scene(chosen_prompt))
        if not image:
            st.warning("Could not create a new scene right now.")
        else:
            st.rerun()


def _render_profile_page(app):
    """Renders the patient profile: condition, care team details, regimen and logout."""
    user = app.user
    st.markdown(f"## {initials(user.name)} · {user.name}")
    st.caption(user.email)

    codes = [code for code, _ in SICKLE_CELL_TYPES]
    names = dict(SICKLE_CELL_TYPES)
    current = app.sickle_cell_type if app.sickle_cell_type in codes else codes[0]
    chosen = st.selectbox("Condition", codes, index=codes.index(current), format_func=names.get)
    if chosen != app.sickle_cell_type:
        _warn_if_unsaved(_run(app.update_condition_type(chosen)))
        st.rerun()

    st.markdown("#### Patient Information")
    info = app.patient_info
    with st.form("patient_info_form"):
        doctor_name = st.text_input("Hematologist", value=info.doctor_name)
        contact_name = st.text_input("Emergency Contact", value=info.emergency_contact_name)
        contact_phone = st.text_input("Emergency Phone", value=info.emergency_contact_phone)
        blood_options = [''] + BLOOD_TYPES
        blood_type = st.selectbox(
            "Blood Type", blood_options,
            index=blood_options.index(info.blood_type) if info.blood_type in blood_options else 0,
        )
        if st.form_submit_button("Save Information"):
            _warn_if_unsaved(_run(app.update_patient_info(PatientInfo(
                doctor_name=doctor_name,
                emergency_contact_name=contact_name,
                emergency_contact_phone=contact_phone,
                blood_type=blood_type,
            ))))
            st.success("Information saved.")

    st.markdown("#### Medication Regimen")
    for med in app.medications:
        col1, col2 = st.columns([4, 1])
        col1.write(f"**{med.name}** · {med.dosage} • {med.frequency}")
        if col2.button("Remove", key=f"remove_med_{med.id}"):
            _warn_if_unsaved(_run(app.remove_medication(med.id)))
            st.rerun()

    with st.form("add_medication_form", clear_on_submit=True):
        name = st.text_input("Medication Name")
        dosage = st.text_input("Dosage", placeholder="e.g., 500mg")
        frequency = st.text_input("Frequency", placeholder="Daily")
        if st.form_submit_button("Add Medication"):
            try:
                medication = new_medication(name, dosage, frequency)
            except ValueError as e:
                st.error(str(e))
            else:
                _warn_if_unsaved(_run(app.add_medication(medication)))
                st.rerun()

    st.divider()
    if st.button("Log Out", use_container_width=True):
        _run(app.auth.logout())
        st.session_state.pop('day_form', None)
        st.session_state.pop('selected_date', None)
        st.rerun()
