"""
Unit tests for the BreatheThrough application.

These tests focus on verifying individual functions and classes in isolation:
the data store and its merge-on-read, the regimen and journal transforms, the triage
status header parser, the Gemini client wrappers and the key management helpers.
"""
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet
from google.api_core import exceptions as google_exceptions

from breathe import encryption as encryption_module
from breathe import gemini as gemini_module
from breathe import journal, regimen, triage
from breathe.errors import (
    CapabilityUnavailable,
    DuplicateUser,
    InvalidCredentials,
    PersistenceFailure,
    ProtocolParseFailure,
)
from breathe.immersive import SceneState, breathing_cycle, get_technique
from breathe.models import ActivityContext, Coordinates, GroundingReference, JournalEntry, UserData
from breathe.state import initials
from breathe.storage import (
    SESSION_KEY,
    USERS_KEY,
    EncryptedFileBackend,
    LocalDataStore,
    MemoryBackend,
    data_key,
    default_user_document,
    merge_with_defaults,
    session_key,
)
from conftest import PASSWORD, FakeAI, make_entry, make_med, run


# Local data store

def test_register_creates_user_document_and_session(store):
    user = run(store.register("amara@example.com", PASSWORD, "Amara"))
    assert user.email == "amara@example.com"
    assert user.name == "Amara"
    assert run(store.get_current_user()) == user
    assert store.backend.get(data_key(user.id)) == default_user_document()


def test_register_never_stores_plaintext_password(store):
    run(store.register("amara@example.com", PASSWORD, "Amara"))
    rows = store.backend.get(USERS_KEY)
    assert len(rows) == 1
    assert "password" not in rows[0]
    assert PASSWORD not in rows[0].values()
    assert "password_hash" not in run(store.get_current_user()).to_dict()


def test_register_duplicate_email_rejected_and_first_account_still_works(store):
    run(store.register("amara@example.com", PASSWORD, "Amara"))
    with pytest.raises(DuplicateUser):
        run(store.register("amara@example.com", "Other1!pass", "Impostor"))
    assert len(store.backend.get(USERS_KEY)) == 1
    user = run(store.login("amara@example.com", PASSWORD))
    assert user.name == "Amara"


def test_login_wrong_password_raises(store):
    run(store.register("amara@example.com", PASSWORD, "Amara"))
    run(store.logout())
    with pytest.raises(InvalidCredentials):
        run(store.login("amara@example.com", "wrong"))
    assert run(store.get_current_user()) is None


def test_login_email_is_case_sensitive(store):
    run(store.register("amara@example.com", PASSWORD, "Amara"))
    with pytest.raises(InvalidCredentials):
        run(store.login("Amara@example.com", PASSWORD))


def test_login_unknown_email_raises(store):
    with pytest.raises(InvalidCredentials):
        run(store.login("nobody@example.com", PASSWORD))


def test_logout_is_idempotent(store):
    run(store.register("amara@example.com", PASSWORD, "Amara"))
    run(store.logout())
    run(store.logout())
    assert store.backend.get(SESSION_KEY) is None
    assert run(store.get_current_user()) is None


def test_scoped_stores_keep_separate_session_keys(backend):
    shared = LocalDataStore(backend)
    first = shared.for_session("browser-a")
    second = shared.for_session("browser-b")
    user = run(first.register("amara@example.com", PASSWORD, "Amara"))

    assert first.session_key == session_key("browser-a") == "breathethrough_session_browser-a"
    assert backend.get(SESSION_KEY) is None
    assert run(first.get_current_user()) == user
    assert run(second.get_current_user()) is None
    assert run(second.login("amara@example.com", PASSWORD)) == user
    with pytest.raises(ValueError):
        shared.for_session("")


def test_get_user_data_for_unknown_user_returns_defaults(store):
    data = run(store.get_user_data("missing"))
    assert data == UserData()
    assert data.sickle_cell_type == "SS"
    assert data.patient_info.blood_type == ""


def test_get_user_data_back_fills_legacy_document_without_losing_fields(store):
    store.backend.set(data_key("u1"), {
        "medications": [{"id": "m1", "name": "Folic acid", "dosage": "1mg", "frequency": "Daily", "taken_today": True}],
        "patient_info": {"doctor_name": "Dr. Mensah"},
        "legacy_flag": True,
    })
    document = run(store.get_user_document("u1"))
    assert document["legacy_flag"] is True
    assert document["entries"] == []
    assert document["sickle_cell_type"] == "SS"
    assert document["patient_info"] == {
        "doctor_name": "Dr. Mensah",
        "emergency_contact_name": "",
        "emergency_contact_phone": "",
        "blood_type": "",
    }

    data = run(store.get_user_data("u1"))
    assert data.medications[0].name == "Folic acid"
    assert data.medications[0].taken_today is True
    assert data.patient_info.doctor_name == "Dr. Mensah"


def test_get_user_data_skips_malformed_records_and_keeps_the_rest(store):
    store.backend.set(data_key("u2"), {
        "medications": [
            {"id": "m1", "name": "Hydroxyurea", "dosage": "500mg", "frequency": "Daily"},
            "not-a-medication",
        ],
        "entries": [
            {"id": "e1", "pain_level": 6, "notes": "legacy entry without a date"},
            {"id": "e2", "date": "2024-03-01", "pain_level": 4},
            {"id": "e3", "date": "yesterday", "pain_level": 2},
            {"id": "e4", "date": "2024-03-02", "pain_level": "severe"},
        ],
        "sickle_cell_type": "SC",
        "patient_info": {"doctor_name": "Dr. Mensah"},
    })
    data = run(store.get_user_data("u2"))
    assert [m.id for m in data.medications] == ["m1"]
    assert [e.id for e in data.entries] == ["e2"]
    assert data.sickle_cell_type == "SC"
    assert data.patient_info.doctor_name == "Dr. Mensah"


def test_saving_after_loading_malformed_document_keeps_valid_data(store):
    user = run(store.register("amara@example.com", PASSWORD, "Amara"))
    store.backend.set(data_key(user.id), {
        "medications": [{"id": "m1", "name": "Folic acid"}],
        "entries": [{"pain_level": 3}, {"id": "e1", "date": "2024-03-01", "pain_level": 5}],
        "sickle_cell_type": "SC",
        "patient_info": {"doctor_name": "Dr. Mensah"},
    })
    data = run(store.get_user_data(user.id))
    data.entries.append(make_entry("2024-03-02"))
    run(store.save_user_data(user.id, data))

    stored = store.backend.get(data_key(user.id))
    assert [m["name"] for m in stored["medications"]] == ["Folic acid"]
    assert [e["date"] for e in stored["entries"]] == ["2024-03-01", "2024-03-02"]
    assert stored["sickle_cell_type"] == "SC"
    assert stored["patient_info"]["doctor_name"] == "Dr. Mensah"


def test_get_user_data_with_wrongly_shaped_fields_uses_defaults_for_them(store):
    store.backend.set(data_key("u3"), {"medications": "garbage", "entries": None, "sickle_cell_type": 7})
    assert run(store.get_user_data("u3")) == UserData()
    store.backend.set(data_key("u4"), "garbage")
    assert run(store.get_user_data("u4")) == UserData()


def test_merge_with_defaults_is_total_and_non_destructive():
    defaults = {"a": 1, "nested": {"x": "", "y": ""}, "list": []}
    stored = {"a": 5, "nested": {"x": "kept", "extra": 1}, "new": "value"}
    merged = merge_with_defaults(defaults, stored)
    assert merged == {"a": 5, "nested": {"x": "kept", "y": "", "extra": 1}, "list": [], "new": "value"}
    assert defaults == {"a": 1, "nested": {"x": "", "y": ""}, "list": []}


def test_merge_with_defaults_replaces_non_mapping_where_mapping_expected():
    merged = merge_with_defaults(default_user_document(), {"patient_info": None})
    assert merged["patient_info"]["doctor_name"] == ""


def test_save_user_data_overwrites_whole_document(store):
    user = run(store.register("amara@example.com", PASSWORD, "Amara"))
    data = UserData(medications=[make_med()], sickle_cell_type="SC")
    run(store.save_user_data(user.id, data))
    assert run(store.get_user_data(user.id)) == data
    run(store.save_user_data(user.id, UserData()))
    assert run(store.get_user_data(user.id)).medications == []


def test_encrypted_backend_persists_across_instances(data_file, encryptor):
    first = EncryptedFileBackend(data_file, encryptor)
    first.set("k", {"value": 1})
    second = EncryptedFileBackend(data_file, encryptor)
    assert second.get("k") == {"value": 1}
    with open(data_file) as f:
        assert "value" not in f.read()


def test_encrypted_backend_corrupt_file_starts_fresh(tmp_path, encryptor):
    data_file = tmp_path / "bad.json"
    data_file.write_text("invalid-data", encoding="utf-8")
    backend = EncryptedFileBackend(str(data_file), encryptor)
    assert backend.get(USERS_KEY) is None


def test_encrypted_backend_wrong_key_starts_fresh(data_file, encryptor):
    EncryptedFileBackend(data_file, encryptor).set("k", 1)
    other = EncryptedFileBackend(data_file, Fernet(Fernet.generate_key()))
    assert other.get("k") is None


def test_encrypted_backend_write_failure_raises_persistence_failure(tmp_path, encryptor):
    backend = EncryptedFileBackend(str(tmp_path / "missing-dir" / "records.json"), encryptor)
    with pytest.raises(PersistenceFailure):
        backend.set("k", 1)
    assert backend.get("k") is None


def test_memory_backend_returns_copies():
    backend = MemoryBackend()
    value = {"items": [1]}
    backend.set("k", value)
    value["items"].append(2)
    assert backend.get("k") == {"items": [1]}
    backend.remove("k")
    backend.remove("k")
    assert backend.get("k") is None


def test_store_latency_is_awaited(monkeypatch):
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr("breathe.storage.asyncio.sleep", fake_sleep)
    store = LocalDataStore(MemoryBackend(), latency=0.5)
    run(store.register("a@example.com", PASSWORD, "A"))
    run(store.login("a@example.com", PASSWORD))
    assert slept == [0.5, 0.5]


# Encryption key management

def test_load_or_create_encryptor_generates_then_reuses_key(tmp_path):
    key_file = str(tmp_path / "secret.key")
    first = encryption_module.load_or_create_encryptor(key_file)
    token = first.encrypt(b"journal")
    second = encryption_module.load_or_create_encryptor(key_file)
    assert second.decrypt(token) == b"journal"


def test_write_and_load_key(tmp_path):
    key_file = str(tmp_path / "k.key")
    key = encryption_module.write_key(key_file)
    assert encryption_module.load_key(key_file) == key


# Regimen

def test_add_medication_appends_without_mutating_input():
    meds = [make_med("Folic acid")]
    updated = regimen.add_medication(meds, make_med("Hydroxyurea"))
    assert [m.name for m in updated] == ["Folic acid", "Hydroxyurea"]
    assert len(meds) == 1


def test_remove_medication_unknown_id_is_noop():
    meds = [make_med("Folic acid"), make_med("Hydroxyurea")]
    assert regimen.remove_medication(meds, "nope") == meds
    assert regimen.remove_medication(meds, meds[0].id) == [meds[1]]


def test_toggle_taken_flips_only_matching_medication():
    meds = [make_med("Folic acid"), make_med("Hydroxyurea")]
    toggled = regimen.toggle_taken(meds, meds[1].id)
    assert [m.taken_today for m in toggled] == [False, True]
    assert regimen.toggle_taken(toggled, meds[1].id)[1].taken_today is False
    assert meds[1].taken_today is False


def test_new_medication_requires_name_and_defaults_frequency():
    with pytest.raises(ValueError):
        regimen.new_medication("   ")
    med = regimen.new_medication("Penicillin", "250mg")
    assert med.frequency == "Daily"
    assert med.taken_today is False
    assert med.id != regimen.new_medication("Penicillin").id


# Journal engine

def test_upsert_entry_is_idempotent():
    entry = make_entry("2024-03-01", pain=4)
    once = journal.upsert_entry([], entry)
    twice = journal.upsert_entry(once, entry)
    assert twice == [entry]


def test_upsert_entry_replaces_in_place_and_keeps_order():
    entries = [make_entry("2024-03-01"), make_entry("2024-03-02"), make_entry("2024-03-03")]
    replacement = make_entry("2024-03-02", pain=9)
    updated = journal.upsert_entry(entries, replacement)
    assert [e.date for e in updated] == ["2024-03-01", "2024-03-02", "2024-03-03"]
    assert updated[1] is replacement
    appended = journal.upsert_entry(updated, make_entry("2024-02-28"))
    assert appended[-1].date == "2024-02-28"


def test_entry_for_date_exact_match():
    entries = [make_entry("2024-03-01"), make_entry("2024-03-10")]
    assert journal.entry_for_date(entries, "2024-03-10") is entries[1]
    assert journal.entry_for_date(entries, "2024-03-1") is None


def test_compute_adherence():
    assert journal.compute_adherence([]) == 0
    assert journal.compute_adherence([make_entry("2024-03-01", meds=True), make_entry("2024-03-02")]) == 50
    three = [make_entry("2024-03-01", meds=True), make_entry("2024-03-02", meds=True), make_entry("2024-03-03")]
    assert journal.compute_adherence(three) == 67


def test_adherence_band():
    assert journal.adherence_band(81) == "good"
    assert journal.adherence_band(80) == "fair"
    assert journal.adherence_band(50) == "poor"


def test_crisis_free_streak_without_crisis_is_not_applicable():
    assert journal.compute_crisis_free_streak([], date(2024, 3, 15)) == journal.NOT_APPLICABLE
    assert journal.compute_crisis_free_streak([make_entry("2024-03-01")], date(2024, 3, 15)) == "N/A"


def test_crisis_free_streak_counts_from_latest_crisis():
    entries = [
        make_entry("2024-03-10", crisis=True),
        make_entry("2024-03-01", crisis=True),
        make_entry("2024-03-12"),
    ]
    assert journal.compute_crisis_free_streak(entries, date(2024, 3, 15)) == 5
    assert journal.compute_crisis_free_streak(entries, datetime(2024, 3, 15, 12, 0)) == 5
    aware = datetime(2024, 3, 15, 23, 0, tzinfo=timezone.utc)
    assert journal.compute_crisis_free_streak(entries, aware) == 5
    assert journal.compute_crisis_free_streak(entries, date(2024, 3, 10)) == 0


def test_most_recent_entry():
    assert journal.most_recent_entry([]) is None
    entries = [make_entry("2024-03-02"), make_entry("2024-11-01"), make_entry("2024-03-20")]
    assert journal.most_recent_entry(entries).date == "2024-11-01"


@pytest.mark.parametrize("pain, expected", [
    (10, "severe"), (8, "severe"), (7, "moderate"), (5, "moderate"),
    (4, "mild"), (2, "mild"), (1, "mild"), (0, "wellness"),
])
def test_pain_indicator_boundaries(pain, expected):
    assert journal.pain_indicator(pain) == expected


def test_streak_label_shows_sentinel_without_unit():
    assert journal.streak_label(journal.NOT_APPLICABLE) == "N/A"
    assert journal.streak_label(0) == "0 days"
    assert journal.streak_label(1) == "1 day"
    assert journal.streak_label(12) == "12 days"


def test_detail_badge_and_health_status():
    assert journal.detail_badge(7) == "high"
    assert journal.detail_badge(6) == "normal"
    assert journal.detail_badge(0) == "zero"
    assert journal.health_status([]) == "STABLE"
    entries = [make_entry("2024-03-01", pain=2), make_entry("2024-03-05", pain=7)]
    assert journal.health_status(entries) == "MONITOR CLOSELY"
    assert journal.health_status(entries + [make_entry("2024-03-06", pain=6)]) == "STABLE"


def test_calendar_days_pads_to_sunday_start():
    # 1 March 2024 was a Friday.
    days = journal.calendar_days(2024, 3)
    assert days[:5] == [None] * 5
    assert days[5] == 1
    assert days[-1] == 31
    assert journal.first_weekday_offset(2024, 9) == 0
    assert journal.days_in_month(2024, 2) == 29
    assert journal.days_in_current_month(date(2023, 2, 10)) == 28
    assert journal.current_month_days(date(2024, 9, 20))[0] == 1


def test_month_grid_pairs_entries_with_days():
    entries = [make_entry("2024-03-05", pain=9, crisis=True), make_entry("2024-03-06", pain=0, meds=True)]
    grid = journal.month_grid(2024, 3, entries)
    assert grid[0] is None
    fifth = grid[5 + 4]
    assert fifth.date == "2024-03-05"
    assert fifth.indicator == "severe"
    assert fifth.is_crisis is True
    sixth = grid[5 + 5]
    assert sixth.indicator == "wellness"
    assert sixth.meds_taken is True
    assert grid[5].indicator is None


def test_date_key_pads():
    assert journal.date_key(2024, 3, 7) == "2024-03-07"


def test_select_day_prefills_existing_entry():
    entries = [make_entry("2024-03-05", pain=6, notes="Cold weather", activity_context=ActivityContext.WORK, meds=True)]
    form = journal.select_day(entries, "2024-03-05")
    assert form.show_form is False
    assert form.pain_level == 6
    assert form.notes == "Cold weather"
    assert form.activity_context == ActivityContext.WORK
    assert form.meds_taken is True


def test_select_day_defaults_for_new_day():
    form = journal.select_day([], "2024-03-07")
    assert form.show_form is True
    assert (form.pain_level, form.notes, form.activity_context, form.is_crisis, form.meds_taken) == (
        0, "", ActivityContext.HOME, False, False)
    entry = form.to_entry()
    assert entry.date == "2024-03-07"
    assert entry.triggers == []


def test_analysis_lines_format():
    entries = [make_entry("2024-03-01", pain=5, notes="Long shift", activity_context=ActivityContext.WORK)]
    assert journal.analysis_lines(entries) == (
        "Date: 2024-03-01 (Friday), Context: Work, Pain Level: 5, Notes: Long shift"
    )


def test_entries_frame_is_sorted_by_date():
    entries = [make_entry("2024-03-05", pain=8), make_entry("2024-03-01", pain=2)]
    frame = journal.entries_frame(entries)
    assert list(frame["pain_level"]) == [2, 8]
    assert str(frame.index[0].date()) == "2024-03-01"
    assert journal.entries_frame([]).empty


def test_journal_entry_from_dict_tolerates_missing_and_unknown_fields():
    entry = JournalEntry.from_dict({"date": "2024-03-01", "pain_level": "4", "activity_context": "Commute"})
    assert entry.pain_level == 4
    assert entry.activity_context == ActivityContext.HOME
    assert entry.is_crisis is False
    assert entry.id


# Triage protocol parser

def test_parse_status_header_example():
    text = 'STATUS: {"severity": 7, "requiresEmergency": true}\nTake ibuprofen.'
    result = triage.parse_triage_response(text)
    assert result.severity == 7
    assert result.requires_emergency is True
    assert result.advice == "Take ibuprofen."
    assert "STATUS" not in result.advice


def test_parse_without_marker_returns_text_unchanged():
    text = "  Drink water and rest.\n"
    result = triage.parse_triage_response(text)
    assert (result.severity, result.requires_emergency, result.advice) == (0, False, text)


def test_parse_marker_after_leading_whitespace():
    result = triage.parse_triage_response('\n  STATUS: {"severity": 2, "requiresEmergency": false}\n\nRest today.')
    assert result.severity == 2
    assert result.advice == "Rest today."


def test_parse_malformed_json_degrades_to_raw_text():
    text = "STATUS: {severity: 7}\nAdvice here."
    result = triage.parse_triage_response(text)
    assert (result.severity, result.requires_emergency, result.advice) == (0, False, text)


def test_parse_unclosed_object_degrades_to_raw_text():
    text = 'STATUS: {"severity": 9, "requiresEmergency": true\nGo to the ER.'
    result = triage.parse_triage_response(text)
    assert result.requires_emergency is False
    assert result.advice == text


def test_parse_nested_multiline_object():
    text = 'STATUS: {\n  "severity": 9,\n  "requiresEmergency": true,\n  "meta": {"source": "x"}\n}\nGo now.'
    result = triage.parse_triage_response(text)
    assert (result.severity, result.requires_emergency, result.advice) == (9, True, "Go now.")


def test_parse_brace_inside_string():
    text = 'STATUS: {"severity": 3, "note": "a } b", "requiresEmergency": false} Keep warm.'
    result = triage.parse_triage_response(text)
    assert result.severity == 3
    assert result.advice == "Keep warm."


@pytest.mark.parametrize("flag, expected", [
    ("true", True), ("1", True), ('"true"', True), ('"false"', False),
    ("false", False), ("0", False), ("null", False),
])
def test_parse_emergency_flag_follows_truthiness(flag, expected):
    result = triage.parse_triage_response(f'STATUS: {{"severity": 5, "requiresEmergency": {flag}}}\nRest.')
    assert result.requires_emergency is expected
    assert result.advice == "Rest."


def test_parse_missing_fields_default():
    result = triage.parse_triage_response("STATUS: {}\nHello.")
    assert (result.severity, result.requires_emergency, result.advice) == (0, False, "Hello.")


def test_parse_skips_marker_without_object():
    severity, emergency, _ = triage.parse_status_header('STATUS: pending\nSTATUS: {"severity": 4}\nok')
    assert severity == 4
    assert emergency is False


def test_parse_status_header_raises_on_non_object():
    with pytest.raises(ProtocolParseFailure):
        triage.parse_status_header('STATUS: {"severity": }')


def test_filter_grounding_references_drops_incomplete():
    chunks = [
        {"web": {"title": "Sickle Cell Center", "uri": "https://maps.example/1"}},
        {"web": {"title": "No link"}},
        {"maps": {"title": "City Hospital", "uri": "https://maps.example/2"}},
        None,
        "junk",
        SimpleNamespace(web=SimpleNamespace(title="Clinic", uri="https://maps.example/3")),
        {"web": {"title": "", "uri": "https://maps.example/4"}},
    ]
    assert triage.filter_grounding_references(chunks) == [
        GroundingReference("Sickle Cell Center", "https://maps.example/1"),
        GroundingReference("City Hospital", "https://maps.example/2"),
        GroundingReference("Clinic", "https://maps.example/3"),
    ]
    assert triage.filter_grounding_references(None) == []


def test_assess_substitutes_safety_message_when_capability_unavailable():
    ai = FakeAI(triage_replies=[CapabilityUnavailable("offline")])
    result = run(triage.assess(ai, "My chest hurts", []))
    assert result.advice == triage.UNAVAILABLE_ADVICE
    assert result.requires_emergency is False
    assert result.severity == 0


def test_conversation_history_excludes_new_message_and_ignores_blank_input():
    ai = FakeAI(triage_replies=['STATUS: {"severity": 4, "requiresEmergency": false}\nHydrate.'])
    conversation = triage.TriageConversation(ai)
    assert run(conversation.send("   ")) is None
    assert len(conversation.messages) == 1

    reply = run(conversation.send("My legs ache"))
    assert reply.text == "Hydrate."
    assert reply.is_urgent is False
    message, history, coordinates = ai.triage_calls[0]
    assert message == "My legs ache"
    assert history == [f"Doctor: {triage.GREETING}"]
    assert coordinates is None
    assert [m.role for m in conversation.messages] == ["model", "user", "model"]
    assert conversation.history_texts()[1] == "Patient: My legs ache"


def test_conversation_unexpected_error_uses_interruption_message():
    ai = FakeAI(triage_replies=[RuntimeError("socket closed")])
    conversation = triage.TriageConversation(ai)
    reply = run(conversation.send("Help"))
    assert reply.text == triage.INTERRUPTED_ADVICE
    assert reply.is_urgent is False
    assert conversation.is_loading is False


def test_conversation_urgent_reply_and_location():
    ai = FakeAI(triage_replies=['STATUS: {"severity": 9, "requiresEmergency": true}\nCall 911.'])
    conversation = triage.TriageConversation(ai)

    async def provider():
        return SimpleNamespace(latitude=6.5, longitude=3.4)

    coordinates = run(conversation.use_location(provider))
    run(conversation.send("Chest pain and fever"))
    assert ai.triage_calls[0][2] is coordinates
    assert conversation.is_urgent is True


def test_locate_denied_returns_none():
    async def denied():
        raise PermissionError("denied")

    assert run(triage.locate(denied)) is None
    assert run(triage.locate(None)) is None


def test_browser_position_provider_reads_coordinates():
    position = {"coords": {"latitude": 6.5244, "longitude": 3.3792, "accuracy": 20}, "timestamp": 1}
    coordinates = run(triage.locate(triage.browser_position_provider(position)))
    assert coordinates == Coordinates(latitude=6.5244, longitude=3.3792)


@pytest.mark.parametrize("position", [
    {"error": {"code": 1, "message": "User denied Geolocation"}},
    {"coords": {"latitude": 6.5}},
    "unavailable",
])
def test_browser_position_provider_failure_means_no_location(position):
    assert run(triage.locate(triage.browser_position_provider(position))) is None


def test_conversation_location_denial_then_grant_sends_coordinates():
    ai = FakeAI(triage_replies=["Rest and hydrate."])
    conversation = triage.TriageConversation(ai)
    assert conversation.location_requested is False

    run(conversation.use_location(triage.browser_position_provider({"error": {"code": 1}})))
    assert conversation.location_requested is True
    assert conversation.coordinates is None

    position = {"coords": {"latitude": 6.5, "longitude": 3.4}}
    run(conversation.use_location(triage.browser_position_provider(position)))
    run(conversation.send("Where is the nearest hospital?"))
    assert ai.triage_calls[0][2] == Coordinates(latitude=6.5, longitude=3.4)


def test_assess_without_capability_uses_safety_message():
    result = run(triage.assess(None, "My chest hurts", []))
    assert result.advice == triage.UNAVAILABLE_ADVICE
    assert result.requires_emergency is False


# Gemini client

class FakeModel:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def generate_content_async(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(model):
    names = []

    def factory(name):
        names.append(name)
        return model

    return gemini_module.GeminiClient(model_factory=factory), names


def test_gemini_assess_crisis_returns_text_and_grounding():
    chunk = SimpleNamespace(web=SimpleNamespace(title="ER", uri="https://maps.example/er"))
    response = SimpleNamespace(
        text='STATUS: {"severity": 8, "requiresEmergency": true}\nGo.',
        candidates=[SimpleNamespace(grounding_metadata=SimpleNamespace(grounding_chunks=[chunk]))],
    )
    model = FakeModel([response])
    client, names = _client(model)
    result = run(client.assess_crisis("pain", ["Doctor: hi"], SimpleNamespace(latitude=1.0, longitude=2.0)))
    assert result.text.startswith("STATUS")
    assert result.grounding_chunks == [chunk]
    assert names == [client.settings.triage_model]
    prompt, kwargs = model.calls[0]
    assert "Doctor: hi" in prompt
    assert "latitude 1.0" in prompt
    assert kwargs == {"tools": gemini_module.SEARCH_TOOL}


def test_gemini_assess_crisis_retries_without_grounding_when_rejected():
    model = FakeModel([google_exceptions.InvalidArgument("tool unsupported"), SimpleNamespace(text="", candidates=[])])
    client, _ = _client(model)
    result = run(client.assess_crisis("pain", []))
    assert result.text == gemini_module.EMPTY_TRIAGE_TEXT
    assert model.calls[1][1] == {}


def test_gemini_assess_crisis_failure_raises_capability_unavailable():
    client, _ = _client(FakeModel([RuntimeError("quota")]))
    with pytest.raises(CapabilityUnavailable):
        run(client.assess_crisis("pain", []))


def test_gemini_missing_api_key_is_capability_unavailable(monkeypatch):
    monkeypatch.setattr(gemini_module, "get_api_key", lambda: None)
    client = gemini_module.GeminiClient()
    with pytest.raises(CapabilityUnavailable):
        run(client.assess_crisis("pain", []))
    assert run(client.generate_scene("beach")) is None


def test_gemini_analyze_patterns():
    model = FakeModel([SimpleNamespace(text="**Work days** hurt more.")])
    client, names = _client(model)
    assert run(client.analyze_patterns([])) == gemini_module.NO_ENTRIES_TEXT
    assert names == []
    summary = run(client.analyze_patterns([make_entry("2024-03-01", notes="shift")]))
    assert summary == "**Work days** hurt more."
    assert "Date: 2024-03-01 (Friday)" in model.calls[0][0]


def test_gemini_analyze_patterns_errors_and_empty_text():
    client, _ = _client(FakeModel([RuntimeError("down"), SimpleNamespace(text="")]))
    entries = [make_entry("2024-03-01")]
    assert run(client.analyze_patterns(entries)) == gemini_module.ANALYSIS_UNAVAILABLE_TEXT
    assert run(client.analyze_patterns(entries)) == gemini_module.NO_PATTERNS_TEXT


def test_gemini_generate_scene_returns_data_uri():
    part = SimpleNamespace(inline_data=SimpleNamespace(data=b"\x89PNG", mime_type="image/png"))
    text_part = SimpleNamespace(inline_data=None)
    response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[text_part, part]))])
    client, _ = _client(FakeModel([response, SimpleNamespace(candidates=[])]))
    assert run(client.generate_scene("forest")) == "data:image/png;base64,iVBORw=="
    assert run(client.generate_scene("forest")) is None


# Immersive

def test_breathing_techniques():
    assert get_technique("478").cycle_seconds == 19
    assert get_technique("unknown").id == "coherent"
    assert breathing_cycle("box") == [("Inhale", 4), ("Hold", 4), ("Exhale", 4), ("Hold", 4)]


def test_scene_state_without_generator_returns_none():
    scene = SceneState(None)
    assert run(scene.generate("quiet lake")) is None
    assert scene.background is None
    assert scene.prompt == "quiet lake"
    assert scene.is_generating is False


def test_scene_state_keeps_background_when_generation_fails():
    ai = FakeAI(scene="data:image/png;base64,AAAA")
    scene = SceneState(ai)
    assert run(scene.generate("  ")) is None
    assert ai.scene_calls == []
    run(scene.generate("quiet lake"))
    assert scene.background == "data:image/png;base64,AAAA"
    assert scene.prompt == ""

    ai.scene = None
    assert run(scene.generate("stormy sea")) is None
    assert scene.background == "data:image/png;base64,AAAA"
    assert scene.prompt == "stormy sea"
    assert scene.is_generating is False


def test_initials():
    assert initials("Amara Okafor") == "AO"
    assert initials("kwame nkrumah mensah") == "KN"
    assert initials("Zed") == "Z"
