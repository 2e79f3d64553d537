import json
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app import sb_available
from config import Config
from repositories.family_repo import FamilyRepository
from repositories.notification_repo import NotificationRepository
from repositories.pin_repo import PinRepository
from repositories.user_repo import UserRepository
from services.chat_service import ChatService, ChatUnavailable, classify_category, local_fallback
from services.contact_service import ContactService, normalize_text
from services.earthquake_service import EarthquakeFeed, MemorySeenSet, RedisSeenSet, earthquake_payload
from services.family_service import FamilyService, reciprocal_relation
from services.geocoding_service import (
    GeocodingError,
    GeocodingService,
    build_address_string,
    format_address_components,
)
from services.llm_service import build_gemini_contents
from services.notification_service import NotificationService
from services.pin_service import PinService, aggregate_supplies, help_request_status
from services.realtime_service import RealtimeNotConfigured, RealtimeService, alert_payload
from services.therapy_service import TherapyService, build_context
from services.therapy_service import normalize as normalize_therapy
from services.triage_service import (
    TriageService,
    casualty_counts,
    heuristic_analyze,
    parse_model_suggestion,
    to_canonical_allowed,
)
from utils.error_handling import ApiError
from utils.validation import coordinates_error

NOW = datetime(2025, 3, 28, 7, 0, tzinfo=timezone.utc)


# ---- CONFIG ----
def test_safety_window_seconds_wins(monkeypatch):
    monkeypatch.setattr(Config, "SAFETY_WINDOW_SECONDS", "90")
    monkeypatch.setattr(Config, "SAFETY_WINDOW_MINUTES", "10")
    assert Config.safety_window_seconds() == 90


def test_safety_window_reads_leading_integer(monkeypatch):
    monkeypatch.setattr(Config, "SAFETY_WINDOW_SECONDS", "90s")
    assert Config.safety_window_seconds() == 90

    monkeypatch.setattr(Config, "SAFETY_WINDOW_SECONDS", "1.5")
    assert Config.safety_window_seconds() == 1

    monkeypatch.setattr(Config, "SAFETY_WINDOW_SECONDS", None)
    monkeypatch.setattr(Config, "SAFETY_WINDOW_MINUTES", " 2min")
    assert Config.safety_window_seconds() == 120


def test_safety_window_invalid_seconds_is_zero(monkeypatch):
    monkeypatch.setattr(Config, "SAFETY_WINDOW_SECONDS", "soon")
    assert Config.safety_window_seconds() == 0


def test_safety_window_minutes_default(monkeypatch):
    monkeypatch.setattr(Config, "SAFETY_WINDOW_SECONDS", None)
    monkeypatch.setattr(Config, "SAFETY_WINDOW_MINUTES", None)
    assert Config.safety_window_seconds() == 300

    monkeypatch.setattr(Config, "SAFETY_WINDOW_MINUTES", "abc")
    assert Config.safety_window_seconds() == 300

    monkeypatch.setattr(Config, "SAFETY_WINDOW_MINUTES", "2")
    assert Config.safety_window_seconds() == 120


def test_sb_available(monkeypatch):
    import app as main_app

    monkeypatch.setattr(main_app, "supabase", object())
    assert sb_available() is True

    monkeypatch.setattr(main_app, "supabase", None)
    assert sb_available() is False


# ---- VALIDATION ----
def test_coordinates_error_messages():
    assert coordinates_error(16.8, 96.1) is None
    assert coordinates_error("16.8", 96.1) == "Coordinates must be numbers"
    assert coordinates_error(True, 96.1) == "Coordinates must be numbers"
    assert coordinates_error(float("nan"), 96.1) == "Coordinates cannot be NaN"
    assert "Latitude" in coordinates_error(91, 0)
    assert "Longitude" in coordinates_error(0, -181)


# ---- GEOCODING ----
def test_build_address_string_prefers_city_and_state():
    assert build_address_string({"town": "Pyin Oo Lwin", "state": "Mandalay Region"}) == "Pyin Oo Lwin, Mandalay Region"
    assert build_address_string({"suburb": "Hlaing"}) == "Hlaing"
    assert build_address_string({"province": "Shan"}) == "Shan"
    assert build_address_string({}) == "Unknown location"


def test_format_address_components_maps_types():
    components = format_address_components({"road": "Strand Road", "city": "Yangon", "postcode": "11182", "unused": "x"})
    assert [c["types"][0] for c in components] == ["route", "locality", "postal_code"]
    assert components[0]["long_name"] == "Strand Road"


class _Geolocator:
    def __init__(self, result=None, error=None):
        self.result, self.error = result, error

    def reverse(self, *args, **kwargs):
        if self.error:
            raise self.error
        return self.result


def test_geocoding_reverse_shapes_result():
    raw = {"lat": "21.97", "lon": "96.08", "osm_id": 42, "address": {"city": "Mandalay", "state": "Mandalay Region"}}
    service = GeocodingService("test-agent", geolocator=_Geolocator(SimpleNamespace(raw=raw)), min_delay_seconds=0)
    result = service.reverse(21.97, 96.08)
    assert result["primary_address"] == "Mandalay, Mandalay Region"
    assert result["results"][0]["geometry"]["location"] == {"lat": 21.97, "lng": 96.08}


def test_geocoding_errors_map_to_status():
    from geopy.exc import GeocoderServiceError, GeocoderTimedOut

    slow = GeocodingService("test-agent", geolocator=_Geolocator(error=GeocoderTimedOut("slow")), min_delay_seconds=0)
    with pytest.raises(GeocodingError) as exc:
        slow.reverse(21.97, 96.08)
    assert exc.value.status == 408

    broken = GeocodingService("test-agent", geolocator=_Geolocator(error=GeocoderServiceError("down")), min_delay_seconds=0)
    with pytest.raises(GeocodingError) as exc:
        broken.reverse(21.97, 96.08)
    assert exc.value.status == 502
    assert broken.region_for(21.97, 96.08) is None

    empty = GeocodingService("test-agent", geolocator=_Geolocator(None), min_delay_seconds=0)
    with pytest.raises(GeocodingError) as exc:
        empty.reverse(21.97, 96.08)
    assert exc.value.status == 400


def test_region_for_skips_invalid_coordinates():
    service = GeocodingService("test-agent", geolocator=_Geolocator(error=AssertionError("must not be called")), min_delay_seconds=0)
    assert service.region_for(float("nan"), 96.0) is None
    assert service.display_name_for(None, None) is None


# ---- TRIAGE ----
def test_canonical_mapping():
    allowed = ["Water Bottles", "First Aid Kit", "Blanket"]
    assert to_canonical_allowed("water bottles", allowed) == "Water Bottles"
    assert to_canonical_allowed("First Aid", allowed) == "First Aid Kit"
    assert to_canonical_allowed("Blankets", allowed) == "Blanket"
    assert to_canonical_allowed("Generator", allowed) is None
    assert to_canonical_allowed("Anything", None) == "Anything"


def test_casualty_counts_reads_neighbouring_numbers():
    assert casualty_counts("3 injured near the market") == (3, 0)
    assert casualty_counts("injured two people") == (2, 0)
    assert casualty_counts("one person dead") == (0, 1)
    assert casualty_counts("five dead and 4 hurt") == (4, 5)
    # a fatal word with no number still counts one
    assert casualty_counts("people dead") == (0, 1)


def test_heuristic_collapse_with_injuries():
    result = heuristic_analyze("Building collapsed, 3 injured")
    assert result["severity"] == pytest.approx(1.0)
    assert result["confidence"] == pytest.approx(0.85)
    assert result["categories"] == ["medical", "structural"]
    assert result["items"] == [
        {"name": "First Aid", "qty": 3},
        {"name": "Blankets", "qty": 3},
        {"name": "Medicine Box", "qty": 1},
        {"name": "Water Bottles", "qty": 18},
    ]


def test_heuristic_quiet_report_is_general():
    result = heuristic_analyze("Road is blocked by a fallen tree")
    assert result == {"severity": pytest.approx(0.3), "categories": ["general"], "items": [], "confidence": pytest.approx(0.2)}


def test_heuristic_fatality_and_fire():
    result = heuristic_analyze("Smoke everywhere, two dead")
    assert result["severity"] >= 0.9
    assert "fire" in result["categories"] and "critical" in result["categories"]


def test_heuristic_maps_and_merges_allowed_items():
    result = heuristic_analyze("5 injured, trapped", ["First Aid Kit", "Blanket", "Water"])
    names = {i["name"]: i["qty"] for i in result["items"]}
    assert names == {"First Aid Kit": 5, "Blanket": 5, "Water": 30}


def test_parse_model_suggestion_clamps_and_maps():
    text = 'Sure! {"severity": 1.7, "categories": ["a","b","c","d","e","f"], ' \
           '"items": [{"name": "water bottles", "qty": 0}, {"name": "", "qty": 3}, {"name": "Tent", "qty": 2}], ' \
           '"confidence": -1} done'
    result = parse_model_suggestion(text, ["Water Bottles"])
    assert result["severity"] == 1
    assert result["confidence"] == 0
    assert len(result["categories"]) == 5
    assert result["items"] == [{"name": "Water Bottles", "qty": 1}]


def test_parse_model_suggestion_defaults():
    result = parse_model_suggestion('{"items": []}', None)
    assert result == {"severity": 0.5, "categories": ["general"], "items": [], "confidence": 0.6}


class _FakeLLM:
    def __init__(self, text=None, error=None, configured=True):
        self.text, self.error, self.configured = text, error, configured
        self.calls = []

    def generate_text(self, contents, model=None, temperature=0.7, max_output_tokens=512):
        self.calls.append({"contents": contents, "model": model, "temperature": temperature})
        if self.error:
            raise self.error
        return self.text


def test_triage_falls_back_to_heuristic_on_bad_json():
    llm = _FakeLLM(text="not json at all")
    result = TriageService(llm, "gemini-1.5-flash").analyze("3 injured")
    assert result["items"][0] == {"name": "First Aid", "qty": 3}
    assert llm.calls


def test_triage_uses_model_answer():
    llm = _FakeLLM(text='{"severity": 0.4, "categories": ["flooding"], "items": [], "confidence": 0.7}')
    result = TriageService(llm, "gemini-1.5-flash").analyze("water rising", allowed=["Water"])
    assert result["categories"] == ["flooding"]
    assert "JSON only:" in llm.calls[0]["contents"][0]
    assert "- Water" in llm.calls[0]["contents"][0]


# ---- CHAT ----
def test_classify_category():
    assert classify_category("What to do in an EARTHQUAKE?") == "safety"
    assert classify_category("where is the nearest shelter") == "location"
    assert classify_category("first aid for a cut") == "medical"
    assert classify_category("please help") == "emergency"
    assert classify_category("ငလျင် ဖြစ်နေတယ်") == "safety"
    assert classify_category("hello") == "general"


def test_local_fallback_is_localised():
    en = local_fallback("en", "mental")
    assert en["category"] == "mental" and en["error"] is True and en["model"] == "local:fallback"
    assert "box breathing" in en["response"]
    my = local_fallback("my", "emergency")
    assert my["category"] == "general" and "199" in my["response"]


def test_chat_unconfigured_raises_503():
    with pytest.raises(ChatUnavailable) as exc:
        ChatService(_FakeLLM(configured=False), "gemini-2.5-flash").ask("hi")
    assert exc.value.status == 503


def test_chat_failure_raises_500():
    with pytest.raises(ChatUnavailable) as exc:
        ChatService(_FakeLLM(error=RuntimeError("boom")), "gemini-2.5-flash").ask("hi", "my")
    assert exc.value.status == 500
    assert exc.value.fallback["response"] == local_fallback("my", "emergency")["response"]


def test_chat_mental_uses_therapy_context_and_lower_temperature():
    class _Therapy:
        def context_for(self, message):
            return "THERAPY_REFERENCE DATA:\nPHASE: Stabilization"

    llm = _FakeLLM(text="Breathe with me.")
    result = ChatService(llm, "gemini-2.5-flash", _Therapy()).ask("I can't sleep", "en", "mental")
    assert result["category"] == "mental" and result["online"] is True
    assert llm.calls[0]["temperature"] == 0.5
    assert "THERAPY_REFERENCE DATA" in llm.calls[0]["contents"]
    assert llm.calls[0]["contents"].endswith("User: I can't sleep")


def test_chat_broken_therapy_context_falls_back():
    class _Therapy:
        def context_for(self, message):
            raise ValueError("Expecting property name enclosed in double quotes")

    llm = _FakeLLM(text="unused")
    with pytest.raises(ChatUnavailable) as exc:
        ChatService(llm, "gemini-2.5-flash", _Therapy()).ask("I feel anxious", "en", "mental")
    assert exc.value.status == 500
    assert exc.value.fallback["model"] == "local:fallback"
    assert exc.value.fallback["category"] == "mental"
    assert llm.calls == []


# ---- GEMINI ----
def test_build_gemini_contents_prepends_system():
    contents = build_gemini_contents([
        {"role": "user", "content": "hi"},
        {"role": "system", "content": "be brief"},
        {"role": "assistant", "content": "hello"},
        {"role": "system", "content": "ignored"},
    ])
    assert contents == [
        {"role": "user", "parts": [{"text": "be brief"}]},
        {"role": "user", "parts": [{"text": "hi"}]},
        {"role": "model", "parts": [{"text": "hello"}]},
    ]


# ---- MATCHERS ----
def test_contacts_scoring(tmp_path):
    path = tmp_path / "contacts.json"
    path.write_text(json.dumps([
        {"organization": "Red Cross", "name": "Mandalay", "phones": ["1"], "location": "Chanayethazan", "region": "Mandalay Region"},
        {"organization": "Fire Station", "phones": "2", "location": " Hlaing ", "region": "Yangon Region"},
        {"organization": "Hospital", "phones": [None, "3"], "location": "Yangon", "region": "Yangon Region"},
    ]), encoding="utf-8")
    service = ContactService(str(path))

    assert [c["location"] for c in service.find_contacts_near("yangon")] == ["Hlaing", "Yangon"]
    assert [c["location"] for c in service.find_contacts_near("Yangon  Yangon Region")][0] == "Yangon"
    assert service.find_contacts_near("mandalay")[0]["organization"] == "Red Cross"
    assert len(service.find_contacts_near("", limit=2)) == 2
    assert service.find_contacts_near("Bago") == []
    assert service.load()[1]["phones"] == ["2"]
    assert service.load()[2]["phones"] == ["3"]


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  Yangon\t  REGION ") == "yangon region"


def test_bundled_contacts_load():
    contacts = ContactService(Config.CONTACTS_PATH).load()
    assert contacts and all(isinstance(c["phones"], list) for c in contacts)


def test_therapy_search_and_context(tmp_path):
    path = tmp_path / "sessions.json"
    sessions = [
        {"phase_code": "P1", "phase_name": "Stabilization", "session_topic": "sleep", "trauma_type": "earthquake",
         "full_conversation": ["I cannot sleep after the earthquake"], "three_turn_sequences": [["a", "b", "c"]]},
        {"phase_code": "P2", "phase_name": "Processing", "session_topic": "grief", "trauma_type": "loss",
         "full_conversation": ["I miss my brother"], "client_profile": {"age": 40}},
    ]
    path.write_text(json.dumps(sessions), encoding="utf-8")
    service = TherapyService(str(path))

    matches = service.search("I miss my brother!", top_k=1)
    assert matches[0]["phase_code"] == "P2"

    context = build_context(service.search("earthquake sleep", top_k=1))
    assert context.startswith("THERAPY_REFERENCE DATA:")
    assert "PHASE: Stabilization (P1)" in context
    assert "a\nb\nc" in context


def test_therapy_reloads_on_mtime_change(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps([{"phase_name": "One", "full_conversation": []}]), encoding="utf-8")
    service = TherapyService(str(path))
    assert len(service.load()) == 1

    path.write_text(json.dumps([{"phase_name": "One", "full_conversation": []}] * 2), encoding="utf-8")
    stat = os.stat(path)
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))
    assert len(service.load()) == 2


def test_therapy_normalize_keeps_burmese():
    assert normalize_therapy("Hello, ငလျင်!!  ok") == "hello ငလျင် ok"


# ---- EARTHQUAKE FEED ----
class _Response:
    def __init__(self, payload, ok=True, status_code=200):
        self.payload, self.ok, self.status_code = payload, ok, status_code

    def json(self):
        return self.payload


class _Session:
    def __init__(self, response):
        self.response = response
        self.params = None

    def get(self, url, params=None, timeout=None):
        self.params = params
        return self.response


class _Realtime:
    def __init__(self, fail_ids=()):
        self.published = []
        self.fail_ids = set(fail_ids)

    def publish(self, event, payload):
        if payload["id"] in self.fail_ids:
            raise RuntimeError("ably down")
        self.published.append((event, payload))


def _feature(event_id, t, mag=4.5):
    return {
        "id": event_id,
        "properties": {"mag": mag, "title": f"M {mag} - {event_id}", "place": "Myanmar", "time": t, "url": "u"},
        "geometry": {"coordinates": [96.0, 21.9, 10]},
    }


def test_poll_once_publishes_oldest_first_and_deduplicates():
    response = _Response({"features": [_feature("b", 200), _feature("a", 100), {"properties": {"time": 50}}]})
    realtime = _Realtime()
    feed = EarthquakeFeed(realtime, MemorySeenSet(), Config.USGS_BOUNDS, session=_Session(response))

    published = feed.poll_once()
    assert [p["id"] for p in published] == ["a", "b"]
    assert realtime.published[0][0] == "earthquake"
    assert feed.poll_once() == []


def test_poll_once_keeps_failed_publish_seen():
    seen = MemorySeenSet()
    feed = EarthquakeFeed(_Realtime(fail_ids={"a"}), seen, Config.USGS_BOUNDS,
                          session=_Session(_Response({"features": [_feature("a", 1)]})))
    assert feed.poll_once() == []
    assert "a" in seen


def test_poll_once_handles_failed_fetch():
    feed = EarthquakeFeed(_Realtime(), MemorySeenSet(), Config.USGS_BOUNDS,
                          session=_Session(_Response({}, ok=False, status_code=503)))
    assert feed.poll_once() == []


def test_query_params_cover_lookback_and_bounds():
    feed = EarthquakeFeed(_Realtime(), MemorySeenSet(), {"minlatitude": 9.5}, lookback_days=7, session=_Session(None))
    params = feed.query_params(now=NOW)
    assert params["starttime"] == (NOW - timedelta(days=7)).isoformat()
    assert params["minlatitude"] == "9.5"
    assert params["limit"] == "200"


def test_earthquake_payload_defaults():
    payload = earthquake_payload({"id": "x", "properties": {}})
    assert payload["magnitude"] is None
    assert payload["coordinates"] == []


def test_redis_seen_set_uses_sadd():
    class _Redis:
        def __init__(self):
            self.members = set()

        def sadd(self, key, value):
            if value in self.members:
                return 0
            self.members.add(value)
            return 1

        def sismember(self, key, value):
            return value in self.members

    seen = RedisSeenSet(_Redis())
    assert seen.add("us7000") is True
    assert seen.add("us7000") is False
    assert "us7000" in seen


def test_redis_seen_set_expires_with_lookback():
    class _Redis:
        def __init__(self):
            self.members = set()
            self.expiries = []

        def sadd(self, key, value):
            if value in self.members:
                return 0
            self.members.add(value)
            return 1

        def expire(self, key, seconds):
            self.expiries.append((key, seconds))

    redis_client = _Redis()
    seen = RedisSeenSet(redis_client, ttl_seconds=7 * 24 * 60 * 60)
    seen.add("us7000")
    seen.add("us7000")
    assert redis_client.expiries == [("usgs:seen", 604800)]


# ---- REALTIME ----
def test_alert_payload_defaults_source_to_type():
    payload = alert_payload({"type": "flood", "title": "River rising", "time": 1})
    assert payload["source"] == "flood"
    assert payload["magnitude"] is None


def test_realtime_requires_key():
    with pytest.raises(RealtimeNotConfigured):
        RealtimeService("", "channel").publish("earthquake", {})


# ---- NOTIFICATIONS ----
def test_delete_by_request_id_matches_json_payloads(fake_db):
    fake_db.add("notifications", {"user_id": "u1", "type": "family_request", "payload": {"request_id": "r1"}})
    fake_db.add("notifications", {"user_id": "u1", "type": "family_request", "payload": json.dumps({"request_id": "r1"})})
    fake_db.add("notifications", {"user_id": "u1", "type": "family_request", "payload": "{broken"})
    fake_db.add("notifications", {"user_id": "u1", "type": "safety_check", "payload": {"request_id": "r1"}})

    result = NotificationService(NotificationRepository(fake_db)).delete_by_request_id("u1", "r1")
    assert result["deleted"] == 2
    assert len(fake_db.rows("notifications")) == 2


# ---- FAMILY ----
def _family(fake_db, now=NOW):
    return FamilyService(
        FamilyRepository(fake_db),
        UserRepository(fake_db),
        NotificationService(NotificationRepository(fake_db)),
        clock=lambda: now,
    )


def test_reciprocal_relation():
    assert reciprocal_relation("Father") == "son/daughter"
    assert reciprocal_relation("wife") == "husband"
    assert reciprocal_relation("cousin") == "family"


def test_approve_request_links_both_ways(fake_db):
    fake_db.add("users", {"id": "u1", "name": "Aung"})
    fake_db.add("users", {"id": "u2", "name": "Hla"})
    service = _family(fake_db)
    request = service.send_request("u1", "u2", "father")

    service.approve_request(request["id"])
    links = {(l["user_id"], l["member_id"]): l["relation"] for l in fake_db.rows("family_members")}
    assert links == {("u1", "u2"): "father", ("u2", "u1"): "son/daughter"}
    assert fake_db.rows("family_requests") == []
    types = [n["type"] for n in fake_db.rows("notifications")]
    assert types == ["family_request", "family_request_accepted"]


def test_send_request_conflicts(fake_db):
    service = _family(fake_db)
    service.send_request("u1", "u2", "sister")
    with pytest.raises(ApiError) as exc:
        service.send_request("u1", "u2", "sister")
    assert exc.value.status == 409 and exc.value.message == "request_already_sent"

    fake_db.add("family_members", {"user_id": "u1", "member_id": "u3", "relation": "brother"})
    with pytest.raises(ApiError) as exc:
        service.send_request("u1", "u3", "brother")
    assert exc.value.message == "already_linked"


def test_send_request_survives_notification_failure(fake_db):
    fake_db.failing_tables.add("notifications")
    request = _family(fake_db).send_request("u1", "u2", "aunt")
    assert request["status"] == "pending"


def test_safety_window_lifecycle(fake_db):
    fake_db.add("users", {"id": "u1", "name": "Aung"})
    fake_db.add("family_members", {"user_id": "u1", "member_id": "u2", "relation": "mother"})
    fake_db.add("family_members", {"user_id": "u2", "member_id": "u1", "relation": "son/daughter"})
    service = _family(fake_db)

    assert service.start_safety_check("u1", "u2", 300) == 300
    window = service.safety_window("u1", "u2")
    assert window["safety_status"] == "unknown"
    assert window["safety_check_expires_at"] == (NOW + timedelta(seconds=300)).isoformat()
    notification = fake_db.rows("notifications")[0]
    assert notification["body"] == "Aung (mother) is checking on you"
    assert notification["payload"]["buttonType"] == "safety"

    assert service.respond_to_safety_check("u2", "u1", "safe") is True
    assert service.safety_window("u1", "u2")["safety_status"] == "safe"
    # the reciprocal link is untouched
    assert service.safety_window("u2", "u1")["safety_status"] is None

    late = _family(fake_db, now=NOW + timedelta(seconds=301))
    assert late.respond_to_safety_check("u2", "u1", "danger") is False
    assert late.cleanup_expired_windows() == 1
    assert late.safety_window("u1", "u2") == {
        "safety_status": None, "safety_check_started_at": None, "safety_check_expires_at": None,
    }


def test_find_users_search_order(fake_db):
    fake_db.add("users", {"id": "u1", "name": "Mya Mya", "phone": "0912345", "email": "mya@example.com"})
    fake_db.add("users", {"id": "u2", "name": "Kyaw", "email": "kyaw@example.com"})
    service = _family(fake_db)
    assert [u["id"] for u in service.find_users("0912345")] == ["u1"]
    assert [u["id"] for u in service.find_users("kyaw@example.com")] == ["u2"]
    assert [u["id"] for u in service.find_users("mya")] == ["u1"]
    assert service.find_users("   ") == []


# ---- PINS ----
def test_aggregate_supplies_groups_in_first_seen_order():
    pin_items = [
        {"pin_id": "p1", "item_id": "i1", "remaining_qty": 5, "requested_qty": 10, "items": {"name": "Rice", "unit": "kg"}},
        {"pin_id": "p2", "item_id": "i2", "remaining_qty": None, "requested_qty": 3, "items": {"name": "Tent", "unit": None}},
        {"pin_id": "p3", "item_id": "i1", "remaining_qty": 0, "requested_qty": 4, "items": {"name": "Rice", "unit": "kg"}},
        {"pin_id": "p1", "item_id": "i1", "remaining_qty": 2, "requested_qty": 2, "items": {"name": "Rice", "unit": "kg"}},
        {"pin_id": "p1", "item_id": "i9", "remaining_qty": 2, "requested_qty": 2, "items": None},
    ]
    regions = {"p1": "Mandalay, Mandalay Region", "p2": "Unknown Region", "p3": "Mandalay, Mandalay Region"}
    assert aggregate_supplies(pin_items, regions) == [
        {"region": "Mandalay, Mandalay Region", "itemName": "Rice", "unit": "kg", "itemId": "i1", "totalQuantityNeeded": 7},
        {"region": "Unknown Region", "itemName": "Tent", "unit": "Unknown Unit", "itemId": "i2", "totalQuantityNeeded": 3},
    ]


def test_help_request_status():
    assert help_request_status([{"remaining_qty": 3, "requested_qty": 5}]) == "partially_accepted"
    assert help_request_status([{"remaining_qty": 0, "requested_qty": 5}]) is None
    assert help_request_status([{"remaining_qty": 5, "requested_qty": 5}]) == "pending"
    assert help_request_status([{"remaining_qty": None, "requested_qty": 10}]) == "pending"


def test_pin_initial_status(fake_db):
    fake_db.add("org-member", {"user_id": "tracker", "status": "active"})
    fake_db.add("org-member", {"user_id": "former", "status": "inactive"})
    service = PinService(PinRepository(fake_db), UserRepository(fake_db))
    assert service.initial_status(None, "organization") == "pending"
    assert service.initial_status("tracker", "user") == "confirmed"
    assert service.initial_status("org", "organization") == "confirmed"
    assert service.initial_status("former", "user") == "pending"


def test_accept_items_completes_pin(fake_db):
    pin = fake_db.add("pins", {"status": "confirmed", "type": "damage"})
    a = fake_db.add("pin_items", {"pin_id": pin["id"], "requested_qty": 5, "remaining_qty": 5})
    b = fake_db.add("pin_items", {"pin_id": pin["id"], "requested_qty": 2, "remaining_qty": None})
    service = PinService(PinRepository(fake_db), UserRepository(fake_db))

    partial = service.accept_items(pin["id"], [{"pinItemId": a["id"], "acceptedQuantity": 3}])
    assert partial == {"success": True, "completed": False}

    done = service.accept_items(pin["id"], [
        {"pinItemId": a["id"], "acceptedQuantity": 10},
        {"pinItemId": b["id"], "acceptedQuantity": 2},
        {"pinItemId": "missing", "acceptedQuantity": 1},
    ])
    assert done == {"success": True, "completed": True}
    assert fake_db.rows("pins") == [] and fake_db.rows("pin_items") == []


def test_aggregated_supplies_geocodes_each_pin_once(fake_db, geocoder):
    rice = fake_db.add("items", {"name": "Rice", "unit": "kg"})
    pin = fake_db.add("pins", {"status": "confirmed", "latitude": 21.97, "longitude": 96.08})
    fake_db.add("pins", {"status": "pending", "latitude": 16.84, "longitude": 96.17})
    for qty in (4, 6):
        fake_db.add("pin_items", {"pin_id": pin["id"], "item_id": rice["id"], "requested_qty": qty, "remaining_qty": qty})

    service = PinService(PinRepository(fake_db), UserRepository(fake_db), geocoder)
    supplies = service.aggregated_supplies()
    assert supplies == [{
        "region": "Mandalay, Mandalay Region", "itemName": "Rice", "unit": "kg",
        "itemId": rice["id"], "totalQuantityNeeded": 10,
    }]
    assert geocoder.calls == [(21.97, 96.08)]
