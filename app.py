from flask import Flask, request, jsonify, make_response
from flask_cors import CORS
from supabase import create_client, Client
from config import Config
from repositories.user_repo import UserRepository
from repositories.family_repo import FamilyRepository
from repositories.notification_repo import NotificationRepository
from repositories.last_seen_repo import LastSeenRepository
from repositories.message_repo import MessageRepository
from repositories.pin_repo import PinRepository
from services.auth_service import AuthService
from services.family_service import FamilyService, SAFETY_STATUSES
from services.notification_service import NotificationService
from services.message_service import MessageService
from services.pin_service import PinService
from services.geocoding_service import GeocodingService, GeocodingError
from services.realtime_service import RealtimeService
from services.llm_service import LLMService, GeminiApiError
from services.chat_service import ChatService, ChatUnavailable
from services.triage_service import TriageService
from services.contact_service import ContactService, DEFAULT_LIMIT
from services.therapy_service import TherapyService
from utils.error_handling import ApiError, ValidationError, handle_errors
from utils.logger import get_logger, log_exception
from utils.validation import coordinates_error, is_email_like, is_number, validate_enum

app = Flask(__name__)
app.secret_key = Config.SECRET_KEY
CORS(app, resources={r"/api/*": {"origins": "*"}})

logger = get_logger()

# Lazily built, process-wide helpers
APP_STATE = {
    "geocoder": None,
    "contacts": None,
    "therapy": None,
}

if not Config.is_supabase_configured():
    logger.warning("SUPABASE_URL or SUPABASE_KEY is not set. Database features will be disabled.")

supabase: Client = create_client(Config.SUPABASE_URL, Config.SUPABASE_KEY) if Config.is_supabase_configured() else None

realtime = RealtimeService(Config.ABLY_API_KEY, Config.ABLY_CHANNEL)
llm = LLMService(Config.GEMINI_API_KEY, Config.GEMINI_MODEL)


# Helpers
def sb_available() -> bool:
    return supabase is not None


def require_supabase():
    if not sb_available():
        raise ApiError("Database is not configured", 503)
    return supabase


def get_geocoder() -> GeocodingService:
    if APP_STATE["geocoder"] is None:
        APP_STATE["geocoder"] = GeocodingService(Config.NOMINATIM_USER_AGENT)
    return APP_STATE["geocoder"]


def get_contacts() -> ContactService:
    if APP_STATE["contacts"] is None:
        APP_STATE["contacts"] = ContactService(Config.CONTACTS_PATH)
    return APP_STATE["contacts"]


def get_therapy() -> TherapyService:
    if APP_STATE["therapy"] is None:
        APP_STATE["therapy"] = TherapyService(Config.THERAPY_DATA_PATH)
    return APP_STATE["therapy"]


def auth_service() -> AuthService:
    sb = require_supabase()
    return AuthService(sb, UserRepository(sb))


def notification_service() -> NotificationService:
    return NotificationService(NotificationRepository(require_supabase()))


def family_service() -> FamilyService:
    sb = require_supabase()
    return FamilyService(FamilyRepository(sb), UserRepository(sb), NotificationService(NotificationRepository(sb)))


def message_service() -> MessageService:
    return MessageService(MessageRepository(require_supabase()))


def pin_service() -> PinService:
    sb = require_supabase()
    return PinService(PinRepository(sb), UserRepository(sb), get_geocoder())


def json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# Error pages
@app.errorhandler(404)
def not_found(_err):
    return jsonify({"success": False, "error": "not_found"}), 404


@app.errorhandler(405)
def method_not_allowed(_err):
    return jsonify({"success": False, "error": "method_not_allowed"}), 405


# ---- Auth ----
@app.route("/api/auth/register", methods=["POST"])
@handle_errors("Registration failed")
def register():
    data = json_body()
    email = (data.get("email") or "").strip()
    if email and not is_email_like(email):
        raise ValidationError([{"field": "email", "message": "Invalid email address"}])
    result = auth_service().register(
        name=(data.get("name") or "").strip(),
        email=email,
        phone=(data.get("phone") or "").strip() or None,
        password=data.get("password") or "",
        role=data.get("role"),
        organization_id=data.get("organizationId"),
    )
    return jsonify(result)


@app.route("/api/auth/login", methods=["POST"])
@handle_errors("Login failed")
def login():
    data = json_body()
    result = auth_service().login((data.get("email") or "").strip(), data.get("password") or "")
    return jsonify(result)


@app.route("/api/auth/logout", methods=["POST"])
@handle_errors("Logout failed")
def logout():
    return jsonify(auth_service().logout(request.headers.get("Authorization")))


@app.route("/api/auth/session", methods=["GET"])
@handle_errors("Session lookup failed")
def current_session():
    return jsonify(auth_service().current_user(request.headers.get("Authorization")))


# ---- Realtime ----
@app.route("/api/ably-token", methods=["GET"])
def ably_token():
    if not realtime.configured:
        return jsonify({"error": "Ably not configured"}), 503
    try:
        return jsonify(realtime.create_token_request(Config.ABLY_TOKEN_TTL_MS))
    except Exception as err:
        log_exception(err, context="ably token:")
        return jsonify({"error": "Token error"}), 500


@app.route("/api/broadcast-alert", methods=["POST"])
def broadcast_alert():
    data = json_body()
    if not data.get("type") or not data.get("title") or not data.get("time"):
        return jsonify({"error": "Missing required fields"}), 400
    if not realtime.configured:
        return jsonify({"error": "ABLY_API_KEY not configured"}), 500
    try:
        realtime.broadcast_alert(data)
    except Exception as err:
        log_exception(err, context="broadcast alert:")
        return jsonify({"error": "Broadcast failed"}), 500
    return jsonify({"ok": True})


# ---- Gemini ----
def _gemini_cors(response):
    response.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin") or "*"
    response.headers["Access-Control-Allow-Headers"] = "authorization, x-client-info, apikey, content-type"
    response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    return response


@app.route("/api/gemini-chat", methods=["POST", "OPTIONS"])
def gemini_chat():
    if request.method == "OPTIONS":
        return _gemini_cors(make_response("ok"))

    data = json_body()
    messages = data.get("messages")
    if not isinstance(messages, list) or not messages:
        return _gemini_cors(make_response(jsonify({"error": "messages[] required"}), 400))
    if not llm.configured:
        return _gemini_cors(make_response(jsonify({"error": "GCP_GEMINI_API_KEY not set"}), 500))
    try:
        result = llm.chat(
            messages,
            model=data.get("model") or Config.GEMINI_MODEL,
            temperature=data.get("temperature", 0.7),
            max_tokens=data.get("max_tokens", 512),
        )
    except GeminiApiError as err:
        body = {"error": "gemini_error", "status": err.status, "detail": err.detail}
        return _gemini_cors(make_response(jsonify(body), 502))
    except Exception as err:
        log_exception(err, context="gemini proxy:")
        return _gemini_cors(make_response(jsonify({"error": "server_error", "detail": str(err)}), 500))
    return _gemini_cors(make_response(jsonify(result)))


@app.route("/api/chat", methods=["POST"])
@handle_errors("Chat failed")
def chat():
    data = json_body()
    message = data.get("message")
    if not message:
        raise ApiError("Message is required", 400)
    service = ChatService(llm, Config.GEMINI_CHAT_MODEL, get_therapy())
    try:
        result = service.ask(message, data.get("language") or "en", data.get("assistant") or "emergency")
    except ChatUnavailable as err:
        return jsonify(err.fallback), err.status
    return jsonify(result)


@app.route("/api/ai/analyze-pin", methods=["POST"])
@handle_errors("Failed to analyze")
def analyze_pin():
    data = json_body()
    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ApiError("Description is required", 400)
    suggestion = TriageService(llm, Config.GEMINI_MODEL).analyze(
        description,
        image_base64=data.get("imageBase64"),
        image_mime=data.get("imageMime"),
        allowed=data.get("allowedItems"),
    )
    return jsonify({"suggestion": suggestion})


# ---- Geocoding / contacts ----
@app.route("/api/reverse-geocode", methods=["POST"])
@handle_errors("Geocoding failed")
def reverse_geocode():
    data = json_body()
    lat, lng = data.get("lat"), data.get("lng")
    error = coordinates_error(lat, lng)
    if error:
        raise ApiError(error, 400)
    try:
        return jsonify(get_geocoder().reverse(lat, lng))
    except GeocodingError as err:
        raise ApiError(str(err), err.status)


@app.route("/api/contacts/near", methods=["GET"])
@handle_errors("Contact lookup failed")
def contacts_near():
    try:
        limit = int(request.args.get("limit", DEFAULT_LIMIT))
    except ValueError:
        limit = DEFAULT_LIMIT
    contacts = get_contacts().find_contacts_near(request.args.get("place", ""), max(0, limit))
    return jsonify({"contacts": contacts})


# ---- Last seen ----
@app.route("/api/last-seen/update", methods=["POST"])
@handle_errors("server_error")
def update_last_seen():
    data = json_body()
    user_id, lat, lng = data.get("userId"), data.get("lat"), data.get("lng")
    if not user_id or not is_number(lat) or not is_number(lng):
        raise ApiError("Missing userId/lat/lng", 400)

    address = get_geocoder().display_name_for(lat, lng)
    sb = require_supabase()
    users = UserRepository(sb)
    if not users.exists(user_id):
        try:
            users.insert_profile({"id": user_id})
        except Exception as err:
            # a concurrent request may have created it
            log_exception(err, context=f"last-seen user insert [{user_id}]")
    try:
        LastSeenRepository(sb).upsert(user_id, lat, lng, address)
    except Exception as err:
        log_exception(err, context="last-seen upsert:")
        raise ApiError("db_error", 500)
    return jsonify({"ok": True, "address": address})


@app.route("/api/last-seen", methods=["GET"])
@handle_errors("Failed to load last seen")
def last_seen():
    ids = [i.strip() for i in request.args.get("userIds", "").split(",") if i.strip()]
    return jsonify({"lastSeen": LastSeenRepository(require_supabase()).for_users(ids)})


# ---- Family / safety ----
@app.route("/api/family/safety/check", methods=["GET"])
def safety_duration():
    return jsonify({"durationSeconds": Config.safety_window_seconds()})


@app.route("/api/family/safety/check", methods=["POST"])
@handle_errors("server_error")
def safety_check():
    data = json_body()
    from_user_id, to_user_id = data.get("fromUserId"), data.get("toUserId")
    if not from_user_id or not to_user_id:
        raise ApiError("missing_params", 400)
    duration = family_service().start_safety_check(from_user_id, to_user_id, Config.safety_window_seconds())
    return jsonify({"success": True, "durationSeconds": duration})


@app.route("/api/family/safety/respond", methods=["POST"])
@handle_errors("Safety response failed")
def safety_respond():
    data = json_body()
    responder_id, requester_id = data.get("responderId"), data.get("requesterId")
    if not responder_id or not requester_id:
        raise ApiError("missing_params", 400)
    status = validate_enum(data.get("status"), SAFETY_STATUSES, "status")
    updated = family_service().respond_to_safety_check(responder_id, requester_id, status)
    return jsonify({"success": True, "updated": updated})


@app.route("/api/family/safety/window", methods=["GET"])
@handle_errors("Failed to load safety window")
def safety_window():
    user_id, member_id = request.args.get("userId"), request.args.get("memberId")
    if not user_id or not member_id:
        raise ApiError("missing_params", 400)
    return jsonify({"window": family_service().safety_window(user_id, member_id)})


@app.route("/api/family/safety/cleanup", methods=["POST"])
@handle_errors("Cleanup failed")
def safety_cleanup():
    cleared = family_service().cleanup_expired_windows()
    return jsonify({"success": True, "cleared": cleared})


@app.route("/api/family/<user_id>/members", methods=["GET"])
@handle_errors("Failed to load family members")
def family_members(user_id):
    return jsonify({"members": family_service().list_members(user_id)})


@app.route("/api/family/members", methods=["POST"])
@handle_errors("Failed to add family member")
def add_family_member():
    data = json_body()
    if not data.get("userId") or not data.get("identifier"):
        raise ApiError("missing_params", 400)
    link = family_service().add_member_by_identifier(data["userId"], data["identifier"], data.get("relation"))
    return jsonify({"success": True, "member": link}), 201


@app.route("/api/family/<user_id>/members/<member_id>", methods=["DELETE"])
@handle_errors("Failed to remove family member")
def remove_family_member(user_id, member_id):
    family_service().remove_member(user_id, member_id)
    return jsonify({"success": True})


@app.route("/api/family/requests", methods=["POST"])
@handle_errors("Failed to send family request")
def send_family_request():
    data = json_body()
    if not data.get("fromUserId") or not data.get("toUserId"):
        raise ApiError("missing_params", 400)
    req = family_service().send_request(data["fromUserId"], data["toUserId"], data.get("relation") or "family")
    return jsonify({"success": True, "request": req}), 201


@app.route("/api/family/<user_id>/requests/pending", methods=["GET"])
@handle_errors("Failed to load family requests")
def pending_family_requests(user_id):
    return jsonify({"requests": family_service().pending_requests(user_id)})


@app.route("/api/family/<user_id>/requests/sent", methods=["GET"])
@handle_errors("Failed to load family requests")
def sent_family_requests(user_id):
    return jsonify({"requests": family_service().sent_requests(user_id)})


@app.route("/api/family/requests/<request_id>/approve", methods=["POST"])
@handle_errors("Failed to approve family request")
def approve_family_request(request_id):
    family_service().approve_request(request_id)
    return jsonify({"success": True})


@app.route("/api/family/requests/<request_id>/reject", methods=["POST"])
@handle_errors("Failed to reject family request")
def reject_family_request(request_id):
    family_service().reject_request(request_id)
    return jsonify({"success": True})


@app.route("/api/family/requests/<request_id>", methods=["DELETE"])
@handle_errors("Failed to cancel family request")
def cancel_family_request(request_id):
    family_service().cancel_request(request_id)
    return jsonify({"success": True})


@app.route("/api/users/search", methods=["GET"])
@handle_errors("User search failed")
def search_users():
    return jsonify({"users": family_service().find_users(request.args.get("q", ""))})


# ---- Notifications ----
@app.route("/api/notifications", methods=["POST"])
@handle_errors("Failed to create notification")
def create_notification():
    data = json_body()
    if not data.get("userId") or not data.get("type"):
        raise ApiError("userId and type are required", 400)
    notification = notification_service().create_notification(
        data["userId"], data["type"], data.get("title"), data.get("body"), data.get("payload")
    )
    return jsonify({"success": True, "notification": notification}), 201


@app.route("/api/users/<user_id>/notifications", methods=["GET"])
@handle_errors("Failed to load notifications")
def list_notifications(user_id):
    return jsonify({"notifications": notification_service().list_for_user(user_id)})


@app.route("/api/notifications/<notification_id>/read", methods=["POST"])
@handle_errors("Failed to update notification")
def read_notification(notification_id):
    notification_service().mark_read(notification_id)
    return jsonify({"success": True})


@app.route("/api/users/<user_id>/notifications/read-all", methods=["POST"])
@handle_errors("Failed to update notifications")
def read_all_notifications(user_id):
    notification_service().mark_all_read(user_id)
    return jsonify({"success": True})


@app.route("/api/notifications/<notification_id>", methods=["DELETE"])
@handle_errors("Failed to delete notification")
def delete_notification(notification_id):
    notification_service().delete(notification_id)
    return jsonify({"success": True})


@app.route("/api/users/<user_id>/notifications", methods=["DELETE"])
@handle_errors("Failed to delete notifications")
def delete_all_notifications(user_id):
    notification_service().delete_all(user_id)
    return jsonify({"success": True})


@app.route("/api/users/<user_id>/notifications/requests/<request_id>", methods=["DELETE"])
@handle_errors("Failed to delete notifications")
def delete_request_notifications(user_id, request_id):
    result = notification_service().delete_by_request_id(user_id, request_id)
    return jsonify({"success": True, **result})


# ---- Messages ----
@app.route("/api/messages", methods=["POST"])
@handle_errors("Failed to send message")
def send_message():
    data = json_body()
    message = message_service().send(data.get("senderId"), data.get("receiverId"), data.get("content"))
    return jsonify({"success": True, "message": message}), 201


@app.route("/api/messages/conversation", methods=["GET"])
@handle_errors("Failed to load conversation")
def conversation():
    user_id, other_id = request.args.get("userId"), request.args.get("otherId")
    if not user_id or not other_id:
        raise ApiError("missing_params", 400)
    return jsonify({"messages": message_service().conversation(user_id, other_id)})


@app.route("/api/users/<user_id>/messages/unread-count", methods=["GET"])
@handle_errors("Failed to count messages")
def unread_messages(user_id):
    return jsonify({"count": message_service().unread_count(user_id)})


@app.route("/api/messages/read", methods=["POST"])
@handle_errors("Failed to update messages")
def read_messages():
    data = json_body()
    if not data.get("userId"):
        raise ApiError("missing_params", 400)
    message_service().mark_read(data["userId"], data.get("otherId"))
    return jsonify({"success": True})


# ---- Pins / supplies ----
@app.route("/api/items", methods=["GET"])
@handle_errors("Failed to load items")
def list_items():
    return jsonify({"items": pin_service().list_items()})


@app.route("/api/pins", methods=["GET"])
@handle_errors("Failed to load pins")
def list_pins():
    return jsonify({"pins": pin_service().list_pins_with_items()})


@app.route("/api/pins", methods=["POST"])
@handle_errors("Failed to create pin")
def create_pin():
    pin = pin_service().create_pin(json_body())
    return jsonify({"success": True, "pin": pin}), 201


@app.route("/api/pins/<pin_id>/status", methods=["PATCH"])
@handle_errors("Failed to update pin status")
def update_pin_status(pin_id):
    data = json_body()
    pin_service().update_status(pin_id, data.get("status"), data.get("userId"))
    return jsonify({"success": True})


@app.route("/api/pins/<pin_id>", methods=["DELETE"])
@handle_errors("Failed to delete pin")
def delete_pin(pin_id):
    pin_service().delete_pin(pin_id, request.args.get("userRole"))
    return jsonify({"success": True})


@app.route("/api/pins/<pin_id>/items", methods=["POST"])
@handle_errors("Failed to create pin items")
def create_pin_items(pin_id):
    items = json_body().get("items") or []
    for item in items:
        if not isinstance(item, dict) or not item.get("item_id") or not is_number(item.get("requested_qty")) or item["requested_qty"] < 1:
            raise ValidationError([{"field": "items", "message": "Each item needs item_id and a positive requested_qty"}])
    created = pin_service().create_pin_items(pin_id, items)
    return jsonify({"success": True, "created": created}), 201


@app.route("/api/pin-items/<pin_item_id>", methods=["PATCH"])
@handle_errors("Failed to update pin item")
def update_pin_item(pin_item_id):
    remaining = json_body().get("remainingQty")
    if not is_number(remaining) or remaining < 0:
        raise ApiError("remainingQty must be a non-negative number", 400)
    pin_service().update_pin_item_quantity(pin_item_id, int(remaining))
    return jsonify({"success": True})


@app.route("/api/pins/<pin_id>/accept", methods=["POST"])
@handle_errors("Failed to accept items")
def accept_pin_items(pin_id):
    accepted = json_body().get("items") or []
    return jsonify(pin_service().accept_items(pin_id, [a for a in accepted if isinstance(a, dict) and a.get("pinItemId")]))


@app.route("/api/help-requests", methods=["GET"])
@handle_errors("Failed to load help requests")
def help_requests():
    return jsonify({"success": True, "helpRequests": pin_service().help_requests()})


@app.route("/api/supplies/aggregated", methods=["GET"])
@handle_errors("Failed to aggregate supplies")
def aggregated_supplies():
    return jsonify({"success": True, "supplies": pin_service().aggregated_supplies()})


@app.route("/api/debug", methods=["GET"])
@handle_errors("Debug lookup failed")
def debug():
    counts = PinRepository(require_supabase()).counts()
    return jsonify({"success": True, "config": Config.get_config_status(), **counts})


if __name__ == "__main__":
    app.run(debug=True)
