import os
import sys
import logging
import uuid
from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv
from api_trace import TraceContext, get_trace, set_trace, clear_trace
from age_calculator import Child, children_summary, is_valid_birth_date
from location_calculator import (
    Coordinate, DAEJEON_REGIONS, DAEJEON_LANDMARKS,
    attach_travel_estimates, format_distance, format_travel_time,
    geocode_address, region_address,
)
from place_filters import PlaceFilters, filter_places, first_row
from recommendation import (
    age_suitability_breakdown, child_energy_display, format_age_range,
    parent_energy_display, recommend, suitability_from_row,
)
from session import load_profile_snapshot
from supabase_client import BackendError, SupabaseClient

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN (silent when unset)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Backend outages are reported by the backend's own monitoring
            if exc_type is not None and issubclass(
                exc_type, (BackendError, requests.exceptions.RequestException)
            ):
                sentry_sdk.add_breadcrumb(
                    category="supabase",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("APP_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'ainadeul-dev-key')
app.json.ensure_ascii = False
if (not app.config['SECRET_KEY'] or app.config['SECRET_KEY'] == 'ainadeul-dev-key') and os.environ.get('FLASK_DEBUG') != '1':
    print("FATAL: SECRET_KEY is not set. Refusing to start with insecure default.", file=sys.stderr)
    print("Set SECRET_KEY in your environment or .env file.", file=sys.stderr)
    sys.exit(1)

# Proxy fix: the app runs behind a reverse proxy that sets
# X-Forwarded-For.  ProxyFix rewrites request.remote_addr to the real
# client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: every list request fans out to several backend queries.
# In-memory storage is per-process (with 2 gunicorn workers the effective
# limit is ~2x nominal).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_WRITE = os.environ.get("RATE_LIMIT_WRITE", "20/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Startup: warn immediately if required config is missing
# ---------------------------------------------------------------------------
REQUIRED_CONFIG_KEYS = ("SUPABASE_URL", "SUPABASE_ANON_KEY")

if not all(os.environ.get(k) for k in REQUIRED_CONFIG_KEYS):
    logger.warning(
        "SUPABASE_URL / SUPABASE_ANON_KEY are not set. "
        "Place and profile requests will fail until they are configured. "
        "For local development, copy .env.example to .env and add your keys."
    )

CATEGORY_EMOJI = {
    "도서관": "📚",
    "박물관": "🏛️",
    "미술관": "🎨",
    "과학관": "🔬",
    "체육시설": "⚽",
    "공원": "🌳",
    "카페": "☕",
    "실내놀이터": "🏠",
}
DEFAULT_CATEGORY_EMOJI = "📍"

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
_WEEKDAY_NAMES = ("월", "화", "수", "목", "금", "토", "일")

# Error texts shown verbatim by the child-info form
ERR_NICKNAME_REQUIRED = "아이의 애칭을 입력해주세요"
ERR_BIRTH_DATE_REQUIRED = "생년월을 선택해주세요"
ERR_BIRTH_DATE_INVALID = "올바른 생년월을 선택해주세요"


# ---------------------------------------------------------------------------
# Request ID + trace: every request gets a unique ID for log correlation
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()
    set_trace(TraceContext(trace_id=g.request_id))


@app.after_request
def _after_request(response):
    trace = get_trace()
    if trace and trace.api_calls:
        trace.log_summary()
    clear_trace()
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


def _check_service_config():
    missing = [k for k in REQUIRED_CONFIG_KEYS if not os.environ.get(k)]
    return not missing, missing


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _get_client() -> SupabaseClient:
    """Backend client acting as the caller (their token) or anonymously."""
    return SupabaseClient.from_env(access_token=_bearer_token())


def _json_error(message, status):
    return jsonify({"error": message, "request_id": getattr(g, "request_id", None)}), status


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

def place_card(place: dict, children) -> dict:
    """JSON-ready dict for one place in the list view."""
    suitability = suitability_from_row(place.get("place_age_suitability"))
    rec = recommend(suitability, children)
    scores = first_row(place, "place_filter_scores")
    amenities = first_row(place, "place_amenities")
    details = first_row(place, "place_details")

    card = {
        "id": place.get("id"),
        "name": place.get("name"),
        "category": place.get("category"),
        "category_emoji": CATEGORY_EMOJI.get(place.get("category"), DEFAULT_CATEGORY_EMOJI),
        "address": place.get("address"),
        "region": place.get("region"),
        "is_indoor": bool(place.get("is_indoor")),
        "is_outdoor": bool(place.get("is_outdoor")),
        "expected_rating": rec.expected_rating,
        "recommended_ages": rec.recommended_labels,
        "parent_energy": parent_energy_display(scores.get("parent_energy_required")),
        "child_energy": child_energy_display(scores.get("child_energy_consumption")),
        "parking_available": amenities.get("parking_available") is True,
        "is_free": details.get("is_free") is True,
        "distance_km": None,
        "distance_text": None,
        "travel_time_car": None,
        "travel_time_text": None,
    }

    distance = place.get("distance_km")
    if distance is not None:
        card["distance_km"] = distance
        card["distance_text"] = format_distance(float(distance))
    travel_time = place.get("travel_time_car")
    if travel_time is not None:
        card["travel_time_car"] = travel_time
        card["travel_time_text"] = format_travel_time(int(travel_time))
    return card


def operating_hours_lines(hours) -> list:
    """["월: 09:00 - 18:00", "화: 휴무", ...] for days with data."""
    if not hours:
        return []
    lines = []
    for day, name in zip(_WEEKDAYS, _WEEKDAY_NAMES):
        entry = hours.get(day) or {}
        if entry.get("closed"):
            lines.append(f"{name}: 휴무")
        elif entry.get("open") and entry.get("close"):
            lines.append(f"{name}: {entry['open']} - {entry['close']}")
    return lines


def _location_dict(loc, address=None) -> dict:
    return {
        "name": loc.name,
        "lat": loc.coordinate.lat,
        "lng": loc.coordinate.lng,
        "address": address or loc.address,
    }


def _json_body() -> dict:
    # Arrays and scalars are valid JSON but never a valid request body
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text_field(data: dict, key: str) -> str:
    value = data.get(key)
    return str(value).strip() if value is not None else ""


def _parse_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/places")
def list_places():
    """Home list: filtered places with ratings personalized for the user.

    Query: user_id, energy, condition, travel_time, environment, parking, cost.
    Without user_id the list is anonymous (population ratings, no distances).
    """
    config_ok, missing = _check_service_config()
    if not config_ok:
        return _json_error("Service not configured", 503)

    client = _get_client()
    filters = PlaceFilters.from_args(request.args)
    user_id = request.args.get("user_id", "").strip()

    snapshot = None
    if user_id:
        try:
            snapshot = load_profile_snapshot(client, user_id)
        except BackendError:
            logger.warning("[%s] Profile load failed for %s", g.request_id, user_id, exc_info=True)
            return _json_error("Could not load profile", 503)

    query = {
        "parent_energy": request.args.get("energy"),
        "child_condition": request.args.get("condition"),
    }
    has_location = bool(snapshot and snapshot.has_location)
    if has_location:
        query["max_travel_time"] = filters.max_travel_minutes
        places = client.get_places_with_distance(user_id, query)
        attach_travel_estimates(places, snapshot.home)
    else:
        places = client.get_places(query)

    children = snapshot.children if snapshot else ()
    filtered = filter_places(places, filters, has_location)
    logger.info(
        "[%s] places fetched=%d shown=%d has_location=%s children=%d",
        g.request_id, len(places), len(filtered), has_location, len(children),
    )
    return jsonify({
        "total": len(filtered),
        "places": [place_card(p, children) for p in filtered],
        "children_summary": children_summary(children),
        "needs_child_info": bool(snapshot and snapshot.needs_child_info),
        "has_location": has_location,
    })


@app.route("/api/places/<place_id>")
def place_detail(place_id):
    config_ok, missing = _check_service_config()
    if not config_ok:
        return _json_error("Service not configured", 503)

    client = _get_client()
    place = client.get_place_by_id(place_id)
    if not place:
        return _json_error("Place not found", 404)

    children = ()
    user_id = request.args.get("user_id", "").strip()
    if user_id:
        profile = client.get_user_profile(user_id)
        if profile:
            children = tuple(Child.from_row(r) for r in profile.get("user_children") or [])

    detail = place_card(place, children)
    suitability = suitability_from_row(place.get("place_age_suitability"))
    detail["age_suitability"] = age_suitability_breakdown(suitability)
    detail["operating_hours"] = operating_hours_lines(place.get("operating_hours"))
    detail["blog_mentions"] = place.get("place_blog_mentions") or []
    return jsonify(detail)


@app.route("/api/places/<place_id>/save", methods=["POST"])
@limiter.limit(RATE_LIMIT_WRITE)
def toggle_saved_place(place_id):
    data = _json_body()
    user_id = _text_field(data, "user_id")
    if not user_id:
        return _json_error("user_id is required", 400)
    ok = _get_client().toggle_save_place(user_id, place_id)
    return jsonify({"ok": ok}), 200 if ok else 502


@app.route("/api/saved")
def list_saved_places():
    user_id = request.args.get("user_id", "").strip()
    if not user_id:
        return _json_error("user_id is required", 400)
    saved = _get_client().get_saved_places(user_id)
    return jsonify({"total": len(saved), "saved": saved})


@app.route("/api/visits")
def list_visits():
    user_id = request.args.get("user_id", "").strip()
    if not user_id:
        return _json_error("user_id is required", 400)
    visits = _get_client().get_visits(user_id)
    return jsonify({"total": len(visits), "visits": visits})


@app.route("/api/visits", methods=["POST"])
@limiter.limit(RATE_LIMIT_WRITE)
def record_visit():
    """Log a visit.  Body: {"user_id", "place_id", "visited_at"?, "rating"?, "review"?}."""
    data = _json_body()
    user_id = _text_field(data, "user_id")
    place_id = data.get("place_id")
    if not user_id or place_id is None:
        return _json_error("user_id and place_id are required", 400)

    visit = {"user_id": user_id, "place_id": place_id}
    for key in ("visited_at", "rating", "review"):
        if data.get(key) is not None:
            visit[key] = data[key]

    try:
        row = _get_client().add_visit(visit)
    except BackendError:
        logger.warning("[%s] Add visit failed for %s", g.request_id, user_id, exc_info=True)
        return _json_error("방문 기록 저장에 실패했습니다", 502)
    return jsonify({"visit": row}), 201


@app.route("/api/events")
def list_events():
    config_ok, missing = _check_service_config()
    if not config_ok:
        return _json_error("Service not configured", 503)

    filters = {}
    target_age = _parse_int(request.args.get("target_age"))
    if target_age is not None:
        filters["target_age"] = target_age
    if request.args.get("organizer_category"):
        filters["organizer_category"] = request.args["organizer_category"]

    events = _get_client().get_events(filters)
    for event in events:
        event["age_range_text"] = format_age_range(
            event.get("target_age_min"),
            event.get("target_age_max"),
            event.get("target_age_note"),
        )
    return jsonify({"total": len(events), "events": events})


@app.route("/api/locations")
@limiter.exempt
def location_presets():
    """District and landmark presets for the location picker."""
    return jsonify({
        "regions": [_location_dict(r, region_address(r)) for r in DAEJEON_REGIONS],
        "landmarks": [_location_dict(lm) for lm in DAEJEON_LANDMARKS],
    })


@app.route("/api/location", methods=["PUT"])
@limiter.limit(RATE_LIMIT_WRITE)
def set_home_location():
    """Store the user's home location.

    Accepts {"user_id", "lat", "lng", "address"} or {"user_id", "address"}
    alone, in which case the address is resolved to its district centre.
    """
    data = _json_body()
    user_id = _text_field(data, "user_id")
    if not user_id:
        return _json_error("user_id is required", 400)

    address = _text_field(data, "address") or None
    try:
        if data.get("lat") is not None and data.get("lng") is not None:
            coord = Coordinate(float(data["lat"]), float(data["lng"]))
        elif address:
            coord = geocode_address(address)
        else:
            return _json_error("lat/lng or address is required", 400)
    except (TypeError, ValueError) as e:
        return _json_error(f"Invalid coordinates: {e}", 400)

    try:
        profile = _get_client().update_user_location(user_id, coord.lat, coord.lng, address)
    except BackendError:
        logger.warning("[%s] Location update failed for %s", g.request_id, user_id, exc_info=True)
        return _json_error("위치 저장 중 오류가 발생했습니다.", 502)
    return jsonify({"ok": True, "profile": profile})


@app.route("/api/children", methods=["POST"])
@limiter.limit(RATE_LIMIT_WRITE)
def add_child():
    data = _json_body()
    user_id = _text_field(data, "user_id")
    if not user_id:
        return _json_error("user_id is required", 400)

    nickname = _text_field(data, "nickname")
    if not nickname:
        return _json_error(ERR_NICKNAME_REQUIRED, 400)

    birth_year = _parse_int(data.get("birth_year"))
    birth_month = _parse_int(data.get("birth_month"))
    if not birth_year or not birth_month:
        return _json_error(ERR_BIRTH_DATE_REQUIRED, 400)
    if not is_valid_birth_date(birth_year, birth_month):
        return _json_error(ERR_BIRTH_DATE_INVALID, 400)

    try:
        child = _get_client().add_child(user_id, {
            "nickname": nickname,
            "birth_year": birth_year,
            "birth_month": birth_month,
        })
    except BackendError:
        logger.warning("[%s] Add child failed for %s", g.request_id, user_id, exc_info=True)
        return _json_error("아이 정보 저장에 실패했습니다", 502)
    return jsonify({"child": child}), 201


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    config_ok, missing = _check_service_config()
    return jsonify({
        "status": "ok" if config_ok else "degraded",
        "missing_keys": missing,
    }), 200 if config_ok else 503


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(BackendError)
def backend_unavailable(e):
    logger.warning("[%s] Backend error: %s", getattr(g, "request_id", "-"), e)
    return _json_error("Backend unavailable", 503)


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return _json_error("Too many requests. Please wait and try again.", 429)


@app.errorhandler(404)
def not_found(e):
    return _json_error("Not found", 404)


@app.errorhandler(500)
def internal_error(e):
    return _json_error("Internal server error", 500)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
