import os
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx
from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv
from google import genai

from image_risk import GeminiImageScorer
from lookup_cache import LookupCache
from maps_client import GoogleMapsClient, MapsAPIError, RouteRequestError
from models import PlaceDetails, PlacePrediction, Route, RouteAnalysisState
from pipeline_config import PipelineConfig
from route_analysis import RouteAnalyzer
from route_planner import RoutePlan, RoutePlanner
from route_trace import TraceContext, get_trace, set_trace, clear_trace

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking - gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Provider errors (Routes / Places / Geocoding non-2xx)
            if exc_type is not None and issubclass(exc_type, MapsAPIError):
                sentry_sdk.add_breadcrumb(
                    category="google_maps",
                    message=msg,
                    level="warning",
                )
                return None
            # Timeouts / transport failures
            if exc_type is not None and issubclass(exc_type, (httpx.HTTPError, TimeoutError)):
                sentry_sdk.add_breadcrumb(
                    category="http",
                    message=msg or exc_type.__name__,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.json.sort_keys = False

# Proxy fix - PaaS hosts sit behind a reverse proxy that sets
# X-Forwarded-For. Flask-Limiter and logging both need the real client IP.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIG = PipelineConfig.from_env()

# Shared across requests; holds plain values only, so it is safe to use
# from each request's own event loop.
LOOKUP_CACHE = LookupCache(
    ttl_seconds=CONFIG.cache_ttl_seconds,
    timeout_seconds=CONFIG.lookup_timeout_seconds,
)

# ---------------------------------------------------------------------------
# Rate limiting - protects cost-sensitive endpoints from abuse.
# In-memory storage is per-process (with 2 gunicorn workers the effective
# limit is ~2x nominal).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_ROUTES = os.environ.get("RATE_LIMIT_ROUTES", "10/minute")

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
if not os.environ.get("GOOGLE_MAPS_API_KEY"):
    logger.warning(
        "GOOGLE_MAPS_API_KEY is not set. "
        "Route planning will fail until it is configured. "
        "For local development, add it to a .env file in the project root."
    )
if not os.environ.get("GEMINI_API_KEY"):
    logger.warning("GEMINI_API_KEY is not set. Routes will be returned without risk analysis.")


# ---------------------------------------------------------------------------
# Request ID + trace middleware
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()
    set_trace(TraceContext(trace_id=g.request_id))


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


@app.teardown_request
def _teardown_request(exc):
    trace = get_trace()
    if trace and trace.api_calls:
        trace.log_summary()
    clear_trace()


def _error(message: str, status: int, **extra):
    body = {"error": message, "request_id": getattr(g, "request_id", "unknown")}
    body.update(extra)
    return jsonify(body), status


def _check_service_config():
    """
    Validate required service configuration.
    Returns (is_ok, missing_keys) tuple.
    """
    missing = []
    if not os.environ.get("GOOGLE_MAPS_API_KEY"):
        missing.append("GOOGLE_MAPS_API_KEY")
    return (len(missing) == 0, missing)


# ---------------------------------------------------------------------------
# Pipeline entry points (one event loop per request)
# ---------------------------------------------------------------------------

def _log_analysis_state(route: Route, state: RouteAnalysisState):
    logger.info("Route %s analysis -> %s", route.id, state.status)


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=CONFIG.http_timeout_seconds)


async def search_places(text: str) -> List[PlacePrediction]:
    async with _http_client() as http:
        maps = GoogleMapsClient(os.environ["GOOGLE_MAPS_API_KEY"], http, LOOKUP_CACHE, CONFIG)
        return await maps.autocomplete(text)


async def lookup_place(place_id: str) -> PlaceDetails:
    async with _http_client() as http:
        maps = GoogleMapsClient(os.environ["GOOGLE_MAPS_API_KEY"], http, LOOKUP_CACHE, CONFIG)
        return await maps.place_details(place_id)


async def plan_routes(source: Any, destination: Any, travel_mode: str) -> RoutePlan:
    api_key = os.environ["GOOGLE_MAPS_API_KEY"]
    gemini_key = os.environ.get("GEMINI_API_KEY")
    async with _http_client() as http:
        maps = GoogleMapsClient(api_key, http, LOOKUP_CACHE, CONFIG)
        analyzer: Optional[RouteAnalyzer] = None
        if gemini_key:
            scorer = GeminiImageScorer(genai.Client(api_key=gemini_key), http, CONFIG.gemini_model)
            analyzer = RouteAnalyzer(
                scorer, CONFIG.scorer_concurrency, observers=[_log_analysis_state]
            )
        planner = RoutePlanner(
            maps,
            analyzer,
            http,
            street_view_key=api_key,
            street_view_client_key=os.environ.get("STREET_VIEW_CLIENT_KEY", ""),
            weather_key=os.environ.get("OPENWEATHER_API_KEY", ""),
            config=CONFIG,
        )
        return await planner.plan(source, destination, travel_mode)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/places/autocomplete")
def places_autocomplete():
    config_ok, missing = _check_service_config()
    if not config_ok:
        return _error("Service not configured", 503, missing_keys=missing)

    text = request.args.get("input", "")
    try:
        predictions = asyncio.run(search_places(text))
    except (MapsAPIError, httpx.HTTPError, TimeoutError) as e:
        logger.warning("Autocomplete failed for %r: %s", text, e)
        return _error("Place search is unavailable. Please try again.", 502)

    return jsonify({"predictions": [p.to_dict() for p in predictions]})


@app.route("/api/places/<place_id>")
def place_details(place_id):
    config_ok, missing = _check_service_config()
    if not config_ok:
        return _error("Service not configured", 503, missing_keys=missing)

    try:
        details = asyncio.run(lookup_place(place_id))
    except (MapsAPIError, httpx.HTTPError, TimeoutError) as e:
        logger.warning("Place details failed for %s: %s", place_id, e)
        return _error("Place lookup is unavailable. Please try again.", 502)

    return jsonify(details.to_dict())


@app.route("/api/routes", methods=["POST"])
@limiter.limit(RATE_LIMIT_ROUTES)
def compute_routes():
    """Plan and risk-annotate routes.

    Accepts JSON: {"source": ..., "destination": ..., "travel_mode": "DRIVE"}
    where each endpoint is {"placeId": ..}, {"address": ..}, {"lat": .., "lng": ..}
    or a plain address string.
    """
    config_ok, missing = _check_service_config()
    if not config_ok:
        return _error("Service not configured", 503, missing_keys=missing)

    data: Dict[str, Any] = request.get_json(silent=True) or {}
    source = data.get("source")
    destination = data.get("destination")
    travel_mode = str(data.get("travel_mode") or "DRIVE").upper()
    if not source or not destination:
        return _error("source and destination are required", 400)

    try:
        plan = asyncio.run(plan_routes(source, destination, travel_mode))
    except RouteRequestError as e:
        return _error(str(e), 400)
    except (MapsAPIError, httpx.HTTPError, TimeoutError) as e:
        logger.warning("[%s] Route planning failed: %s: %s", g.request_id, type(e).__name__, e)
        return _error("Routing provider is unavailable. Please try again.", 502)

    result = plan.to_dict()
    result["request_id"] = g.request_id
    return jsonify(result)


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

@app.errorhandler(429)
def rate_limit_exceeded(e):
    return _error("Too many requests. Please wait and try again.", 429)


@app.errorhandler(404)
def not_found(e):
    return _error("Not found", 404)


@app.errorhandler(500)
def internal_error(e):
    return _error("Internal server error", 500)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
