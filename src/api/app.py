"""
Quart application exposing digests, source health and the admin triggers.
"""
import logging
import re
import secrets
import time
from dataclasses import asdict, dataclass
from functools import wraps
from typing import Any, Dict, Optional, Sequence

import httpx
from quart import Blueprint, Quart, current_app, jsonify, redirect, request
from quart_cors import cors

from core.entities import DigestItem, PipelineResult, today_utc
from services.ai_chat import AIChat, ChatError, is_valid_prompt_key
from services.config import Config
from services.database import Database
from services.digest_store import DigestStore
from services.event_log import EventLog
from services.llm import LLMProvider, build_providers
from services.rate_limit import RateLimiter
from workflows.digest_pipeline import DigestPipeline

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
FINGERPRINT_HEADER = "X-Device-Fingerprint"
EXTENSION_KEY = "feed_digest"

api = Blueprint("api", __name__, url_prefix="/api")


@dataclass
class Services:
    config: Config
    database: Database
    digests: DigestStore
    pipeline: DigestPipeline
    rate_limiter: RateLimiter
    chat: AIChat


def services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def serialize_item(item: DigestItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "category": item.category,
        "title": item.title,
        "summary": item.summary,
        "whyItMatters": item.why_it_matters,
        "sourceName": item.source_name,
        "sourceUrl": item.source_url,
        "commentsUrl": item.comments_url,
        "publishedAt": item.published_at,
        "position": item.position,
        "commentSummary": item.comment_summary,
        "commentCount": item.comment_count,
        "commentScore": item.comment_score,
        "commentSummarySource": item.comment_summary_source,
    }


def pipeline_response(result: PipelineResult):
    body = {
        "status": result.status,
        "message": result.message,
        "digestId": result.digest_id,
        "itemCount": result.item_count,
    }
    return jsonify(body), (500 if result.status == "error" else 200)


def is_authorized(auth_header: str, admin_key: Optional[str]) -> bool:
    """Constant-time bearer token check; no configured key means nobody is authorized."""
    if not admin_key:
        return False
    return secrets.compare_digest(auth_header.encode(), f"Bearer {admin_key}".encode())


# ==================== Decorators ====================

def admin_required(f):
    """Reject with 401 before the route does anything."""
    @wraps(f)
    async def decorated_function(*args, **kwargs):
        if not is_authorized(request.headers.get("Authorization", ""), services().config.ADMIN_KEY):
            return jsonify({"error": "Unauthorized"}), 401
        return await f(*args, **kwargs)
    return decorated_function


def fingerprint_required(f):
    """Pass the caller's device fingerprint to the route."""
    @wraps(f)
    async def decorated_function(*args, **kwargs):
        fingerprint = request.headers.get(FINGERPRINT_HEADER, "").strip()
        if not fingerprint:
            return jsonify({"error": f"Missing {FINGERPRINT_HEADER} header"}), 400
        return await f(fingerprint, *args, **kwargs)
    return decorated_function


# ==================== Public Routes ====================

@api.route("/today")
async def today():
    return redirect(f"/api/digest/{today_utc()}")


@api.route("/digest/<date>")
async def get_digest(date: str):
    if not DATE_RE.match(date):
        return jsonify({"error": "Invalid date format, use YYYY-MM-DD"}), 400

    digest = await services().digests.get_digest(date)
    if digest is None:
        return jsonify({"error": "No digest for this date", "date": date}), 404

    return jsonify({
        "id": digest.id,
        "date": digest.date,
        "itemCount": digest.item_count,
        "items": [serialize_item(item) for item in digest.items],
    })


@api.route("/digests")
async def list_digests():
    rows = await services().digests.list_digests(limit=30)
    return jsonify([{"date": row["date"], "itemCount": row["item_count"]} for row in rows])


# ==================== Admin Routes ====================

@api.route("/health")
@admin_required
async def health():
    config = services().config
    categories = config.source_categories()
    names = config.source_names()
    now = int(time.time())

    records = []
    for record in await services().digests.list_source_health():
        category = categories.get(record.source_id)
        threshold_days = config.freshness_days(category)
        stale = not record.last_success_at or now - record.last_success_at > threshold_days * 86400
        records.append({
            "sourceId": record.source_id,
            "sourceName": names.get(record.source_id, record.source_id),
            "category": category or "unknown",
            "lastSuccessAt": record.last_success_at,
            "lastErrorAt": record.last_error_at,
            "lastError": record.last_error,
            "itemCount": record.item_count,
            "consecutiveFailures": record.consecutive_failures,
            "stale": stale,
            "thresholdDays": threshold_days,
        })
    return jsonify(records)


@api.route("/admin/dashboard")
@admin_required
async def dashboard():
    return jsonify(await services().digests.dashboard())


@api.route("/fetch", methods=["POST"])
@admin_required
async def fetch():
    summary = await services().pipeline.fetch(today_utc())
    return jsonify({
        "totalItems": summary.total_items,
        "newItems": summary.new_items,
        "sourcesOk": summary.sources_ok,
        "sourcesTotal": summary.sources_total,
    })


@api.route("/generate", methods=["POST"])
@admin_required
async def generate():
    return pipeline_response(await services().pipeline.generate(today_utc()))


@api.route("/rebuild", methods=["POST"])
@api.route("/rebuild/<date>", methods=["POST"])
@admin_required
async def rebuild(date: Optional[str] = None):
    today_date = today_utc()
    if date is not None and date != today_date:
        return jsonify({"error": "Only today's digest can be rebuilt", "today": today_date}), 400
    return pipeline_response(await services().pipeline.rebuild(today_date))


@api.route("/summarize", methods=["POST"])
@admin_required
async def summarize():
    return pipeline_response(await services().pipeline.summarize(today_utc()))


@api.route("/enrich-comments", methods=["POST"])
@admin_required
async def enrich_comments():
    raw_limit = request.args.get("limit")
    limit = None
    if raw_limit is not None:
        try:
            limit = int(raw_limit)
        except ValueError:
            limit = 0
        if limit < 1:
            return jsonify({"error": "limit must be a positive integer"}), 400
    summary = await services().pipeline.enrich_comments(today_utc(), limit=limit)
    return jsonify(asdict(summary))


# ==================== Assistant Routes ====================

@api.route("/ai/remaining")
@fingerprint_required
async def ai_remaining(fingerprint: str):
    remaining = await services().rate_limiter.remaining(fingerprint)
    return jsonify({"remaining": remaining})


@api.route("/ai/chat", methods=["POST"])
@fingerprint_required
async def ai_chat(fingerprint: str):
    data = await request.get_json(silent=True) or {}
    prompt_key = data.get("prompt", "")
    if not is_valid_prompt_key(prompt_key):
        return jsonify({"error": f"Invalid prompt: {prompt_key}"}), 400

    allowed, remaining = await services().rate_limiter.check_and_record(fingerprint)
    if not allowed:
        return jsonify({"error": "Daily limit reached", "remaining": 0}), 429

    try:
        answer = await services().chat.answer(prompt_key)
    except ChatError as e:
        return jsonify({"error": str(e), "remaining": remaining}), 502

    return jsonify({"text": answer.text, "remaining": remaining})


# ==================== Factory ====================

def create_app(
    config: Config,
    database: Optional[Database] = None,
    providers: Optional[Sequence[LLMProvider]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Quart:
    """
    Build the application around an explicit configuration.
    providers and client default to the configured LLM chain and a per-run HTTP client.
    """
    database = database or Database(config.DATABASE_PATH)
    providers = build_providers(config) if providers is None else list(providers)
    event_log = EventLog(database)

    app = Quart(__name__)
    app = cors(app, allow_origin=config.CORS_ORIGINS or "*")
    app.extensions[EXTENSION_KEY] = Services(
        config=config,
        database=database,
        digests=DigestStore(database),
        pipeline=DigestPipeline(config, database, providers, event_log, client=client),
        rate_limiter=RateLimiter(database),
        chat=AIChat(database, providers, event_log),
    )
    app.register_blueprint(api)

    @app.before_serving
    async def startup():
        await database.init_tables()
        logger.info("API started, database initialized")

    return app
