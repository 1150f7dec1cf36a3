from __future__ import annotations

import hashlib
import json
import os
import re
import time
import uuid
from datetime import datetime

import sentry_sdk
from flask import g, has_request_context, request
from sentry_sdk.integrations.flask import FlaskIntegration

from kiosk.utils.settings import env_bool, env_float

SERVICE_NAME = "kiosk-backend"
REDACTED = "[REDACTED]"
SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "x-csrf-token", "x-paystack-signature"})
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,80}$")


def get_request_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "")


def _inbound_request_id() -> str:
    # Caller-supplied ids are echoed into logs and audit rows, so only plain tokens are kept.
    rid = (request.headers.get("X-Request-Id") or "").strip()
    return rid if _REQUEST_ID_RE.match(rid) else uuid.uuid4().hex


def ip_fingerprint(ip: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{ip or ''}".encode("utf-8")).hexdigest()[:16]


def scrub_event(event, hint=None):
    """Sentry before_send hook: drops credentials and webhook signatures."""
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    req["headers"] = {k: (REDACTED if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}
    if req.get("cookies"):
        req["cookies"] = REDACTED
    if req.get("data") and "/api/auth" in str(req.get("url") or ""):
        req["data"] = REDACTED
    event["request"] = req
    return event


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("KIOSK_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=min(env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0), 1.0),
            before_send=scrub_event,
        )
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)
        return
    app.logger.info("sentry_enabled")


def init_otel(app) -> None:
    if not env_bool("OTEL_ENABLED", False):
        return
    endpoint = (os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip()
    if not endpoint:
        app.logger.info("otel_disabled_no_endpoint")
        return
    try:
        # Installed through the "otel" extra only.
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.flask import FlaskInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        from kiosk.extensions import db

        provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        FlaskInstrumentor().instrument_app(app)
        with app.app_context():
            SQLAlchemyInstrumentor().instrument(engine=db.engine)
    except Exception as e:
        app.logger.warning("otel_init_failed err=%s", e)
        return
    app.logger.info("otel_enabled endpoint=%s", endpoint)


def access_log_line(response, *, salt: str) -> dict:
    started = getattr(g, "request_started_at", None)
    return {
        "ts": datetime.utcnow().isoformat(),
        "request_id": get_request_id(),
        "method": request.method,
        "path": request.path,
        "status": int(response.status_code),
        "latency_ms": round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None,
        "user_id": getattr(g, "auth_user_id", None),
        "role": getattr(g, "auth_role", None),
        "ip_hash": ip_fingerprint(request.remote_addr or "", salt),
    }


def install_request_observers(app) -> None:
    @app.before_request
    def _stamp_request():
        g.request_id = _inbound_request_id()
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _log_request(response):
        response.headers["X-Request-Id"] = get_request_id() or uuid.uuid4().hex
        app.logger.info(json.dumps(access_log_line(response, salt=app.config.get("SECRET_KEY", "kiosk"))))
        return response
