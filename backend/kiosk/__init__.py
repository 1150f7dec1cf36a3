import os
from pathlib import Path

import click
from flask import Flask, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from kiosk.extensions import cors, db, login_manager, migrate
from kiosk.models import User
from kiosk.segments.segment_audit_admin import audit_bp
from kiosk.segments.segment_auth import auth_bp
from kiosk.segments.segment_bank_accounts import bank_accounts_bp
from kiosk.segments.segment_catalog import products_bp, vendor_products_bp
from kiosk.segments.segment_disputes import admin_disputes_bp, buyer_disputes_bp, vendor_disputes_bp
from kiosk.segments.segment_notifications import notifications_bp
from kiosk.segments.segment_orders import admin_orders_bp, orders_bp, vendor_orders_bp
from kiosk.segments.segment_payment_webhooks import webhooks_bp
from kiosk.segments.segment_payouts import admin_payouts_bp, vendor_payouts_bp
from kiosk.integrations.payments.factory import payment_health
from kiosk.utils.csrf import requires_csrf, validate_request_csrf
from kiosk.utils.errors import ApiError
from kiosk.utils.observability import get_request_id, init_otel, init_sentry, install_request_observers
from kiosk.utils.rate_limit import enforce_global_tiers
from kiosk.utils.settings import env_int, env_name, is_production


def _resolve_alembic_head() -> str:
    from alembic.config import Config
    from alembic.script import ScriptDirectory
    from alembic.util import CommandError

    migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
    try:
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        heads = ScriptDirectory.from_config(cfg).get_heads()
    except (CommandError, OSError):
        return "unknown"
    return heads[0] if heads else "unknown"


def _error_response(payload: dict, status: int):
    rid = get_request_id()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), int(status)


def create_app(config_overrides: dict | None = None):
    app = Flask(__name__)
    init_sentry(app)

    env = env_name()

    # Production safety checks
    if is_production():
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        if not (os.getenv("OTP_SECRET_PEPPER") or "").strip():
            raise RuntimeError("OTP_SECRET_PEPPER must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'kiosk.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_recycle": env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    if config_overrides:
        app.config.update(config_overrides)

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and not is_production():
        origins = ["http://localhost:3000"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}}, supports_credentials=True)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    install_request_observers(app)
    init_otel(app)

    @app.errorhandler(ApiError)
    def _api_error(error: ApiError):
        if error.status >= 500:
            app.logger.error("api_error code=%s path=%s message=%s", error.code, request.path, error.message)
        resp, status = _error_response(error.to_payload(), error.status)
        retry_after = (error.extra or {}).get("retry_after")
        if retry_after:
            resp.headers["Retry-After"] = str(int(retry_after))
        return resp, status

    @app.errorhandler(IntegrityError)
    def _integrity_error(error: IntegrityError):
        db.session.rollback()
        app.logger.warning("integrity_error path=%s err=%s", request.path, str(error.orig)[:240])
        payload = {"ok": False, "error": "CONSTRAINT_VIOLATION", "message": "Constraint violation", "status": 422}
        return _error_response(payload, 422)

    @app.errorhandler(SQLAlchemyError)
    def _database_error(error: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception("database_error path=%s", request.path)
        payload = {"ok": False, "error": "DATABASE_ERROR", "message": "Database error", "status": 500}
        return _error_response(payload, 500)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        code = (error.name or "Error").upper().replace(" ", "_")
        payload = {
            "ok": False,
            "error": code,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        return _error_response(payload, int(error.code or 500))

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "INTERNAL_SERVER_ERROR",
            "message": "Internal server error",
            "status": 500,
        }
        return _error_response(payload, 500)

    @app.before_request
    def _csrf_guard():
        if not requires_csrf(request.method, request.path):
            return None
        if validate_request_csrf(request):
            return None
        app.logger.warning("csrf_validation_failed path=%s method=%s", request.path, request.method)
        payload = {
            "ok": False,
            "error": "CSRF_VALIDATION_FAILED",
            "message": "CSRF token missing or invalid",
            "status": 403,
        }
        return _error_response(payload, 403)

    app.before_request(enforce_global_tiers)

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    for bp in (
        auth_bp,
        products_bp,
        vendor_products_bp,
        orders_bp,
        vendor_orders_bp,
        admin_orders_bp,
        buyer_disputes_bp,
        vendor_disputes_bp,
        admin_disputes_bp,
        vendor_payouts_bp,
        admin_payouts_bp,
        bank_accounts_bp,
        webhooks_bp,
        notifications_bp,
        audit_bp,
    ):
        app.register_blueprint(bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            db_state = "fail"
            app.logger.warning("health_db_probe_failed err=%s", str(e)[:240])
        return jsonify(
            {
                "ok": db_state == "ok",
                "service": "kiosk-backend",
                "env": env,
                "db": db_state,
                "payments": payment_health(),
                "git_sha": (os.getenv("GIT_SHA") or "unknown").strip(),
                "alembic_head": _resolve_alembic_head(),
            }
        ), (200 if db_state == "ok" else 503)

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if is_production() and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        u = User.query.filter_by(email=email).first()
        if u is None:
            u = User(name=email.split("@")[0], email=email, role="admin")
            db.session.add(u)
        u.role = "admin"
        u.set_password(password)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise click.ClickException("Failed to bootstrap admin.")
        click.echo(f"admin_bootstrap_ok {u.email}")

    @app.cli.command("auto-complete-orders")
    @click.option("--dry-run", is_flag=True, help="List eligible orders without changing them.")
    def auto_complete_orders(dry_run: bool):
        from kiosk.jobs.auto_complete import preview_auto_complete, run_auto_complete

        if dry_run:
            preview = preview_auto_complete()
            click.echo(f"eligible={preview['eligibleCount']} ids={[o['id'] for o in preview['orders']]}")
            return
        result = run_auto_complete()
        click.echo(f"completed={result['completedCount']} ids={result['orderIds']}")

    return app
