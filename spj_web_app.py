#!/usr/bin/env python3
"""
SIAP-SPJ Web Application
JSON API for submitting SPJ claims, listing them, the dashboard aggregates
and report exports.
"""

import logging
from datetime import timedelta
from functools import wraps

from flask import Flask, Blueprint, current_app, g, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from access_control import (
    CREATOR_ROLES, Role, SessionManager, build_authenticator,
    require_role, require_session, visible_menu,
)
from api_response import APIResponse, handle_api_errors
from config import Config, get_config
from database_pool import ConnectionPool, SPJStore
from reports import export_csv, export_filename, export_pdf, export_xlsx
from services import ClaimService
from validators import ClaimSubmission, LoginRequest, validate_json

logger = logging.getLogger(__name__)

# Initialize rate limiter; limits and storage come from app.config
limiter = Limiter(key_func=get_remote_address)

api = Blueprint('api', __name__)

REPORT_FILTERS = ('search', 'sumber', 'jenis', 'metode', 'start', 'end')


def _configure_logging(config: Config):
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format=config.LOG_FORMAT
    )
    if config.LOG_FILE:
        handler = logging.FileHandler(config.LOG_FILE)
        handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def build_service(config: Config) -> ClaimService:
    """Claim service backed by a pooled store at the configured path."""
    pool = ConnectionPool(
        config.DATABASE_PATH,
        pool_size=config.DATABASE_POOL_SIZE,
        max_overflow=config.DATABASE_MAX_OVERFLOW,
        timeout=config.DATABASE_TIMEOUT
    )
    return ClaimService(SPJStore(pool, id_prefix=config.SPJ_ID_PREFIX))


def create_app(config: Config = None, service: ClaimService = None, authenticator=None) -> Flask:
    """
    Build the Flask application.

    ``service`` and ``authenticator`` default to ones built from ``config``.
    """
    config = config or get_config()
    config.validate()
    _configure_logging(config)

    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config['MAX_CONTENT_LENGTH'] = config.MAX_CONTENT_LENGTH
    app.config['SESSION_COOKIE_SECURE'] = config.SESSION_COOKIE_SECURE
    app.config['SESSION_COOKIE_HTTPONLY'] = config.SESSION_COOKIE_HTTPONLY
    app.config['SESSION_COOKIE_SAMESITE'] = config.SESSION_COOKIE_SAMESITE
    app.config['SESSION_LIFETIME_MINUTES'] = config.SESSION_LIFETIME_MINUTES
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(minutes=config.SESSION_LIFETIME_MINUTES)
    app.config['PUBLIC_SUBMISSION_ENABLED'] = config.PUBLIC_SUBMISSION_ENABLED
    app.config['EXPORT_SHEET_TITLE'] = config.EXPORT_SHEET_TITLE
    app.config['API_VERSION'] = config.API_VERSION

    app.config['RATELIMIT_ENABLED'] = config.RATE_LIMIT_ENABLED
    app.config['RATELIMIT_DEFAULT'] = config.RATE_LIMIT_DEFAULT
    app.config['RATELIMIT_STORAGE_URI'] = config.RATE_LIMIT_STORAGE_URL
    app.config['RATE_LIMIT_SUBMIT'] = config.RATE_LIMIT_SUBMIT
    app.config['RATE_LIMIT_LOGIN'] = config.RATE_LIMIT_LOGIN
    limiter.init_app(app)

    app.extensions['spj_service'] = service or build_service(config)
    app.extensions['spj_authenticator'] = authenticator or build_authenticator(config)

    app.register_blueprint(api, url_prefix=config.API_PREFIX)

    @app.errorhandler(429)
    def handle_rate_limited(e):
        return APIResponse.rate_limited()

    @app.errorhandler(413)
    def handle_too_large(e):
        return APIResponse.error('Request body too large', status_code=413, error_code='PAYLOAD_TOO_LARGE')

    @app.errorhandler(404)
    def handle_not_found(e):
        return APIResponse.error('Endpoint not found', status_code=404, error_code='NOT_FOUND')

    logger.info(f"SPJ app created (env={getattr(config, 'ENV', 'default')}, db={config.DATABASE_PATH})")
    return app


def _service() -> ClaimService:
    return current_app.extensions['spj_service']


def _report_filters() -> dict:
    return {key: request.args.get(key) for key in REPORT_FILTERS if request.args.get(key)}


def resolve_submitter(f):
    """
    Decide who is creating a claim and store it in ``g.actor``.

    Logged-in creator roles act as themselves; without a session the
    public form is accepted when enabled and logged as ``public@<address>``.
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        principal = SessionManager.current_principal()
        if principal is not None:
            if principal.role not in CREATOR_ROLES:
                return APIResponse.forbidden(f"Role {principal.role.value} may not create SPJ")
            g.actor = principal.username
        elif current_app.config['PUBLIC_SUBMISSION_ENABLED']:
            g.actor = f"public@{request.remote_addr or 'unknown'}"
        else:
            return APIResponse.unauthorized("Login required to submit SPJ")
        return f(*args, **kwargs)
    return wrapper


# ==================== Session ====================

@api.route('/health')
@limiter.exempt
def health():
    """Health check endpoint."""
    try:
        claims = _service().store.count_rows('spj')
        database = 'ok'
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        claims, database = None, 'error'
    status_code = 200 if database == 'ok' else 503
    return APIResponse.success({
        'status': 'healthy' if database == 'ok' else 'degraded',
        'version': current_app.config['API_VERSION'],
        'components': {'database': database},
        'claims': claims,
    }, status_code=status_code)


@api.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['RATE_LIMIT_LOGIN'])
@handle_api_errors
@validate_json(LoginRequest)
def login():
    credentials = request.validated_data
    principal = current_app.extensions['spj_authenticator'].authenticate(
        credentials.username, credentials.password
    )
    if principal is None:
        return APIResponse.unauthorized("Invalid username or password")

    SessionManager.create_session(principal)
    logger.info(f"User {principal.username} logged in as {principal.role.value}")
    return APIResponse.success({
        'user': principal.to_dict(),
        'menu': [item.id for item in visible_menu(principal.role)],
    }, message="Logged in")


@api.route('/logout', methods=['POST'])
def logout():
    SessionManager.destroy_session()
    return APIResponse.success(message="Logged out")


@api.route('/me')
@require_session
def me():
    principal = SessionManager.current_principal()
    return APIResponse.success({
        'user': principal.to_dict(),
        'menu': [{'id': item.id, 'label': item.label} for item in visible_menu(principal.role)],
    })


# ==================== Claims ====================

@api.route('/spj', methods=['GET'])
@require_session
@handle_api_errors
def list_spj():
    """All claims newest first; optional search/filter query parameters."""
    rows = _service().list_claims(_report_filters())
    return APIResponse.success(rows)


@api.route('/spj', methods=['POST'])
@limiter.limit(lambda: current_app.config['RATE_LIMIT_SUBMIT'])
@handle_api_errors
@resolve_submitter
@validate_json(ClaimSubmission)
def create_spj():
    """Store one claim with its collections; returns the new identifiers."""
    created = _service().create_claim(request.validated_data, g.actor)
    return APIResponse.created({'id': created.id, 'no_spj': created.no_spj}, message="SPJ saved")


@api.route('/stats')
@require_session
@handle_api_errors
def stats():
    return APIResponse.success(_service().get_stats().to_dict())


@api.route('/activity-log')
@require_role(Role.ADMIN)
@handle_api_errors
def activity_log():
    return APIResponse.success(_service().list_activity())


# ==================== Reports ====================

@api.route('/reports/summary')
@require_session
@handle_api_errors
def report_summary():
    group_by = request.args.get('group_by', 'sumber_anggaran')
    summary = _service().summarize(group_by, _report_filters())
    return APIResponse.success({
        'group_by': group_by,
        'groups': summary,
        'count': sum(s['count'] for s in summary),
        'total': sum(s['total'] for s in summary),
    })


@api.route('/export/spj.xlsx')
@require_session
@handle_api_errors
def export_spj_xlsx():
    rows = _service().list_claims(_report_filters())
    return APIResponse.attachment(
        export_xlsx(rows, current_app.config['EXPORT_SHEET_TITLE']),
        export_filename('xlsx'),
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )


@api.route('/export/spj.csv')
@require_session
@handle_api_errors
def export_spj_csv():
    rows = _service().list_claims(_report_filters())
    return APIResponse.attachment(export_csv(rows), export_filename('csv'), 'text/csv')


@api.route('/export/spj.pdf')
@require_session
@handle_api_errors
def export_spj_pdf():
    """Printable report of the (filtered) claim list."""
    rows = _service().list_claims(_report_filters())
    return APIResponse.attachment(export_pdf(rows), export_filename('pdf', prefix='Laporan_SPJ'), 'application/pdf')
