#!/usr/bin/env python3
"""
JSON envelope shared by every SPJ endpoint, plus the error mapping for
route handlers.

Every body carries ``status`` and ``timestamp``; successes add ``data``,
errors add ``message`` and usually an ``error_code``.
"""

from flask import jsonify, send_file
from functools import wraps
from typing import Any, Dict
from datetime import datetime
import io
import logging
import secrets

from database_pool import ClaimStoreError

logger = logging.getLogger(__name__)


def _envelope(status: str, **fields) -> Dict[str, Any]:
    body = {'status': status, 'timestamp': datetime.now().isoformat()}
    body.update({k: v for k, v in fields.items() if v is not None})
    return body


class APIResponse:
    """Builds ``(response, status)`` tuples in the SPJ envelope."""

    @staticmethod
    def success(data: Any = None, message: str = None, status_code: int = 200):
        return jsonify(_envelope('success', data=data, message=message or None)), status_code

    @staticmethod
    def created(data: Any, message: str = None):
        """201 for a newly stored claim."""
        return APIResponse.success(data=data, message=message, status_code=201)

    @staticmethod
    def error(message: str, status_code: int = 400, error_code: str = None, details: Any = None):
        logger.warning(f"SPJ API {status_code} {error_code or ''}: {message}")
        body = _envelope('error', message=message, error_code=error_code, details=details or None)
        return jsonify(body), status_code

    @staticmethod
    def validation_error(errors: Dict[str, str], message: str = "Validation failed"):
        """422 with ``{dotted.field.path: message}`` under ``details.validation_errors``."""
        return APIResponse.error(message, 422, 'VALIDATION_ERROR', {'validation_errors': errors})

    @staticmethod
    def unauthorized(message: str = "Login required"):
        return APIResponse.error(message, 401, 'UNAUTHORIZED')

    @staticmethod
    def forbidden(message: str = "Your role may not use this feature"):
        return APIResponse.error(message, 403, 'FORBIDDEN')

    @staticmethod
    def rate_limited(retry_after: int = None):
        response, status_code = APIResponse.error("Too many requests, please wait", 429, 'RATE_LIMITED')
        if retry_after:
            response.headers['Retry-After'] = str(retry_after)
        return response, status_code

    @staticmethod
    def server_error(message: str = "Internal server error", reference: str = None):
        """
        500 with a generic message. ``reference`` is echoed to the client
        and appears in the server log next to the traceback.
        """
        details = {'reference': reference} if reference else None
        return APIResponse.error(message, 500, 'SERVER_ERROR', details)

    @staticmethod
    def attachment(content, filename: str, mimetype: str):
        """Downloadable export (xlsx, csv, pdf) from bytes or text."""
        if isinstance(content, str):
            content = content.encode('utf-8')
        return send_file(io.BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)


def handle_api_errors(f):
    """
    Map exceptions escaping a route to the envelope.

    Store failures and anything unexpected become a generic 500; the
    underlying error is only logged.
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ClaimStoreError as e:
            reference = secrets.token_hex(4)
            logger.error(f"SPJ store failure [{reference}]: {e}")
            return APIResponse.server_error("Failed to store SPJ", reference=reference)
        except ValueError as e:
            return APIResponse.error(str(e), status_code=400)
        except PermissionError as e:
            return APIResponse.forbidden(str(e))
        except Exception:
            reference = secrets.token_hex(4)
            logger.exception(f"Unhandled SPJ API error [{reference}]")
            return APIResponse.server_error("An unexpected error occurred", reference=reference)

    return wrapper
