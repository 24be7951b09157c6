# Overview: Shared helpers for stock API routes: error bodies, payload parsing, retrying writes.

from flask import current_app, jsonify, request

from ..errors import StockError, ValidationError
from ..services.concurrency import run_with_retry


def error_response(exc: StockError):
    """Typed failure -> JSON body + status from the error class."""
    return jsonify(exc.to_dict()), exc.http_status


def json_payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def run_write(func, *, action: str, success_status: int = 200):
    """
    Run a write through the retry wrapper and turn the outcome into a response.

    func returns the JSON-serializable body on success.
    """
    try:
        body = run_with_retry(func)
        return jsonify(body), success_status
    except StockError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"error": "Internal server error"}), 500


def run_read(func, *, action: str):
    try:
        return jsonify(func()), 200
    except StockError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"error": "Internal server error"}), 500
