"""
BallotVault Web API
===================

Flask JSON gateway over the credential and session subsystem.

Clients authenticate with ``POST /api/auth/login`` and send the returned
token as ``Authorization: Bearer <token>``. Sessions are pinned to the
request's remote address.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

from flask import Flask, current_app, g, jsonify, request

from ballotvault.core.results import ErrorKind, Result, STORAGE_FAILURE_MESSAGE
from ballotvault.db import StorageUnavailableError
from ballotvault.security.constants import DEFAULT_AUDIT_LIMIT
from ballotvault.services import SecurityServices


_log = logging.getLogger("ballotvault.web")

STATUS_FOR_ERROR = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.LOCKED: 423,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}

SELF_SERVICE_RESET_MESSAGE = "If the account exists, its password has been reset"


def _services() -> SecurityServices:
    return current_app.extensions["ballotvault"]


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text(data: dict, key: str) -> str:
    """String field of a JSON body; missing or non-string values read as empty."""
    value = data.get(key, "")
    return value if isinstance(value, str) else ""


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def error_response(error: Optional[ErrorKind], message: str):
    status = STATUS_FOR_ERROR.get(error, 400)
    return jsonify({"error": message or "Request failed", "kind": error.value if error else None}), status


def result_response(result: Result, payload=None, status: int = 200):
    if not result:
        return error_response(result.error, result.message)
    return jsonify(payload if payload is not None else {"message": result.message or "OK"}), status


def require_session(f):
    """Resolve the bearer token to a live session of an active account."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        services = _services()
        token = _bearer_token()
        session = services.sessions.resolve(token, request.remote_addr)
        if session is None:
            return jsonify({"error": "Unauthorized"}), 401

        account = services.store.get(session.account_id)
        if account.error is ErrorKind.STORAGE_UNAVAILABLE:
            return error_response(account.error, account.message)
        if not account:
            services.sessions.invalidate(token)
            return jsonify({"error": "Unauthorized"}), 401

        g.token = token
        g.session = session
        g.account = account.value
        return f(*args, **kwargs)
    return wrapper


def create_app(services: SecurityServices) -> Flask:
    """Build the Flask application around a wired ``SecurityServices``."""
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 64 * 1024
    app.extensions["ballotvault"] = services

    @app.after_request
    def add_security_headers(response):
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.errorhandler(StorageUnavailableError)
    def storage_unavailable(e):
        _log.error("Request failed on storage: %s", e)
        return error_response(ErrorKind.STORAGE_UNAVAILABLE, STORAGE_FAILURE_MESSAGE)

    # ============================================================
    # HEALTH CHECK
    # ============================================================

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "healthy",
            "version": services.config.app.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # ============================================================
    # AUTHENTICATION ROUTES
    # ============================================================

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = _body()
        account_id = str(data.get("account_id", "")).strip()
        password = _text(data, "password")
        user_agent = request.headers.get("User-Agent")

        outcome = services.auth.authenticate(account_id, password, request.remote_addr, user_agent)
        if not outcome:
            return error_response(outcome.error, outcome.message)

        account = services.store.get(account_id)
        if not account:
            return error_response(account.error, account.message)

        token = services.sessions.create(account_id, request.remote_addr, user_agent)
        return jsonify({
            "message": "Login successful",
            "token": token,
            "account_id": account_id,
            "display_name": account.value.display_name,
            "role": account.value.role.value,
            "needs_password_reset": outcome.needs_reset,
            "expires_in": services.config.security.session_timeout_seconds,
        })

    @app.route("/api/auth/logout", methods=["POST"])
    @require_session
    def logout():
        services.sessions.invalidate(g.token)
        return jsonify({"message": "Logged out successfully"})

    @app.route("/api/auth/validate")
    @require_session
    def validate():
        return jsonify({
            "valid": True,
            "account_id": g.account.account_id,
            "role": g.account.role.value,
            "permissions": sorted(p.value for p in services.roles.permissions_of(g.account.role)),
            "expires_at": g.session.expires_at.isoformat(),
        })

    @app.route("/api/auth/password", methods=["POST"])
    @require_session
    def change_password():
        data = _body()
        result = services.auth.change_own_password(
            g.account.account_id,
            _text(data, "old_password"),
            _text(data, "new_password"),
            ip=request.remote_addr,
        )
        return result_response(result, {"message": "Password changed successfully"})

    @app.route("/api/auth/forgot-password", methods=["POST"])
    def forgot_password():
        if not services.config.app.allow_self_service_reset:
            return jsonify({"error": "Not found"}), 404

        data = _body()
        result = services.auth.force_reset_password(
            str(data.get("account_id", "")).strip(),
            _text(data, "new_password"),
            ip=request.remote_addr,
        )
        if result.error in (ErrorKind.INVALID_INPUT, ErrorKind.STORAGE_UNAVAILABLE):
            return error_response(result.error, result.message)
        # Unknown ids answer the same as known ones
        return jsonify({"message": SELF_SERVICE_RESET_MESSAGE})

    # ============================================================
    # ACCOUNT ADMINISTRATION
    # ============================================================

    @app.route("/api/accounts")
    @require_session
    def list_accounts():
        include_inactive = request.args.get("include_inactive", "").lower() in {"1", "true", "yes"}
        result = services.auth.list_accounts(g.account.account_id, include_inactive)
        if not result:
            return error_response(result.error, result.message)
        return jsonify({"accounts": [summary.to_dict() for summary in result.value]})

    @app.route("/api/accounts", methods=["POST"])
    @require_session
    def add_account():
        data = _body()
        result = services.auth.add_account_as_super(
            g.account.account_id,
            str(data.get("account_id", "")).strip(),
            data.get("display_name", ""),
            _text(data, "password"),
            data.get("role"),
        )
        if not result:
            return error_response(result.error, result.message)
        return jsonify({
            "message": "Account created successfully",
            "account": result.value.summary().to_dict(),
        }), 201

    @app.route("/api/accounts/<account_id>", methods=["DELETE"])
    @require_session
    def delete_account(account_id):
        result = services.auth.delete_account_as_super(g.account.account_id, account_id)
        return result_response(result, {"message": f"Account {account_id} deactivated"})

    @app.route("/api/accounts/<account_id>/role", methods=["PUT"])
    @require_session
    def reassign_role(account_id):
        result = services.auth.reassign_role_as_super(
            g.account.account_id, account_id, _body().get("role"),
        )
        if not result:
            return error_response(result.error, result.message)
        return jsonify({
            "message": "Role updated",
            "account": result.value.summary().to_dict(),
        })

    @app.route("/api/accounts/<account_id>/password", methods=["POST"])
    @require_session
    def reset_password(account_id):
        result = services.auth.reset_password_as_super(
            g.account.account_id, account_id, _text(_body(), "new_password"),
        )
        return result_response(result, {"message": f"Password of {account_id} reset; change required at next login"})

    # ============================================================
    # AUDIT
    # ============================================================

    @app.route("/api/audit")
    @require_session
    def audit_trail():
        limit = request.args.get("limit", DEFAULT_AUDIT_LIMIT, type=int)
        result = services.auth.audit_trail(
            g.account.account_id, limit, request.args.get("account_id") or None,
        )
        if not result:
            return error_response(result.error, result.message)
        return jsonify({"entries": [entry.to_dict() for entry in result.value]})

    @app.route("/api/audit/recent")
    @require_session
    def recent_audit():
        limit = request.args.get("limit", DEFAULT_AUDIT_LIMIT, type=int)
        result = services.auth.recent_audit(g.account.account_id, limit)
        if not result:
            return error_response(result.error, result.message)
        return jsonify({"entries": [entry.to_dict() for entry in result.value]})

    return app
