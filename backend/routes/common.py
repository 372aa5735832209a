"""
ルート共通のヘルパー（エラーレスポンス・ログイン確認）。
Helpers shared by the route blueprints.
"""

import logging
from functools import wraps
from typing import Any, Callable, Tuple, Union

from flask import Response, g, jsonify, request

from backend import redis_client, security

logger = logging.getLogger(__name__)

ResponseOrTuple = Union[Response, Tuple[Response, int]]


def error_response(message: str, status: int = 400, **extra: Any) -> ResponseOrTuple:
    """エラーレスポンスを返すヘルパー関数 / JSON error response."""
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


def json_body() -> Any:
    """JSONボディ（不正なら None） / Parsed JSON body, None when missing or invalid."""
    return request.get_json(silent=True)


def login_required(view: Callable) -> Callable:
    """
    ログイン済みスタッフのみ許可するデコレータ
    Allow logged-in staff only.

    1. 更新系リクエストは CSRF 検証（403）
    2. session_id Cookie からスタッフ情報を取得（401）
    g.session_id と g.staff を設定してからビューを呼び出します。
    1) CSRF check for state-changing requests (403)
    2) Staff profile looked up from the session_id cookie (401)
    Sets g.session_id and g.staff before calling the view.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not security.is_csrf_valid(request):
            return error_response("Invalid request origin.", status=403)

        session_id = request.cookies.get(security.SESSION_COOKIE_NAME)
        if not session_id:
            return error_response("Not authenticated.", status=401)

        staff = redis_client.get_staff_session(session_id)
        if not staff:
            return error_response("Session expired. Please log in again.", status=401)

        g.session_id = session_id
        g.staff = staff
        return view(*args, **kwargs)

    return wrapper


def admin_required(view: Callable) -> Callable:
    """管理者ロールのみ許可（login_required の内側で使う） / Admin role only."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        staff = getattr(g, "staff", None) or {}
        if staff.get("role") != "admin":
            return error_response("Administrator role required.", status=403)
        return view(*args, **kwargs)

    return wrapper
