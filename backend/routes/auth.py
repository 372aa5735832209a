from flask import Blueprint, jsonify, make_response, request
import logging

from backend import redis_client, security, staff_service
from backend.database import SessionLocal
from backend.routes.common import ResponseOrTuple, error_response, json_body

logger = logging.getLogger(__name__)

# Blueprintの定義: ログイン・ログアウト・セッション確認
auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/login", methods=["POST"])
def login() -> ResponseOrTuple:
    """
    ログイン処理エンドポイント

    パスワードを検証し、新しいセッションIDを発行してCookieに設定します。
    """
    try:
        if not security.is_csrf_valid(request):
            return error_response("Invalid request origin.", status=403)

        data = json_body()
        if not isinstance(data, dict):
            return error_response("Request body must be JSON.", status=400)

        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        if not email or not password:
            return error_response("Email and password are required", status=400)

        db = SessionLocal()
        try:
            staff = staff_service.authenticate(db, email, password)
            profile = staff_service.session_profile(staff) if staff else None
        finally:
            db.close()

        if profile is None:
            return error_response("Invalid email or password", status=401)

        # 古いセッションがあれば破棄してから発行し直す
        old_session_id = request.cookies.get(security.SESSION_COOKIE_NAME)
        if old_session_id:
            redis_client.reset_session(old_session_id)

        session_id = security.new_session_id()
        redis_client.save_staff_session(session_id, profile)
        logger.info("Staff %s logged in", profile["id"])

        response = make_response(jsonify({"success": True, "user": profile}))
        response.set_cookie(security.SESSION_COOKIE_NAME, session_id, **security.cookie_settings(request))
        return response
    except Exception as e:
        logger.error(f"Error in login: {e}", exc_info=True)
        return error_response("Login failed", status=500)


@auth_bp.route("/session", methods=["GET"])
def current_session() -> ResponseOrTuple:
    """ログイン中のスタッフ情報（未ログインなら user: null）"""
    try:
        session_id = request.cookies.get(security.SESSION_COOKIE_NAME)
        profile = redis_client.get_staff_session(session_id) if session_id else None
        return jsonify({"success": True, "user": profile})
    except Exception as e:
        logger.error(f"Error in current_session: {e}", exc_info=True)
        return jsonify({"success": True, "user": None})


@auth_bp.route("/logout", methods=["POST"])
def logout() -> ResponseOrTuple:
    """セッションデータを削除し、Cookieを無効化する"""
    try:
        if not security.is_csrf_valid(request):
            return error_response("Invalid request origin.", status=403)

        session_id = request.cookies.get(security.SESSION_COOKIE_NAME)
        if session_id:
            redis_client.reset_session(session_id)

        response = make_response(jsonify({"success": True}))
        settings = security.cookie_settings(request)
        settings.pop("max_age", None)
        response.delete_cookie(
            security.SESSION_COOKIE_NAME,
            path=settings["path"],
            secure=settings["secure"],
            httponly=settings["httponly"],
            samesite=settings["samesite"],
        )
        return response
    except Exception as e:
        logger.error(f"Error in logout: {e}", exc_info=True)
        return error_response("Logout failed", status=500)
