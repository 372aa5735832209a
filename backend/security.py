"""
CSRF検証・Cookie設定・セキュリティヘッダー・パスワードハッシュのユーティリティ。
Utilities for CSRF checks, cookie settings, security headers and password hashing.
"""

import os
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from flask import Request, Response
from werkzeug.security import check_password_hash, generate_password_hash


DEFAULT_ALLOWED_ORIGINS = ("http://localhost:8080", "http://localhost:5173")
SESSION_COOKIE_NAME = "session_id"


def get_allowed_origins() -> List[str]:
    """
    許可されたオリジンのリストを取得する
    Allowed origins: `ALLOWED_ORIGINS` merged with the defaults.
    """
    frontend_origin = os.getenv("FRONTEND_ORIGIN", DEFAULT_ALLOWED_ORIGINS[0])
    raw_origins = os.getenv("ALLOWED_ORIGINS", frontend_origin).split(",")
    allowed = [origin.strip() for origin in raw_origins if origin.strip()]
    for origin in DEFAULT_ALLOWED_ORIGINS:
        if origin not in allowed:
            allowed.append(origin)
    return allowed


def _origin_from_referer(referer: str) -> str:
    try:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
    except ValueError:
        return ""
    return ""


def is_csrf_valid(request: Request) -> bool:
    """
    CSRF（クロスサイトリクエストフォージェリ）検証を行う
    Validate Origin/Referer for state-changing requests.

    1. 安全なメソッド（GET, HEAD, OPTIONS）はスルー
    2. Originヘッダーが許可リストにあるか確認
    3. Originがない場合、Refererヘッダーを確認
    """
    if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
        return True

    allowed = get_allowed_origins()
    origin = request.headers.get("Origin")
    if origin:
        return origin in allowed

    referer = request.headers.get("Referer")
    if referer:
        referer_origin = _origin_from_referer(referer)
        return referer_origin in allowed if referer_origin else False

    allow_missing = os.getenv("ALLOW_MISSING_ORIGIN", "false").lower() in ("1", "true", "yes")
    return allow_missing


def should_set_secure_cookie(request: Request) -> bool:
    env_value = os.getenv("COOKIE_SECURE", "").strip().lower()
    if env_value:
        return env_value in ("1", "true", "yes")

    if request.is_secure:
        return True

    host = request.headers.get("Host", "")
    if "localhost" in host or "127.0.0.1" in host:
        return False

    return True


def cookie_settings(request: Request) -> Dict[str, Any]:
    """
    一貫したCookie設定パラメータを生成する
    Consistent cookie attributes (HttpOnly, SameSite, Secure, max age).
    """
    samesite = os.getenv("COOKIE_SAMESITE", "Lax")
    try:
        max_age = int(os.getenv("SESSION_COOKIE_MAX_AGE", "86400"))
    except ValueError:
        max_age = 86400

    return {
        "httponly": True,
        "samesite": samesite,
        "secure": should_set_secure_cookie(request),
        "path": "/",
        "max_age": max_age,
    }


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    """ハッシュが未設定なら常に不一致 / Always False when no hash is stored."""
    if not password_hash or not password:
        return False
    return check_password_hash(password_hash, password)


def build_csp() -> str:
    """
    Content Security Policy (CSP) ヘッダー文字列を構築する
    Build the Content-Security-Policy header.

    印刷ページのインラインスタイルを許可します。
    Inline styles are allowed for the print page.
    """
    allowed = get_allowed_origins()
    connect_sources = ["'self'"] + allowed

    return (
        "default-src 'self'; "
        f"connect-src {' '.join(connect_sources)}; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; "
        "img-src 'self' data:; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "form-action 'self';"
    )


def apply_security_headers(response: Response) -> Response:
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")

    csp = os.getenv("CONTENT_SECURITY_POLICY")
    if not csp:
        csp = build_csp()
    response.headers.setdefault("Content-Security-Policy", csp)

    if os.getenv("ENABLE_HSTS", "true").lower() in ("1", "true", "yes"):
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=63072000; includeSubDomains; preload",
        )

    return response
