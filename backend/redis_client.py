"""
Redisアクセスと簡易フォールバック（インメモリ）の管理。
Redis access and a lightweight in-memory fallback.

スタッフのログインセッション、編集モード状態、スケジュールのキャッシュを保持します。
Holds staff login sessions, edit-mode state and the per-session schedule cache.
"""

import os
import json
import redis
import logging
import time
import threading
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# スタッフセッションの有効期限（24時間）
# Staff session lifetime (24 hours)
REDIS_SESSION_TTL_SECONDS = _env_int("REDIS_SESSION_TTL_SECONDS", 86400)

REDIS_SOCKET_TIMEOUT_SECONDS = _env_float("REDIS_SOCKET_TIMEOUT_SECONDS", 2.0)
REDIS_CONNECT_TIMEOUT_SECONDS = _env_float("REDIS_CONNECT_TIMEOUT_SECONDS", 2.0)
REDIS_HEALTH_CHECK_INTERVAL = _env_int("REDIS_HEALTH_CHECK_INTERVAL", 30)
REDIS_RECONNECT_RETRIES = _env_int("REDIS_RECONNECT_RETRIES", 5)
REDIS_RECONNECT_INITIAL_DELAY_SECONDS = _env_float("REDIS_RECONNECT_INITIAL_DELAY_SECONDS", 0.5)
REDIS_RECONNECT_MAX_DELAY_SECONDS = _env_float("REDIS_RECONNECT_MAX_DELAY_SECONDS", 5.0)
REDIS_RECONNECT_MIN_INTERVAL_SECONDS = _env_float("REDIS_RECONNECT_MIN_INTERVAL_SECONDS", 2.0)
REDIS_FAIL_FAST = _env_bool("REDIS_FAIL_FAST", False)
REDIS_ALLOW_FALLBACK = _env_bool("REDIS_ALLOW_FALLBACK", True)

# Redisクライアントの状態管理
# Redis client state tracking
redis_client: Optional[Any] = None
_redis_lock = threading.Lock()
_last_health_check = 0.0
_last_reconnect_attempt = 0.0

# Redisが使えない場合の簡易フォールバック（単一プロセス限定）
# In-memory fallback when Redis is unavailable (single-process only)
_memory_store: Dict[str, Tuple[str, Optional[float]]] = {}


def _should_use_fallback() -> bool:
    if REDIS_FAIL_FAST:
        return False
    return REDIS_ALLOW_FALLBACK


def _ping_if_available(client: Any) -> None:
    if hasattr(client, "ping") and callable(getattr(client, "ping")):
        client.ping()


def _fail_fast(reason: str, err: Optional[Exception] = None) -> None:
    if not REDIS_FAIL_FAST:
        return
    if err is not None:
        logger.critical("Redis unavailable (%s): %s", reason, err, exc_info=True)
    else:
        logger.critical("Redis unavailable (%s)", reason)
    os._exit(1)


def _create_redis_client() -> Optional[Any]:
    try:
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=REDIS_CONNECT_TIMEOUT_SECONDS,
            retry_on_timeout=True,
            health_check_interval=REDIS_HEALTH_CHECK_INTERVAL,
        )
        if client is not None:
            _ping_if_available(client)
        return client
    except Exception as e:
        logger.error("Failed to connect to Redis: %s", e)
        return None


def _connect_with_retries() -> Optional[Any]:
    retries = max(1, REDIS_RECONNECT_RETRIES)
    delay = max(0.0, REDIS_RECONNECT_INITIAL_DELAY_SECONDS)

    for attempt in range(1, retries + 1):
        client = _create_redis_client()
        if client is not None:
            return client
        if attempt < retries:
            sleep_for = min(delay, REDIS_RECONNECT_MAX_DELAY_SECONDS)
            if sleep_for > 0:
                time.sleep(sleep_for)
            delay = min(max(delay * 2, 0.1), REDIS_RECONNECT_MAX_DELAY_SECONDS)
    return None


def _health_check_due(now: float) -> bool:
    if REDIS_HEALTH_CHECK_INTERVAL <= 0:
        return False
    return now - _last_health_check >= REDIS_HEALTH_CHECK_INTERVAL


def _mark_unhealthy(reason: str, err: Optional[Exception] = None) -> None:
    global redis_client, _last_health_check
    if err is not None:
        logger.error("Redis %s failed: %s", reason, err, exc_info=True)
    else:
        logger.error("Redis %s failed", reason)
    with _redis_lock:
        redis_client = None
        _last_health_check = 0.0
    _fail_fast(reason, err)


def get_redis_client() -> Optional[Any]:
    global redis_client, _last_health_check, _last_reconnect_attempt
    now = time.time()

    with _redis_lock:
        client = redis_client
        if client is not None:
            if _health_check_due(now):
                _last_health_check = now
                try:
                    _ping_if_available(client)
                except Exception as e:
                    redis_client = None
                    client = None
                    logger.warning("Redis health check failed: %s", e)

        if client is not None:
            return client

        if not REDIS_FAIL_FAST and now - _last_reconnect_attempt < REDIS_RECONNECT_MIN_INTERVAL_SECONDS:
            return None
        _last_reconnect_attempt = now

        client = _connect_with_retries()
        if client is not None:
            redis_client = client
            _last_health_check = now
            return client

    _fail_fast("reconnect")
    return None


def _memory_set(key: str, value: str) -> None:
    ttl = REDIS_SESSION_TTL_SECONDS if REDIS_SESSION_TTL_SECONDS > 0 else None
    expires_at = time.time() + ttl if ttl else None
    _memory_store[key] = (value, expires_at)


def _memory_get(key: str) -> Optional[str]:
    item = _memory_store.get(key)
    if not item:
        return None
    value, expires_at = item
    if expires_at and time.time() > expires_at:
        _memory_store.pop(key, None)
        return None
    return value


def _memory_delete(*keys: str) -> None:
    for key in keys:
        _memory_store.pop(key, None)


def get_session_key(session_id: str, key_type: str) -> str:
    """
    セッションIDに基づいたRedisキーを生成する
    Build a Redis key from session ID and key type.

    例: session:abc-123:staff
    Example: session:abc-123:staff
    """
    return f"session:{session_id}:{key_type}"


def schedule_key_type(tour_id: int) -> str:
    return f"schedule:{tour_id}"


def _set_with_ttl(key: str, value: str) -> None:
    """
    TTL（有効期限）付きで値を設定するヘルパー関数
    Helper to set a value with TTL.
    """
    client = get_redis_client()
    if not client:
        if _should_use_fallback():
            _memory_set(key, value)
        return
    try:
        if REDIS_SESSION_TTL_SECONDS > 0:
            client.setex(key, REDIS_SESSION_TTL_SECONDS, value)
        else:
            client.set(key, value)
    except Exception as e:
        _mark_unhealthy("set", e)
        if _should_use_fallback():
            _memory_set(key, value)


def _get_raw(key: str) -> Optional[str]:
    """
    Redis（またはフォールバック）から文字列を取得する
    Read a raw string from Redis or the in-memory fallback.
    """
    try:
        client = get_redis_client()
        if client:
            return client.get(key)
        if _should_use_fallback():
            logger.warning("Redis client is not available; using in-memory fallback.")
            return _memory_get(key)
        return None
    except Exception as e:
        _mark_unhealthy("get", e)
        if _should_use_fallback():
            return _memory_get(key)
        return None


def _delete(*keys: str) -> None:
    try:
        client = get_redis_client()
        if client:
            client.delete(*keys)
        elif _should_use_fallback():
            _memory_delete(*keys)
    except Exception as e:
        _mark_unhealthy("delete", e)
        if _should_use_fallback():
            _memory_delete(*keys)


def get_session_json(session_id: str, key_type: str) -> Optional[Any]:
    """
    セッションに紐づくJSON値を取得する
    Fetch a JSON value stored for a session.

    壊れたJSONは存在しないものとして扱います。
    Corrupt JSON is treated as missing.
    """
    data = _get_raw(get_session_key(session_id, key_type))
    if not data:
        return None
    try:
        return json.loads(data)
    except (TypeError, ValueError) as e:
        logger.warning("Discarding corrupt session value %s for %s: %s", key_type, session_id, e)
        return None


def save_session_json(session_id: str, key_type: str, value: Any) -> None:
    """セッションにJSON値を保存する / Store a JSON value for a session."""
    key = get_session_key(session_id, key_type)
    try:
        _set_with_ttl(key, json.dumps(value, ensure_ascii=False))
    except Exception as e:
        logger.error(f"Error saving {key_type} for {session_id}: {e}")


def delete_session_values(session_id: str, *key_types: str) -> None:
    """セッションの指定キーを削除する / Delete the given keys of a session."""
    if not key_types:
        return
    _delete(*(get_session_key(session_id, key_type) for key_type in key_types))


def get_staff_session(session_id: str) -> Optional[Dict[str, Any]]:
    """ログイン中スタッフの情報を取得する / Get the logged-in staff profile."""
    data = get_session_json(session_id, "staff")
    return data if isinstance(data, dict) else None


def save_staff_session(session_id: str, profile: Dict[str, Any]) -> None:
    """ログイン中スタッフの情報を保存する / Save the logged-in staff profile."""
    save_session_json(session_id, "staff", profile)


def reset_session(session_id: str) -> None:
    """
    指定されたセッションIDに関連する全データを削除する
    Delete all data associated with a session ID.

    スタッフ情報、編集モード状態、選択中ツアーとそのスケジュールキャッシュを削除します。
    Removes the staff profile, edit state, selected tour and its cached schedule.
    """
    key_types = ["staff", "edit_state", "selected_tour"]
    selected = get_session_json(session_id, "selected_tour")
    if isinstance(selected, int):
        key_types.append(schedule_key_type(selected))
    delete_session_values(session_id, *key_types)


# 初期接続（失敗時はフォールバック／fail-fast）
# Initial connection (fallback or fail-fast on failure)
if redis_client is None:
    if REDIS_FAIL_FAST:
        redis_client = _connect_with_retries()
        if redis_client is None:
            _fail_fast("startup")
    else:
        redis_client = _create_redis_client()
