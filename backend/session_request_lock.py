"""
スケジュール保存の同時実行を防ぐロックユーティリティ。
In-process locks that allow a single outstanding schedule save per session and tour.
"""

from contextlib import contextmanager
import threading
from typing import Dict, Iterator, Optional


_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def lock_key(session_id: str, tour_id: Optional[int] = None) -> str:
    """
    ロックキーを生成する（例: abc-123:tour:7）
    Build the lock key, e.g. "abc-123:tour:7".
    """
    if not session_id:
        return ""
    if tour_id is None:
        return session_id
    return f"{session_id}:tour:{tour_id}"


def acquire_lock(key: str) -> bool:
    """
    ノンブロッキングでロック取得を試みる
    Try to acquire the lock without blocking.

    保存処理が進行中なら False を返します。
    Returns False while another save for the same key is in progress.
    """
    if not key:
        return False

    with _locks_guard:
        lock = _locks.setdefault(key, threading.Lock())

    return lock.acquire(blocking=False)


def release_lock(key: str) -> None:
    """ロックを解放し、未使用のエントリを掃除する / Release and drop the unused entry."""
    if not key:
        return

    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            return
        if lock.locked():
            try:
                lock.release()
            except RuntimeError:
                return
        if not lock.locked():
            _locks.pop(key, None)


def is_locked(key: str) -> bool:
    with _locks_guard:
        lock = _locks.get(key)
        return bool(lock and lock.locked())


@contextmanager
def schedule_save_lock(session_id: str, tour_id: int) -> Iterator[bool]:
    """
    保存用ロックを取得・解放するコンテキストマネージャ
    Acquire and release the save lock for a session and tour.

    with schedule_save_lock(sid, 7) as acquired:
        if not acquired: ...  # 409
    """
    key = lock_key(session_id, tour_id)
    acquired = acquire_lock(key)
    try:
        yield acquired
    finally:
        if acquired:
            release_lock(key)
