"""
スケジュール編集モードの状態管理。
Edit-mode state machine for the arrival schedule.

Locked -> (編集要求 + 確認) -> Editable -> (完了 / 画面離脱) -> Locked
Locked -> (request + confirm) -> Editable -> (done / navigate away) -> Locked
"""

from enum import Enum
from typing import Optional

from backend import redis_client
from backend.errors import ScheduleLocked


class EditState(str, Enum):
    LOCKED = "locked"
    CONFIRMING = "confirming"
    EDITABLE = "editable"


class EditEvent(str, Enum):
    REQUEST = "request"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    DONE = "done"


_TRANSITIONS = {
    (EditState.LOCKED, EditEvent.REQUEST): EditState.CONFIRMING,
    (EditState.CONFIRMING, EditEvent.REQUEST): EditState.CONFIRMING,
    (EditState.CONFIRMING, EditEvent.CONFIRM): EditState.EDITABLE,
    (EditState.CONFIRMING, EditEvent.CANCEL): EditState.LOCKED,
    (EditState.EDITABLE, EditEvent.REQUEST): EditState.EDITABLE,
    (EditState.EDITABLE, EditEvent.DONE): EditState.LOCKED,
    (EditState.LOCKED, EditEvent.DONE): EditState.LOCKED,
    (EditState.LOCKED, EditEvent.CANCEL): EditState.LOCKED,
}


def transition(state: EditState, event: EditEvent) -> EditState:
    """
    状態遷移を計算する
    Compute the next state.

    確認なしで Editable に遷移しようとした場合は ScheduleLocked を送出します。
    Raises ScheduleLocked for transitions that are not allowed (e.g. confirm
    without a pending request).
    """
    next_state = _TRANSITIONS.get((state, event))
    if next_state is None:
        raise ScheduleLocked(f"Cannot {event.value} while {state.value}")
    return next_state


def get_edit_state(session_id: str, tour_id: int) -> EditState:
    """
    セッションの指定ツアーに対する編集状態を取得する
    Edit state of the session for a tour; other tours are always Locked.
    """
    stored = redis_client.get_session_json(session_id, "edit_state")
    if not isinstance(stored, dict) or stored.get("tour_id") != tour_id:
        return EditState.LOCKED
    try:
        return EditState(stored.get("state"))
    except ValueError:
        return EditState.LOCKED


def apply_edit_event(session_id: str, tour_id: int, event: EditEvent) -> EditState:
    """イベントを適用して新しい状態を保存する / Apply an event and persist the new state."""
    state = transition(get_edit_state(session_id, tour_id), event)
    _save_state(session_id, tour_id, state)
    return state


def reset_edit_state(session_id: str, tour_id: Optional[int] = None) -> None:
    """ツアー切り替え時に Locked に戻す / Reset to Locked, e.g. when switching tours."""
    _save_state(session_id, tour_id, EditState.LOCKED)


def require_editable(session_id: str, tour_id: int) -> None:
    if get_edit_state(session_id, tour_id) is not EditState.EDITABLE:
        raise ScheduleLocked("Schedule is locked. Request edit mode first.")


def _save_state(session_id: str, tour_id: Optional[int], state: EditState) -> None:
    redis_client.save_session_json(session_id, "edit_state", {"tour_id": tour_id, "state": state.value})
