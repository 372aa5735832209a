"""
到着スケジュール（旅程表）のエンドポイント。
Arrival schedule endpoints: tour selection, itinerary, edit mode, save and print.

選択中のツアーのスケジュールだけがセッションにキャッシュされ、選択解除時に破棄されます。
Only the selected tour's overlay is cached in the session; deselecting evicts it.
"""

from flask import Blueprint, Response, g, jsonify, make_response, render_template
import logging
import random
import re
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from backend import edit_mode, itinerary_constants, notifications, redis_client, session_request_lock
from backend.database import SessionLocal
from backend.edit_mode import EditEvent, EditState
from backend.errors import (
    DayIndexOutOfRange,
    PersistenceFailure,
    ScheduleError,
    ScheduleLocked,
)
from backend.itinerary_core import day_label, generate_itinerary, tour_day_count
from backend.itinerary_schedule import add_activity, enabled_activities, set_activity, set_note
from backend.routes.common import ResponseOrTuple, error_response, json_body, login_required
from backend.schedule_cache import ScheduleCache
from backend.schedule_store import ScheduleOverlayStore, ScheduleRepository
from backend.schemas import Activity, ScheduleOverlay, TourRecord
from backend.tour_service import get_tour_record, sanitize_multiline

logger = logging.getLogger(__name__)

# Blueprintの定義: 到着スケジュール
arrival_bp = Blueprint("arrival", __name__)

MAX_NOTE_LENGTH = 1000
SELECTED_TOUR_KEY = "selected_tour"
_HEADCOUNT_SUFFIX_RE = re.compile(r"\s*\(\d+\)\s*$")

# テストではシード付きの乱数を差し込む
# Tests inject a seeded random source here
schedule_rng: Optional[random.Random] = None


def _overlay_store(session_id: str) -> ScheduleOverlayStore:
    return ScheduleOverlayStore(ScheduleCache(session_id), rng=schedule_rng)


def _load_tour(tour_id: int) -> Optional[TourRecord]:
    db = SessionLocal()
    try:
        return get_tour_record(db, tour_id)
    finally:
        db.close()


def _selected_tour_id(session_id: str) -> Optional[int]:
    value = redis_client.get_session_json(session_id, SELECTED_TOUR_KEY)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _resolve_overlay(store: ScheduleOverlayStore, tour: TourRecord, selected: bool) -> Optional[ScheduleOverlay]:
    """
    選択中のツアーは ensure（キャッシュ・生成あり）、それ以外は peek（生成なし）
    ensure() for the selected tour, peek() for any other tour.
    """
    if selected:
        return store.ensure(tour, tour_day_count(tour))
    return store.peek(tour.id)


def _itinerary_payload(tour: TourRecord, overlay: Optional[ScheduleOverlay], state: EditState) -> Dict[str, Any]:
    itinerary = generate_itinerary(tour, overlay)
    return {
        "tour": tour.model_dump(),
        "day_count": tour_day_count(tour),
        "itinerary": [day.model_dump(mode="json") for day in itinerary],
        "schedule": overlay.to_mapping() if overlay else {},
        "edit_state": state.value,
    }


def _schedule_error_response(e: ScheduleError) -> ResponseOrTuple:
    if isinstance(e, PersistenceFailure):
        return error_response("Failed to save schedule. Please try again.", status=503, retryable=True)
    if isinstance(e, ScheduleLocked):
        return error_response(str(e), status=409)
    return error_response(str(e), status=400)


def _schedule_summary(overlay: ScheduleOverlay) -> Dict[str, Dict[str, Any]]:
    """通知用の日別サマリー / Per-day summary used in the save notification."""
    changes: Dict[str, Dict[str, Any]] = {}
    for index in sorted(overlay.days):
        day = overlay.days[index]
        parts = [f"{activity.name} ({', '.join(activity.timings)})" for activity in day.activities]
        if day.note:
            parts.append(f"Note: {day.note}")
        if parts:
            changes[day_label(index)] = {"new": "; ".join(parts)}
    return changes


@arrival_bp.route("/api/arrival/select", methods=["POST"])
@login_required
def select_tour() -> ResponseOrTuple:
    """
    ツアー選択エンドポイント

    前に選択していたツアーのキャッシュを破棄し、編集モードを Locked に戻してから
    新しいツアーのスケジュールを確定します。tour_id が null の場合は選択解除です。
    Evicts the previous tour's cached overlay, resets edit mode, then resolves
    the overlay of the new tour. A null tour_id deselects.
    """
    try:
        data = json_body()
        if not isinstance(data, dict) or "tour_id" not in data:
            return error_response("tour_id is required (null to deselect).", status=400)

        tour_id = data.get("tour_id")
        if tour_id is not None and (isinstance(tour_id, bool) or not isinstance(tour_id, int)):
            return error_response("tour_id must be an integer or null.", status=400)

        session_id = g.session_id
        store = _overlay_store(session_id)
        previous = _selected_tour_id(session_id)
        if previous is not None and previous != tour_id:
            store.evict(previous)
        edit_mode.reset_edit_state(session_id, tour_id)

        if tour_id is None:
            redis_client.delete_session_values(session_id, SELECTED_TOUR_KEY)
            return jsonify({"selected": None, "itinerary": [], "edit_state": EditState.LOCKED.value})

        tour = _load_tour(tour_id)
        if tour is None:
            redis_client.delete_session_values(session_id, SELECTED_TOUR_KEY)
            return error_response("Tour not found", status=404)

        redis_client.save_session_json(session_id, SELECTED_TOUR_KEY, tour_id)
        overlay = store.ensure(tour, tour_day_count(tour))
        payload = _itinerary_payload(tour, overlay, EditState.LOCKED)
        payload["selected"] = tour_id
        return jsonify(payload)
    except Exception as e:
        logger.error(f"Error in select_tour: {e}", exc_info=True)
        return error_response("Failed to load the arrival schedule.", status=500)


@arrival_bp.route("/api/arrival/<int:tour_id>/itinerary", methods=["GET"])
@login_required
def itinerary(tour_id: int) -> ResponseOrTuple:
    try:
        tour = _load_tour(tour_id)
        if tour is None:
            return error_response("Tour not found", status=404)
        session_id = g.session_id
        selected = _selected_tour_id(session_id) == tour_id
        overlay = _resolve_overlay(_overlay_store(session_id), tour, selected)
        return jsonify(_itinerary_payload(tour, overlay, edit_mode.get_edit_state(session_id, tour_id)))
    except Exception as e:
        logger.error(f"Error in itinerary: {e}", exc_info=True)
        return error_response("Failed to load the itinerary.", status=500)


@arrival_bp.route("/api/arrival/catalog", methods=["GET"])
@login_required
def catalog() -> ResponseOrTuple:
    """アクティビティ選択用のカタログと、選択中ツアーで有効なキー"""
    try:
        entries = [
            {"key": key, "name": entry["name"], "timings": list(entry["timings"])}
            for key, entry in itinerary_constants.ACTIVITY_CATALOG.items()
        ]
        enabled = []
        selected = _selected_tour_id(g.session_id)
        if selected is not None:
            tour = _load_tour(selected)
            if tour is not None:
                enabled = enabled_activities(tour)
        return jsonify({"catalog": entries, "enabled": enabled, "selected": selected})
    except Exception as e:
        logger.error(f"Error in catalog: {e}", exc_info=True)
        return error_response("Failed to load the activity catalog.", status=500)


def _is_day_key(key: str) -> bool:
    """日インデックスとして有効なキー（"0" 以上の整数） / Non-negative integer day key."""
    return isinstance(key, str) and key.isascii() and key.isdigit()


@arrival_bp.route("/api/tours/<int:tour_id>/schedule", methods=["GET"])
@login_required
def get_saved_schedule(tour_id: int) -> ResponseOrTuple:
    """保存済みスケジュール（なければ 404）"""
    try:
        raw = ScheduleRepository().fetch(tour_id)
        if raw is None:
            return error_response("Schedule not found", status=404)
        return jsonify({"schedule": ScheduleOverlay.from_mapping(raw).to_mapping()})
    except Exception as e:
        logger.error(f"Error fetching schedule for tour {tour_id}: {e}", exc_info=True)
        return error_response("Failed to fetch schedule", status=500)


@arrival_bp.route("/api/tours/<int:tour_id>/schedule", methods=["POST"])
@login_required
def post_saved_schedule(tour_id: int) -> ResponseOrTuple:
    """
    スケジュール全体を保存する（部分更新なし）

    ボディは {"0": {"activities": [...], "note": ""}, ...} 形式のオーバーレイです。
    """
    try:
        data = json_body()
        if not isinstance(data, dict):
            return error_response("Request body must be a schedule object.", status=400)
        bad_keys = [key for key in data if not _is_day_key(key)]
        if bad_keys:
            return error_response(f"Invalid day keys: {', '.join(map(str, bad_keys))}", status=400)
        try:
            overlay = ScheduleOverlay.from_mapping(data)
        except (ValidationError, AttributeError) as e:
            return error_response(f"Invalid schedule: {e}", status=400)

        if _load_tour(tour_id) is None:
            return error_response("Tour not found", status=404)

        session_id = g.session_id
        selected = _selected_tour_id(session_id) == tour_id
        _overlay_store(session_id).save(tour_id, overlay, cache=selected)
        return jsonify({"success": True})
    except PersistenceFailure as e:
        return _schedule_error_response(e)
    except Exception as e:
        logger.error(f"Error saving schedule for tour {tour_id}: {e}", exc_info=True)
        return error_response("Failed to save schedule", status=500)


@arrival_bp.route("/api/arrival/<int:tour_id>/edit", methods=["GET"])
@login_required
def get_edit_state(tour_id: int) -> ResponseOrTuple:
    state = edit_mode.get_edit_state(g.session_id, tour_id)
    return jsonify({"tour_id": tour_id, "edit_state": state.value})


def _apply_edit_event(tour_id: int, event: EditEvent) -> ResponseOrTuple:
    try:
        session_id = g.session_id
        if _selected_tour_id(session_id) != tour_id:
            return error_response("Select the tour before changing edit mode.", status=409)
        state = edit_mode.apply_edit_event(session_id, tour_id, event)
        return jsonify({"tour_id": tour_id, "edit_state": state.value})
    except ScheduleError as e:
        return _schedule_error_response(e)
    except Exception as e:
        logger.error(f"Error in edit mode ({event.value}): {e}", exc_info=True)
        return error_response("Failed to change edit mode.", status=500)


@arrival_bp.route("/api/arrival/<int:tour_id>/edit", methods=["POST"])
@login_required
def request_edit(tour_id: int) -> ResponseOrTuple:
    """編集要求（確認待ちへ） / Request edit mode; a confirmation is still required."""
    return _apply_edit_event(tour_id, EditEvent.REQUEST)


@arrival_bp.route("/api/arrival/<int:tour_id>/edit/confirm", methods=["POST"])
@login_required
def confirm_edit(tour_id: int) -> ResponseOrTuple:
    return _apply_edit_event(tour_id, EditEvent.CONFIRM)


@arrival_bp.route("/api/arrival/<int:tour_id>/edit/cancel", methods=["POST"])
@login_required
def cancel_edit(tour_id: int) -> ResponseOrTuple:
    return _apply_edit_event(tour_id, EditEvent.CANCEL)


@arrival_bp.route("/api/arrival/<int:tour_id>/edit/done", methods=["POST"])
@login_required
def finish_edit(tour_id: int) -> ResponseOrTuple:
    return _apply_edit_event(tour_id, EditEvent.DONE)


def _mutate(
    tour_id: int,
    day_index: int,
    apply: Callable[[ScheduleOverlay], ScheduleOverlay],
    middle_only: bool = False,
) -> ResponseOrTuple:
    """
    編集モードでの変更を適用し、キャッシュだけを更新する
    Apply an edit-mode mutation and write the result to the session cache only.

    アクティビティは中日のみ（到着日・出発日は常に空）。メモは全日に設定できます。
    middle_only restricts the mutation to middle days; arrival and departure
    days never carry activities. Notes may be set on any day.
    """
    session_id = g.session_id
    edit_mode.require_editable(session_id, tour_id)

    tour = _load_tour(tour_id)
    if tour is None:
        return error_response("Tour not found", status=404)

    day_count = tour_day_count(tour)
    if not 0 <= day_index < day_count:
        raise DayIndexOutOfRange(f"Day {day_index} is outside the itinerary (0-{day_count - 1})")
    if middle_only and not 0 < day_index < day_count - 1:
        raise DayIndexOutOfRange(f"Activities can only be set on middle days (1-{day_count - 2})")

    store = _overlay_store(session_id)
    overlay = store.update(tour_id, apply(store.ensure(tour, day_count)))
    return jsonify(_itinerary_payload(tour, overlay, EditState.EDITABLE))


@arrival_bp.route("/api/arrival/<int:tour_id>/days/<int:day_index>/activities/<int:activity_index>", methods=["PUT"])
@login_required
def put_activity(tour_id: int, day_index: int, activity_index: int) -> ResponseOrTuple:
    """
    アクティビティを置換・追加・削除する

    ボディ {"activity": {"name": ..., "timings": [...]}}。activity が null なら削除します。
    """
    try:
        data = json_body()
        if not isinstance(data, dict) or "activity" not in data:
            return error_response("activity is required (null to remove).", status=400)

        activity = None
        if data["activity"] is not None:
            try:
                activity = Activity.model_validate(data["activity"])
            except ValidationError as e:
                return error_response(f"Invalid activity: {e}", status=400)

        return _mutate(
            tour_id, day_index,
            lambda overlay: set_activity(overlay, day_index, activity_index, activity),
            middle_only=True,
        )
    except ScheduleError as e:
        return _schedule_error_response(e)
    except Exception as e:
        logger.error(f"Error in put_activity: {e}", exc_info=True)
        return error_response("Failed to update the activity.", status=500)


@arrival_bp.route("/api/arrival/<int:tour_id>/days/<int:day_index>/activities", methods=["POST"])
@login_required
def post_activity(tour_id: int, day_index: int) -> ResponseOrTuple:
    try:
        data = json_body()
        activity_key = data.get("activity_key") if isinstance(data, dict) else None
        if not activity_key or not isinstance(activity_key, str):
            return error_response("activity_key is required.", status=400)

        return _mutate(
            tour_id, day_index,
            lambda overlay: add_activity(overlay, day_index, activity_key),
            middle_only=True,
        )
    except ScheduleError as e:
        return _schedule_error_response(e)
    except Exception as e:
        logger.error(f"Error in post_activity: {e}", exc_info=True)
        return error_response("Failed to add the activity.", status=500)


@arrival_bp.route("/api/arrival/<int:tour_id>/days/<int:day_index>/note", methods=["PUT"])
@login_required
def put_note(tour_id: int, day_index: int) -> ResponseOrTuple:
    try:
        data = json_body()
        if not isinstance(data, dict) or "note" not in data:
            return error_response("note is required.", status=400)

        note = sanitize_multiline(data.get("note"), max_length=MAX_NOTE_LENGTH) or ""
        return _mutate(tour_id, day_index, lambda overlay: set_note(overlay, day_index, note))
    except ScheduleError as e:
        return _schedule_error_response(e)
    except Exception as e:
        logger.error(f"Error in put_note: {e}", exc_info=True)
        return error_response("Failed to update the note.", status=500)


@arrival_bp.route("/api/arrival/<int:tour_id>/save", methods=["POST"])
@login_required
def save_schedule(tour_id: int) -> ResponseOrTuple:
    """
    キャッシュ中のスケジュールを保存するエンドポイント

    同じセッション・ツアーで保存処理中の場合は 409、保存失敗時は 503（再試行可能）を返します。
    """
    try:
        session_id = g.session_id
        with session_request_lock.schedule_save_lock(session_id, tour_id) as acquired:
            if not acquired:
                return error_response("A save for this schedule is already in progress.", status=409)

            tour = _load_tour(tour_id)
            if tour is None:
                return error_response("Tour not found", status=404)

            store = _overlay_store(session_id)
            overlay = store.cache.get(tour_id)
            if overlay is None:
                return error_response("Nothing to save. Select the tour first.", status=409)

            store.save(tour_id, overlay)

        notifications.notify(
            "update", "arrival", _schedule_summary(overlay), g.staff, tour_id, tour.name,
        )
        payload = _itinerary_payload(tour, overlay, edit_mode.get_edit_state(session_id, tour_id))
        payload["saved"] = True
        return jsonify(payload)
    except ScheduleError as e:
        return _schedule_error_response(e)
    except Exception as e:
        logger.error(f"Error in save_schedule: {e}", exc_info=True)
        return error_response("Failed to save schedule. Please try again.", status=500)


def display_name(name: str) -> str:
    """印刷用に末尾の人数表記 "(N)" を除去する / Drop a trailing "(N)" headcount suffix."""
    return _HEADCOUNT_SUFFIX_RE.sub("", name or "")


@arrival_bp.route("/api/arrival/<int:tour_id>/print", methods=["GET"])
@login_required
def print_itinerary(tour_id: int) -> Response:
    """印刷用HTML（旅程表） / Printable HTML rendering of the itinerary."""
    try:
        tour = _load_tour(tour_id)
        if tour is None:
            return error_response("Tour not found", status=404)
        session_id = g.session_id
        selected = _selected_tour_id(session_id) == tour_id
        overlay = _resolve_overlay(_overlay_store(session_id), tour, selected)

        html = render_template(
            "arrival_print.html",
            title=itinerary_constants.PRINT_TITLE,
            welcome=itinerary_constants.PRINT_WELCOME_TEXT,
            footer=itinerary_constants.PRINT_FOOTER_TEXT,
            guest_name=display_name(tour.name),
            tour=tour,
            itinerary=generate_itinerary(tour, overlay),
            empty_cell=itinerary_constants.EMPTY_CELL,
            free_activity=itinerary_constants.FREE_ACTIVITY_TEXT,
        )
        response = make_response(html)
        response.headers["Content-Type"] = "text/html; charset=utf-8"
        return response
    except Exception as e:
        logger.error(f"Error in print_itinerary: {e}", exc_info=True)
        return error_response("Failed to render the itinerary.", status=500)
