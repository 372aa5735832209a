from flask import Blueprint, g, jsonify, request
import logging

from backend import notifications, tour_service
from backend.database import SessionLocal
from backend.routes.common import ResponseOrTuple, error_response, json_body, login_required

logger = logging.getLogger(__name__)

# Blueprintの定義: ツアー予約の検索・作成・更新・削除
tours_bp = Blueprint("tours", __name__, url_prefix="/api/tours")


@tours_bp.route("", methods=["GET"])
@login_required
def list_tours() -> ResponseOrTuple:
    """
    ツアー検索エンドポイント

    dateFrom / dateTo（開始日）、invoice、name、search で絞り込みます。
    """
    try:
        db = SessionLocal()
        try:
            tours = tour_service.search_tours(
                db,
                date_from=request.args.get("dateFrom") or None,
                date_to=request.args.get("dateTo") or None,
                invoice=request.args.get("invoice") or None,
                name=request.args.get("name") or None,
                search=request.args.get("search") or None,
            )
        finally:
            db.close()
        return jsonify(tours)
    except Exception as e:
        logger.error(f"Error fetching tours: {e}", exc_info=True)
        return error_response("Failed to fetch tours", status=500)


@tours_bp.route("/<int:tour_id>", methods=["GET"])
@login_required
def get_tour(tour_id: int) -> ResponseOrTuple:
    try:
        db = SessionLocal()
        try:
            tour = tour_service.get_tour(db, tour_id)
            data = tour_service.tour_to_dict(tour) if tour else None
        finally:
            db.close()
        if data is None:
            return error_response("Tour not found", status=404)
        return jsonify(data)
    except Exception as e:
        logger.error(f"Error fetching tour {tour_id}: {e}", exc_info=True)
        return error_response("Failed to fetch tour", status=500)


@tours_bp.route("", methods=["POST"])
@login_required
def create_tour() -> ResponseOrTuple:
    try:
        data = json_body()
        if not isinstance(data, dict):
            return error_response("Request body must be JSON.", status=400)

        db = SessionLocal()
        try:
            created = tour_service.create_tour(db, data)
        finally:
            db.close()

        notifications.notify(
            "create", "tour",
            notifications.snapshot_changes(created, "create"),
            g.staff, created["id"], created.get("name"),
        )
        return jsonify(created), 201
    except Exception as e:
        logger.error(f"Error creating tour: {e}", exc_info=True)
        return error_response("Failed to create tour", status=500)


@tours_bp.route("/<int:tour_id>", methods=["PUT"])
@login_required
def update_tour(tour_id: int) -> ResponseOrTuple:
    try:
        data = json_body()
        if not isinstance(data, dict):
            return error_response("Request body must be JSON.", status=400)

        db = SessionLocal()
        try:
            result = tour_service.update_tour(db, tour_id, data)
        finally:
            db.close()
        if result is None:
            return error_response("Tour not found", status=404)

        before, after = result
        changes = notifications.diff_changes(before, after)
        if changes:
            notifications.notify("update", "tour", changes, g.staff, tour_id, after.get("name"))
        return jsonify(after)
    except Exception as e:
        logger.error(f"Error updating tour {tour_id}: {e}", exc_info=True)
        return error_response("Failed to update tour", status=500)


@tours_bp.route("/<int:tour_id>", methods=["DELETE"])
@login_required
def delete_tour(tour_id: int) -> ResponseOrTuple:
    """ツアーを削除する（保存済みスケジュールも削除）"""
    try:
        db = SessionLocal()
        try:
            deleted = tour_service.delete_tour(db, tour_id)
        finally:
            db.close()
        if deleted is None:
            return error_response("Tour not found", status=404)

        notifications.notify(
            "delete", "tour",
            notifications.snapshot_changes(deleted, "delete"),
            g.staff, tour_id, deleted.get("name"),
        )
        return jsonify({"success": True})
    except Exception as e:
        logger.error(f"Error deleting tour {tour_id}: {e}", exc_info=True)
        return error_response("Failed to delete tour", status=500)
