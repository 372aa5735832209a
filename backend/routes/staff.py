from flask import Blueprint, g, jsonify
import logging

from backend import notifications, staff_service
from backend.database import SessionLocal
from backend.routes.common import (
    ResponseOrTuple,
    admin_required,
    error_response,
    json_body,
    login_required,
)

logger = logging.getLogger(__name__)

# Blueprintの定義: スタッフ管理（管理者のみ）
staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")


@staff_bp.route("", methods=["GET"])
@login_required
@admin_required
def list_staff() -> ResponseOrTuple:
    try:
        db = SessionLocal()
        try:
            return jsonify(staff_service.list_staff(db))
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Error fetching staff: {e}", exc_info=True)
        return error_response("Failed to fetch staff", status=500)


@staff_bp.route("", methods=["POST"])
@login_required
@admin_required
def create_staff() -> ResponseOrTuple:
    """
    スタッフ作成エンドポイント

    email・password・name・role はすべて必須です。同じメールアドレスは 409 を返します。
    """
    try:
        data = json_body()
        if not isinstance(data, dict):
            return error_response("Request body must be JSON.", status=400)

        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        name = (data.get("name") or "").strip()
        role = (data.get("role") or "").strip()
        if not email or not password or not name or not role:
            return error_response("Missing required fields", status=400)
        if role not in staff_service.ROLES:
            return error_response(f"Role must be one of: {', '.join(staff_service.ROLES)}", status=400)

        db = SessionLocal()
        try:
            created = staff_service.create_staff(db, email, password, name, role)
        except staff_service.DuplicateEmail:
            return error_response("A staff member with this email already exists", status=409)
        finally:
            db.close()

        notifications.notify(
            "create", "staff",
            notifications.snapshot_changes(
                {"email": created["email"], "name": created["name"], "role": created["role"]}, "create"
            ),
            g.staff, created["id"], created["name"],
        )
        return jsonify({"success": True, "data": created}), 201
    except Exception as e:
        logger.error(f"Error creating staff: {e}", exc_info=True)
        return error_response("Failed to create staff", status=500)


@staff_bp.route("/<int:staff_id>", methods=["PUT"])
@login_required
@admin_required
def update_staff(staff_id: int) -> ResponseOrTuple:
    try:
        data = json_body()
        if not isinstance(data, dict):
            return error_response("Request body must be JSON.", status=400)

        role = (data.get("role") or "").strip() or None
        if role and role not in staff_service.ROLES:
            return error_response(f"Role must be one of: {', '.join(staff_service.ROLES)}", status=400)

        db = SessionLocal()
        try:
            result = staff_service.update_staff(
                db,
                staff_id,
                name=(data.get("name") or "").strip() or None,
                role=role,
                password=data.get("password") or None,
            )
        finally:
            db.close()
        if result is None:
            return error_response("Staff member not found", status=404)

        before, after = result
        changes = notifications.diff_changes(
            {"name": before["name"], "role": before["role"]},
            {"name": after["name"], "role": after["role"]},
        )
        if data.get("password"):
            changes["password"] = {"old": "********", "new": "(changed)"}
        if changes:
            notifications.notify("update", "staff", changes, g.staff, staff_id, after["name"])
        return jsonify({"success": True, "data": after})
    except Exception as e:
        logger.error(f"Error updating staff {staff_id}: {e}", exc_info=True)
        return error_response("Failed to update staff", status=500)


@staff_bp.route("/<int:staff_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_staff(staff_id: int) -> ResponseOrTuple:
    try:
        if staff_id == g.staff.get("id"):
            return error_response("You cannot delete your own account", status=400)

        db = SessionLocal()
        try:
            deleted = staff_service.delete_staff(db, staff_id)
        finally:
            db.close()
        if deleted is None:
            return error_response("Staff member not found", status=404)

        notifications.notify(
            "delete", "staff",
            notifications.snapshot_changes(
                {"email": deleted["email"], "name": deleted["name"], "role": deleted["role"]}, "delete"
            ),
            g.staff, staff_id, deleted["name"],
        )
        return jsonify({"success": True})
    except Exception as e:
        logger.error(f"Error deleting staff {staff_id}: {e}", exc_info=True)
        return error_response("Failed to delete staff", status=500)
