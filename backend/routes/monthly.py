from flask import Blueprint, jsonify, request
import logging

from backend import monthly_plan
from backend.database import SessionLocal
from backend.models import Tour
from backend.routes.common import ResponseOrTuple, error_response, login_required
from backend.schemas import TourRecord

logger = logging.getLogger(__name__)

# Blueprintの定義: 月次プラン
monthly_bp = Blueprint("monthly", __name__, url_prefix="/api/monthly")


@monthly_bp.route("", methods=["GET"])
@login_required
def monthly() -> ResponseOrTuple:
    """
    月次プラン集計エンドポイント

    ?month=YYYY-MM または ?dateFrom=YYYY-MM-DD&dateTo=YYYY-MM-DD で期間を指定します。
    """
    try:
        try:
            start, end = monthly_plan.resolve_range(
                month=request.args.get("month") or None,
                date_from=request.args.get("dateFrom") or None,
                date_to=request.args.get("dateTo") or None,
            )
        except ValueError as e:
            return error_response(str(e), status=400)

        # 到着・出発は開始日に関係なく数えるため全ツアーを対象にする
        db = SessionLocal()
        try:
            tours = [TourRecord.model_validate(tour) for tour in db.query(Tour).order_by(Tour.start_date, Tour.id).all()]
        finally:
            db.close()

        return jsonify(monthly_plan.build_monthly_plan(tours, start, end))
    except Exception as e:
        logger.error(f"Error building monthly plan: {e}", exc_info=True)
        return error_response("Failed to build monthly plan", status=500)
