"""
ツアー予約の検索・作成・更新・削除。
Tour booking search and CRUD.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backend.models import Tour
from backend.schedule_store import ScheduleRepository
from backend.schemas import TOUR_TEXT_FIELDS, TourRecord

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 200
MAX_DATE_LENGTH = 32
MAX_REMARKS_LENGTH = 2000
MAX_PAX = 999

# 改行を保持する自由記述フィールド
# Free-text fields that keep their line breaks
MULTILINE_FIELDS = ("remarks",)


def sanitize_field(value: Any, max_length: int = MAX_FIELD_LENGTH) -> Optional[str]:
    """
    入力フィールドのサニタイズを行う
    Sanitize a single-line input field.

    制御文字の除去、空白の正規化、最大長の制限を行います。
    Removes control chars, collapses whitespace, and enforces max length.
    """
    if value is None:
        return None
    text = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", str(value))
    text = " ".join(text.split())
    if not text:
        return None
    return text[:max_length]


def sanitize_multiline(value: Any, max_length: int = MAX_REMARKS_LENGTH) -> Optional[str]:
    """改行を残してサニタイズする / Sanitize while keeping line breaks."""
    if value is None:
        return None
    text = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", str(value))
    lines = [" ".join(line.split()) for line in text.replace("\r\n", "\n").split("\n")]
    text = "\n".join(lines).strip()
    if not text:
        return None
    return text[:max_length]


def normalize_date(value: Any) -> Optional[str]:
    """
    日付文字列を正規化する（YYYY-MM-DD形式）
    Normalize date strings to YYYY-MM-DD; other text is kept as is.
    """
    text = sanitize_field(value, max_length=MAX_DATE_LENGTH)
    if not text:
        return None

    patterns = [
        r"(?P<year>\d{4})[-/.](?P<month>\d{1,2})[-/.](?P<day>\d{1,2})",
        r"(?P<year>\d{4})年(?P<month>\d{1,2})月(?P<day>\d{1,2})日",
    ]
    for pattern in patterns:
        match = re.search(pattern, text)
        if match:
            year = int(match.group("year"))
            month = int(match.group("month"))
            day = int(match.group("day"))
            if 1 <= month <= 12 and 1 <= day <= 31:
                return f"{year:04d}-{month:02d}-{day:02d}"
    return text


def coerce_pax(value: Any) -> int:
    """人数を 0 以上の整数にする / Coerce a headcount to a non-negative int."""
    try:
        pax = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return max(0, min(pax, MAX_PAX))


def sanitize_tour_payload(data: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    リクエストボディから保存可能なフィールドだけを取り出す
    Keep only known tour fields from a request body, sanitized.

    partial=True の場合は送信されたフィールドだけを返します（更新用）。
    With partial=True only the submitted fields are returned (updates).
    """
    cleaned: Dict[str, Any] = {}
    for field in TOUR_TEXT_FIELDS:
        if partial and field not in data:
            continue
        value = data.get(field)
        if field == "start_date":
            cleaned[field] = normalize_date(value)
        elif field in MULTILINE_FIELDS:
            cleaned[field] = sanitize_multiline(value)
        else:
            cleaned[field] = sanitize_field(value)
    if not partial or "pax" in data:
        cleaned["pax"] = coerce_pax(data.get("pax"))
    return cleaned


def tour_to_dict(tour: Tour) -> Dict[str, Any]:
    return TourRecord.model_validate(tour).model_dump()


def search_tours(
    db: Session,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    invoice: Optional[str] = None,
    name: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    条件に合うツアーを開始日の昇順で返す
    Tours matching the filters, ordered by start date.

    - date_from / date_to: 開始日の範囲（両端を含む） / inclusive start-date range
    - invoice / name: 大文字小文字を区別しない部分一致 / case-insensitive substring
    - search: 名前または請求番号のどちらかに一致 / matches name or invoice
    """
    query = db.query(Tour)
    if date_from:
        query = query.filter(Tour.start_date >= date_from)
    if date_to:
        query = query.filter(Tour.start_date <= date_to)
    if invoice:
        query = query.filter(Tour.invoice.ilike(f"%{invoice}%"))
    if name:
        query = query.filter(Tour.name.ilike(f"%{name}%"))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Tour.name.ilike(pattern), Tour.invoice.ilike(pattern)))
    tours = query.order_by(Tour.start_date.asc(), Tour.id.asc()).all()
    return [tour_to_dict(tour) for tour in tours]


def get_tour(db: Session, tour_id: int) -> Optional[Tour]:
    return db.query(Tour).filter(Tour.id == tour_id).first()


def get_tour_record(db: Session, tour_id: int) -> Optional[TourRecord]:
    tour = get_tour(db, tour_id)
    return TourRecord.model_validate(tour) if tour else None


def create_tour(db: Session, data: Mapping[str, Any]) -> Dict[str, Any]:
    tour = Tour(**sanitize_tour_payload(data))
    db.add(tour)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        raise e
    db.refresh(tour)
    logger.info("Created tour %s", tour.id)
    return tour_to_dict(tour)


def update_tour(
    db: Session, tour_id: int, data: Mapping[str, Any]
) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """
    ツアーを更新し、(更新前, 更新後) を返す。存在しなければ None
    Update a tour and return (before, after); None when it does not exist.
    """
    tour = get_tour(db, tour_id)
    if tour is None:
        return None
    before = tour_to_dict(tour)
    for field, value in sanitize_tour_payload(data, partial=True).items():
        setattr(tour, field, value)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        raise e
    db.refresh(tour)
    return before, tour_to_dict(tour)


def delete_tour(
    db: Session, tour_id: int, repository: Optional[ScheduleRepository] = None
) -> Optional[Dict[str, Any]]:
    """
    ツアーと保存済みスケジュールを削除し、削除した内容を返す
    Delete a tour together with its saved schedule; returns the deleted record.
    """
    tour = get_tour(db, tour_id)
    if tour is None:
        return None
    deleted = tour_to_dict(tour)
    try:
        (repository or ScheduleRepository()).delete(tour_id, db=db)
        db.delete(tour)
        db.commit()
    except Exception as e:
        db.rollback()
        raise e
    logger.info("Deleted tour %s", tour_id)
    return deleted
