"""
到着・出発フィールド（"date | time | flight"）の解析ユーティリティ。
Parsing helpers for the compound arrival/departure descriptor fields.
"""

from datetime import date, datetime
from typing import Any, Optional

from backend.itinerary_constants import DESCRIPTOR_SEPARATOR, ISO_DATE_RE
from backend.schemas import DateTimeDescriptor


def parse_date_time(raw: Any) -> DateTimeDescriptor:
    """
    到着・出発フィールドを日付・時刻・便名に分解する
    Split an arrival/departure field into date, time and flight code.

    空入力は全て空文字になります。各要素は前後の空白を除去し、欠けた要素は空文字です。
    日付形式の検証は行いません（下流で ISO 以外を「なし」として扱います）。
    Empty input yields empty fields. Segments are trimmed and missing ones
    default to "". The date is not validated here; this never raises.
    """
    if raw is None:
        return DateTimeDescriptor()
    text = str(raw).strip()
    if not text:
        return DateTimeDescriptor()

    parts = [part.strip() for part in text.split(DESCRIPTOR_SEPARATOR)]
    parts += [""] * (3 - len(parts))
    return DateTimeDescriptor(date=parts[0], time=parts[1], flight_code=parts[2])


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD 形式のみ日付として解釈する / Accept strict YYYY-MM-DD only."""
    if not value or not ISO_DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def descriptor_iso_date(raw: Any) -> Optional[str]:
    """フィールドから ISO 日付文字列を取り出す / ISO date segment of a raw field, if valid."""
    descriptor = parse_date_time(raw)
    return descriptor.date if parse_iso_date(descriptor.date) else None


def format_descriptor(descriptor: DateTimeDescriptor) -> str:
    """
    日付・時刻・便名を空白区切りで連結する
    Join the non-empty parts with single spaces ("2024-06-01 10:00 AA1").
    """
    parts = [descriptor.date, descriptor.time, descriptor.flight_code]
    return " ".join(part for part in parts if part)
