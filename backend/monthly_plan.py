"""
月次プラン（日別のアクティビティ件数・代理店別件数）の集計。
Monthly plan aggregation: per-day activity counts and per-agent totals.
"""

import calendar
import re
from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.itinerary_constants import MONTHLY_FLAGS
from backend.itinerary_datetime import descriptor_iso_date, parse_iso_date
from backend.schemas import TourRecord

MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
OTHER_AGENT = "Others"
# 1回の集計で扱う最大日数
# Upper bound on the number of days in one report
MAX_RANGE_DAYS = 366


def is_yes(value: Any) -> bool:
    """
    "yes" を大文字小文字・前後空白を無視して判定する
    Case-insensitive, whitespace-trimmed "yes" check.

    旅程のランダム割り当ては "Yes" の完全一致で判定するため、結果が異なる場合があります。
    Differs from the random assigner, which requires an exact "Yes".
    """
    return bool(value) and str(value).strip().lower() == "yes"


def month_range(month: str) -> Optional[Tuple[date, date]]:
    """"YYYY-MM" をその月の初日と末日に変換する / First and last day of a "YYYY-MM" month."""
    match = MONTH_RE.match(month or "")
    if not match:
        return None
    year, month_number = int(match.group(1)), int(match.group(2))
    if not 1 <= month_number <= 12:
        return None
    last_day = calendar.monthrange(year, month_number)[1]
    return date(year, month_number, 1), date(year, month_number, last_day)


def resolve_range(
    month: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """
    集計期間を決定する
    Resolve the reporting range.

    dateFrom と dateTo が両方あればその期間、なければ month、どちらもなければ今月です。
    Both dateFrom and dateTo win, then month, then the current month.
    不正な指定は ValueError を送出します。
    Raises ValueError for malformed or reversed input.
    """
    if date_from and date_to:
        start = parse_iso_date(date_from)
        end = parse_iso_date(date_to)
        if start is None or end is None:
            raise ValueError("dateFrom and dateTo must be YYYY-MM-DD")
        if end < start:
            raise ValueError("dateTo must not be before dateFrom")
        if (end - start).days + 1 > MAX_RANGE_DAYS:
            raise ValueError(f"Range must not exceed {MAX_RANGE_DAYS} days")
        return start, end

    if month:
        resolved = month_range(month)
        if resolved is None:
            raise ValueError("month must be YYYY-MM")
        return resolved

    today = today or date.today()
    return month_range(f"{today.year:04d}-{today.month:02d}")


def _empty_row(day: str) -> Dict[str, Any]:
    row: Dict[str, Any] = {"date": day, "count": 0}
    for flag in MONTHLY_FLAGS:
        row[flag] = 0
    row["arrival"] = 0
    row["departure"] = 0
    return row


def daily_counts(tours: Iterable[TourRecord], start: date, end: date) -> List[Dict[str, Any]]:
    """
    期間内の各日について件数を集計する（件数ゼロの日も含む）
    One row per day in the range, including days with no activity.

    - アクティビティ: 開始日がその日のツアーの "yes" フラグ数
    - 到着・出発: 到着・出発フィールドの日付（ISO形式のみ）がその日のツアー数
    - count: 上記すべての合計
    - activity flags: tours starting that day with the flag set
    - arrival / departure: tours whose descriptor date is that day (ISO only)
    - count: sum of all of the above
    """
    tours = list(tours)
    rows: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    current = start
    while current <= end:
        key = current.isoformat()
        rows[key] = _empty_row(key)
        current += timedelta(days=1)

    for tour in tours:
        row = rows.get(tour.start_date)
        if row is None:
            continue
        for flag in MONTHLY_FLAGS:
            if is_yes(tour.flag(flag)):
                row[flag] += 1

    # 到着・出発は開始日に関係なく全ツアーから数える
    # Arrivals and departures are counted over every tour, whatever its start date
    for tour in tours:
        arrival_day = descriptor_iso_date(tour.arrival)
        if arrival_day in rows:
            rows[arrival_day]["arrival"] += 1
        departure_day = descriptor_iso_date(tour.departure)
        if departure_day in rows:
            rows[departure_day]["departure"] += 1

    for row in rows.values():
        row["count"] = sum(row[flag] for flag in MONTHLY_FLAGS) + row["arrival"] + row["departure"]
    return list(rows.values())


def agent_totals(tours: Iterable[TourRecord], start: date, end: date) -> List[Dict[str, Any]]:
    """代理店ごとのツアー数（多い順） / Tours per agent starting in range, largest first."""
    first, last = start.isoformat(), end.isoformat()
    totals: "OrderedDict[str, int]" = OrderedDict()
    for tour in tours:
        if not tour.start_date or not first <= tour.start_date <= last:
            continue
        agent = tour.agent.strip() or OTHER_AGENT
        totals[agent] = totals.get(agent, 0) + 1
    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [{"agent": agent, "total": total} for agent, total in ordered]


def build_monthly_plan(tours: Iterable[TourRecord], start: date, end: date) -> Dict[str, Any]:
    tours = list(tours)
    return {
        "date_from": start.isoformat(),
        "date_to": end.isoformat(),
        "days": daily_counts(tours, start, end),
        "agents": agent_totals(tours, start, end),
    }
