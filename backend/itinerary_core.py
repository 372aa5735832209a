"""
ツアー情報から日別の旅程を導出するコア実装。
Core derivation of the day-by-day itinerary from a tour record.
"""

import logging
from datetime import date
from typing import List, Optional, Tuple

from backend.itinerary_constants import (
    ARRIVAL_DAY_LABEL,
    EMPTY_CELL,
    FREE_ACTIVITY_TEXT,
    GEAR_COLLECTION_SUFFIX,
    SELF_PAY_PREFIX,
    SHUTTLE_NOTICE,
)
from backend.itinerary_datetime import format_descriptor, parse_date_time, parse_iso_date
from backend.schemas import DayKind, ItineraryDay, ScheduleOverlay, TourRecord

logger = logging.getLogger(__name__)

_ORDINAL_LABELS = {1: "1st Day", 2: "2nd Day", 3: "3rd Day"}


def day_label(index: int) -> str:
    """日インデックスから表示ラベルを返す / Ordinal label for a day index."""
    if index == 0:
        return ARRIVAL_DAY_LABEL
    return _ORDINAL_LABELS.get(index, f"{index}th Day")


def compute_day_count(arrival: date, departure: date) -> int:
    """
    到着日から出発日までの日数（両端含む）を計算する
    Number of itinerary days, both ends included, never below 1.
    """
    count = (departure - arrival).days + 1
    return count if count > 0 else 1


def stay_dates(tour: TourRecord) -> Optional[Tuple[date, date]]:
    """
    ツアーの到着日・出発日を取得する
    Arrival and departure dates of a tour, or None when either is unusable.
    """
    arrival = parse_iso_date(parse_date_time(tour.arrival).date)
    departure = parse_iso_date(parse_date_time(tour.departure).date)
    if arrival is None or departure is None:
        return None
    return arrival, departure


def tour_day_count(tour: TourRecord) -> int:
    """旅程の日数（日付が不正なら 0） / Day count of a tour, 0 when dates are unusable."""
    dates = stay_dates(tour)
    if dates is None:
        return 0
    return compute_day_count(*dates)


def generate_itinerary(tour: TourRecord, overlay: Optional[ScheduleOverlay]) -> List[ItineraryDay]:
    """
    ツアー情報と編集済みスケジュールから旅程表を生成する
    Build the merged itinerary for a tour.

    1. 到着・出発フィールドを解析し日数を計算（日付が不正なら空の旅程）
    2. 0日目は到着日、最終日は出発日、それ以外は自由行動日として行を作成
    3. 各日のアクティビティとメモはオーバーレイから取得
    1) Parse arrival/departure and compute the day count (empty list if unusable)
    2) Index 0 is the arrival day, the last index the departure day, others are middle days
    3) Activities and notes of each day come from the overlay

    日数が1日の場合は到着日の表示を優先します。入力は変更しません。
    A single-day stay is rendered as the arrival day. Inputs are never mutated.
    """
    dates = stay_dates(tour)
    if dates is None:
        logger.debug("Tour %s has no usable arrival/departure dates", tour.id)
        return []

    day_count = compute_day_count(*dates)
    overlay = overlay or ScheduleOverlay()
    arrival = parse_date_time(tour.arrival)
    departure = parse_date_time(tour.departure)
    accommodation = tour.accommodation or EMPTY_CELL

    itinerary: List[ItineraryDay] = []
    for index in range(day_count):
        saved = overlay.day(index)
        if index == 0:
            itinerary.append(ItineraryDay(
                day_label=day_label(index),
                kind=DayKind.ARRIVAL,
                arrival_info=format_descriptor(arrival) or EMPTY_CELL,
                activities=[],
                hotel_info=accommodation,
                # 到着日の支払い欄には人数を表示する（既存の帳票に合わせた仕様）
                # The arrival-day payment cell shows the headcount
                payment_info=str(tour.pax) if tour.pax else EMPTY_CELL,
                note=saved.note,
            ))
        elif index == day_count - 1:
            departure_text = format_descriptor(departure) or EMPTY_CELL
            itinerary.append(ItineraryDay(
                day_label=day_label(index),
                kind=DayKind.DEPARTURE,
                arrival_info=SHUTTLE_NOTICE,
                activities=[],
                hotel_info=f"{departure_text}\n{GEAR_COLLECTION_SUFFIX}",
                payment_info=EMPTY_CELL,
                note=saved.note,
            ))
        else:
            payment_info = EMPTY_CELL
            if index == 1 and tour.payment:
                payment_info = f"{SELF_PAY_PREFIX}{tour.payment}"
            itinerary.append(ItineraryDay(
                day_label=day_label(index),
                kind=DayKind.MIDDLE,
                arrival_info=FREE_ACTIVITY_TEXT,
                activities=list(saved.activities),
                hotel_info=accommodation,
                payment_info=payment_info,
                note=saved.note,
            ))
    return itinerary
