"""
スケジュールオーバーレイの更新操作とランダム割り当て。
Overlay update operations and the random activity assigner.

更新操作はすべて新しいオーバーレイを返し、引数のオーバーレイは変更しません。
Every update returns a new overlay and leaves its argument untouched.
"""

import random
from typing import List, Optional

from backend.errors import UnknownActivity
from backend.itinerary_constants import ACTIVITY_CATALOG, FLAG_ENABLED_VALUE, SCHEDULABLE_FLAGS
from backend.schemas import Activity, DaySchedule, ScheduleOverlay, TourRecord


def catalog_activity(activity_key: str, timing_index: int = 0) -> Activity:
    """
    カタログから1つの時間枠を持つアクティビティを生成する
    Build an activity instance holding one timing slot of a catalog entry.
    """
    entry = ACTIVITY_CATALOG.get(activity_key)
    if entry is None:
        raise UnknownActivity(activity_key)
    return Activity(name=entry["name"], timings=[entry["timings"][timing_index]])


def enabled_activities(tour: TourRecord) -> List[str]:
    """
    ツアーで有効なアクティビティのキー一覧
    Activity keys enabled on a tour.

    フラグ値が "Yes" と完全一致する場合のみ有効とみなします（大文字小文字を区別）。
    Only the exact value "Yes" counts; the comparison is case-sensitive.
    """
    return [key for key in SCHEDULABLE_FLAGS if tour.flag(key) == FLAG_ENABLED_VALUE]


def set_activity(
    overlay: ScheduleOverlay,
    day_index: int,
    activity_index: int,
    activity: Optional[Activity],
) -> ScheduleOverlay:
    """
    指定日のアクティビティを置換・追加・削除する
    Replace, append or remove one activity of a day.

    activity が None なら activity_index の項目を削除します。範囲外の index への
    置換は末尾への追加になります。範囲外の削除は何もしません。
    None removes the entry at activity_index. Replacing at an out-of-range
    index appends instead; removing at an out-of-range index is a no-op.
    """
    day = overlay.day(day_index)
    activities = list(day.activities)
    in_range = 0 <= activity_index < len(activities)

    if activity is not None:
        if in_range:
            activities[activity_index] = activity
        else:
            activities.append(activity)
    elif in_range:
        del activities[activity_index]

    return overlay.with_day(day_index, DaySchedule(activities=activities, note=day.note))


def add_activity(overlay: ScheduleOverlay, day_index: int, activity_key: str) -> ScheduleOverlay:
    """カタログの最初の時間枠でアクティビティを追加する / Append a catalog activity (first slot)."""
    activity = catalog_activity(activity_key)
    day = overlay.day(day_index)
    activities = list(day.activities) + [activity]
    return overlay.with_day(day_index, DaySchedule(activities=activities, note=day.note))


def set_note(overlay: ScheduleOverlay, day_index: int, text: Optional[str]) -> ScheduleOverlay:
    """指定日のメモを置換する（空文字で削除） / Replace a day's note; "" clears it."""
    day = overlay.day(day_index)
    return overlay.with_day(day_index, DaySchedule(activities=list(day.activities), note=text or ""))


def generate_random_schedule(
    tour: TourRecord,
    day_count: int,
    rng: Optional[random.Random] = None,
) -> ScheduleOverlay:
    """
    保存済みスケジュールがない場合の初期スケジュールを生成する
    Seed an initial overlay when no saved schedule exists.

    到着日と出発日は空。中日は有効なアクティビティから1つか2つを選び、
    それぞれランダムな時間枠を割り当てます。rng を渡すと結果を再現できます。
    Arrival and departure days stay empty. Each middle day gets one or two of
    the enabled activities, each with a random timing slot. Pass a seeded rng
    for reproducible output.
    """
    rng = rng or random.Random()
    available = enabled_activities(tour)
    days = {index: DaySchedule() for index in range(day_count)}

    for index in range(1, day_count - 1):
        count = 1 if rng.random() > 0.5 else 2
        shuffled = list(available)
        rng.shuffle(shuffled)
        activities = []
        for key in shuffled[:count]:
            timings = ACTIVITY_CATALOG[key]["timings"]
            activities.append(Activity(name=ACTIVITY_CATALOG[key]["name"], timings=[rng.choice(timings)]))
        days[index] = DaySchedule(activities=activities)

    return ScheduleOverlay(days=days)
