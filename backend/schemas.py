"""
旅程エンジンで扱うデータ構造（pydanticモデル）。
Pydantic models exchanged with the itinerary engine.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TOUR_TEXT_FIELDS = (
    "start_date",
    "invoice",
    "language",
    "name",
    "group_id",
    "dnr",
    "td",
    "agent",
    "arrival",
    "departure",
    "accommodation",
    "gears",
    "snowshoe",
    "nlt",
    "city_tour",
    "hiking",
    "fishing",
    "dog_sledging",
    "snowmobile_atv",
    "aurora_village",
    "payment",
    "reservation_number",
    "remarks",
)


class DayKind(str, Enum):
    ARRIVAL = "arrival"
    MIDDLE = "middle"
    DEPARTURE = "departure"


class TourRecord(BaseModel):
    """
    ツアー予約レコード（旅程エンジンからは読み取り専用）
    Tour booking record; read-only input for the itinerary engine.

    ORMの Tour 行からも辞書からも生成できます。None は空文字として扱います。
    Built from ORM rows or dicts; None text values become empty strings.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: Optional[int] = None
    start_date: str = ""
    invoice: str = ""
    language: str = ""
    name: str = ""
    pax: int = 0
    group_id: str = ""
    dnr: str = ""
    td: str = ""
    agent: str = ""
    arrival: str = ""
    departure: str = ""
    accommodation: str = ""
    gears: str = ""
    snowshoe: str = ""
    nlt: str = ""
    city_tour: str = ""
    hiking: str = ""
    fishing: str = ""
    dog_sledging: str = ""
    snowmobile_atv: str = ""
    aurora_village: str = ""
    payment: str = ""
    reservation_number: str = ""
    remarks: str = ""

    @field_validator(*TOUR_TEXT_FIELDS, mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("pax", mode="before")
    @classmethod
    def _pax_default(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    def flag(self, key: str) -> str:
        """フラグ値を取得する / Return the raw value of an activity flag."""
        return getattr(self, key, "") or ""


class DateTimeDescriptor(BaseModel):
    """到着・出発フィールドの解析結果 / Parsed "date | time | flight" triple."""
    model_config = ConfigDict(frozen=True)

    date: str = ""
    time: str = ""
    flight_code: str = ""


class Activity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    timings: List[str] = Field(default_factory=list)


class DaySchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    activities: List[Activity] = Field(default_factory=list)
    note: str = ""

    @field_validator("note", mode="before")
    @classmethod
    def _note_none(cls, value: Any) -> Any:
        return "" if value is None else value


class ScheduleOverlay(BaseModel):
    """
    ツアー単位で保存される手動編集スケジュール
    Per-tour overlay of manually edited activities and notes.

    キーは日インデックス（0 = 到着日）。保存形式は {"0": {"activities": [...], "note": ""}} です。
    Keys are day indexes (0 = arrival day); the wire format uses string keys.
    """
    model_config = ConfigDict(frozen=True)

    days: Dict[int, DaySchedule] = Field(default_factory=dict)

    def day(self, index: int) -> DaySchedule:
        return self.days.get(index) or DaySchedule()

    def with_day(self, index: int, day: DaySchedule) -> "ScheduleOverlay":
        """
        指定日だけ差し替えた新しいオーバーレイを返す
        Return a new overlay with one day replaced (copy-on-write of the day map).
        """
        days = dict(self.days)
        days[index] = day
        return ScheduleOverlay(days=days)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[Any, Any]]) -> "ScheduleOverlay":
        """
        保存形式の辞書からオーバーレイを生成する
        Build an overlay from the raw stored mapping.

        数値に変換できないキーは無視します。
        Keys that are not integers are ignored.
        """
        days: Dict[int, DaySchedule] = {}
        for key, value in (raw or {}).items():
            try:
                index = int(key)
            except (TypeError, ValueError):
                continue
            days[index] = DaySchedule.model_validate(value or {})
        return cls(days=days)

    def to_mapping(self) -> Dict[str, Dict[str, Any]]:
        return {
            str(index): self.days[index].model_dump(mode="json")
            for index in sorted(self.days)
        }


class ItineraryDay(BaseModel):
    """旅程表の1行 / One row of the derived itinerary."""
    model_config = ConfigDict(frozen=True)

    day_label: str
    kind: DayKind
    arrival_info: str = ""
    activities: List[Activity] = Field(default_factory=list)
    hotel_info: str = ""
    payment_info: str = ""
    note: str = ""
