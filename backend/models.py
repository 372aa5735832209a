"""
SQLAlchemyモデル定義。
SQLAlchemy model definitions.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from backend.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class Tour(Base):
    """
    ツアー予約（ゲストグループ単位）を管理するモデル
    Model for a tour booking of one guest group.

    到着・出発は "YYYY-MM-DD | HH:MM | 便名" 形式の文字列、アクティビティ列は "Yes"/"No" です。
    Arrival/departure hold "date | time | flight" text; activity columns hold "Yes"/"No".
    """
    __tablename__ = "tours"

    id: Column = Column(Integer, primary_key=True, index=True)
    start_date: Column = Column(String(32), index=True, nullable=True)
    invoice: Column = Column(String(200), nullable=True)
    language: Column = Column(String(200), nullable=True)
    name: Column = Column(String(200), nullable=True)
    pax: Column = Column(Integer, nullable=False, default=0)
    group_id: Column = Column(String(200), nullable=True)
    dnr: Column = Column(String(200), nullable=True)
    td: Column = Column(String(200), nullable=True)
    agent: Column = Column(String(200), nullable=True)
    arrival: Column = Column(String(200), nullable=True)      # 到着（日付|時刻|便名）
    departure: Column = Column(String(200), nullable=True)    # 出発（日付|時刻|便名）
    accommodation: Column = Column(String(200), nullable=True)
    gears: Column = Column(String(200), nullable=True)

    # アクティビティフラグ
    # Activity flags
    snowshoe: Column = Column(String(16), nullable=True)
    nlt: Column = Column(String(16), nullable=True)
    city_tour: Column = Column(String(16), nullable=True)
    hiking: Column = Column(String(16), nullable=True)
    fishing: Column = Column(String(16), nullable=True)
    dog_sledging: Column = Column(String(16), nullable=True)
    snowmobile_atv: Column = Column(String(16), nullable=True)
    aurora_village: Column = Column(String(16), nullable=True)

    payment: Column = Column(String(200), nullable=True)
    reservation_number: Column = Column(String(200), nullable=True)
    remarks: Column = Column(Text, nullable=True)


class TourSchedule(Base):
    """
    ツアーごとの編集済みスケジュール（1ツアーにつき1件）
    Saved schedule overlay; at most one row per tour.
    """
    __tablename__ = "tour_schedules"

    id: Column = Column(Integer, primary_key=True, index=True)
    tour_id: Column = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), unique=True, nullable=False)
    # 保存形式: {"0": {"activities": [...], "note": ""}, ...}
    schedule: Column = Column(Text, nullable=False)
    updated_at: Column = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


class Staff(Base):
    """スタッフアカウント / Staff account."""
    __tablename__ = "staff"

    id: Column = Column(Integer, primary_key=True, index=True)
    email: Column = Column(String(255), unique=True, index=True, nullable=False)
    first_name: Column = Column(String(120), nullable=False, default="")
    last_name: Column = Column(String(120), nullable=False, default="")
    role: Column = Column(String(64), nullable=False, default="staff")
    availability_status: Column = Column(String(32), nullable=False, default="available")
    password_hash: Column = Column(String(255), nullable=True)
    created_at: Column = Column(DateTime, default=_utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
