"""
スケジュールオーバーレイの読み込み・初期化・保存。
Loading, seeding and saving of schedule overlays.
"""

import json
import logging
import random
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import SessionLocal
from backend.errors import PersistenceFailure
from backend.itinerary_schedule import generate_random_schedule
from backend.models import TourSchedule
from backend.schedule_cache import ScheduleCache
from backend.schemas import ScheduleOverlay, TourRecord

logger = logging.getLogger(__name__)


class ScheduleRepository:
    """
    保存済みスケジュールのDBアクセス（1ツアーにつき1件）
    Database access for saved schedules, one row per tour.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def fetch(self, tour_id: int) -> Optional[Dict[str, Any]]:
        db = self.session_factory()
        try:
            row = db.query(TourSchedule).filter(TourSchedule.tour_id == tour_id).first()
            if row is None:
                return None
            return json.loads(row.schedule)
        finally:
            db.close()

    def upsert(self, tour_id: int, mapping: Dict[str, Any]) -> None:
        """
        スケジュール全体を1回の書き込みで保存（作成または更新）する
        Persist the whole schedule in one write (create or update).
        """
        payload = json.dumps(mapping, ensure_ascii=False)
        db = self.session_factory()
        try:
            row = db.query(TourSchedule).filter(TourSchedule.tour_id == tour_id).first()
            if row:
                row.schedule = payload
            else:
                db.add(TourSchedule(tour_id=tour_id, schedule=payload))
            db.commit()
        except Exception as e:
            db.rollback()
            raise e
        finally:
            db.close()

    def delete(self, tour_id: int, db: Optional[Session] = None) -> None:
        """ツアー削除時に保存済みスケジュールも削除する / Drop the saved schedule of a tour."""
        if db is not None:
            db.query(TourSchedule).filter(TourSchedule.tour_id == tour_id).delete()
            return
        own = self.session_factory()
        try:
            own.query(TourSchedule).filter(TourSchedule.tour_id == tour_id).delete()
            own.commit()
        except Exception as e:
            own.rollback()
            raise e
        finally:
            own.close()


class ScheduleOverlayStore:
    """
    生成済み旅程と保存・編集済みスケジュールを仲介する
    Mediates between generated defaults and saved or edited overlays.

    - load: 保存済みスケジュールを取得（なければ None）
    - ensure: キャッシュ > 保存済み > ランダム生成 の順で決定し、キャッシュする
    - save: スケジュール全体を保存（失敗時は PersistenceFailure）
    - load: saved overlay or None
    - ensure: cached, else saved, else randomly seeded; the result is cached
    - save: persist the whole overlay, raising PersistenceFailure on error
    """

    def __init__(
        self,
        cache: ScheduleCache,
        repository: Optional[ScheduleRepository] = None,
        rng: Optional[random.Random] = None,
    ):
        self.cache = cache
        self.repository = repository or ScheduleRepository()
        self.rng = rng

    def load(self, tour_id: int) -> Optional[ScheduleOverlay]:
        """
        保存済みスケジュールを読み込む
        Load the saved overlay of a tour.

        未保存・読み込み失敗のどちらも None を返します（呼び出し側はランダム生成に切り替え）。
        Returns None both when nothing is saved and when loading fails.
        """
        try:
            raw = self.repository.fetch(tour_id)
        except (SQLAlchemyError, ValueError) as e:
            logger.warning("Failed to load schedule for tour %s, falling back: %s", tour_id, e)
            return None
        if raw is None:
            return None
        try:
            return ScheduleOverlay.from_mapping(raw)
        except (ValidationError, AttributeError) as e:
            logger.warning("Saved schedule for tour %s is unreadable: %s", tour_id, e)
            return None

    def ensure(self, tour: TourRecord, day_count: int) -> ScheduleOverlay:
        """
        ツアーのオーバーレイを確定する（セッション内では冪等）
        Resolve the overlay of a tour; idempotent within a session.

        キャッシュ済みならそれを返し、ランダム生成を再実行しません。
        A cached overlay is returned as is; random generation is never re-run for it.
        """
        cached = self.cache.get(tour.id)
        if cached is not None:
            return cached

        overlay = self.load(tour.id)
        if overlay is None:
            logger.info("No saved schedule for tour %s; seeding a random one", tour.id)
            overlay = generate_random_schedule(tour, day_count, self.rng)
        self.cache.set(tour.id, overlay)
        return overlay

    def peek(self, tour_id: int) -> Optional[ScheduleOverlay]:
        """キャッシュまたは保存済みのオーバーレイ（生成はしない） / Cached or saved overlay, never seeded."""
        cached = self.cache.get(tour_id)
        if cached is not None:
            return cached
        return self.load(tour_id)

    def update(self, tour_id: int, overlay: ScheduleOverlay) -> ScheduleOverlay:
        """編集結果をキャッシュに反映する（保存はしない） / Cache an edited overlay without saving."""
        self.cache.set(tour_id, overlay)
        return overlay

    def evict(self, tour_id: int) -> None:
        self.cache.evict(tour_id)

    def save(self, tour_id: int, overlay: ScheduleOverlay, cache: bool = True) -> bool:
        """
        スケジュール全体を保存する
        Persist the whole overlay in one write.

        失敗時は PersistenceFailure を送出し、キャッシュ上の編集内容はそのまま残します。
        On failure raises PersistenceFailure and keeps the cached overlay for a retry.
        cache=False stores the overlay without touching the session cache.
        """
        try:
            self.repository.upsert(tour_id, overlay.to_mapping())
        except Exception as e:
            logger.error("Failed to save schedule for tour %s: %s", tour_id, e, exc_info=True)
            raise PersistenceFailure("Failed to save schedule") from e
        if cache:
            self.cache.set(tour_id, overlay)
        return True
