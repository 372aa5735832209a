"""
セッション単位のスケジュールキャッシュ。
Per-session cache of schedule overlays, keyed by tour id.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from backend import redis_client
from backend.schemas import ScheduleOverlay

logger = logging.getLogger(__name__)


class ScheduleCache:
    """
    スタッフセッションごとのオーバーレイキャッシュ
    Overlay cache scoped to one staff session.

    ツアーの選択解除時に evict されます。保存前の編集内容はここにだけ存在します。
    Evicted when the tour is deselected; unsaved edits live only here.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id

    def get(self, tour_id: int) -> Optional[ScheduleOverlay]:
        raw = redis_client.get_session_json(self.session_id, redis_client.schedule_key_type(tour_id))
        if raw is None:
            return None
        try:
            return ScheduleOverlay.from_mapping(raw)
        except (ValidationError, AttributeError) as e:
            logger.warning("Dropping unreadable cached schedule for tour %s: %s", tour_id, e)
            self.evict(tour_id)
            return None

    def set(self, tour_id: int, overlay: ScheduleOverlay) -> None:
        redis_client.save_session_json(
            self.session_id,
            redis_client.schedule_key_type(tour_id),
            overlay.to_mapping(),
        )

    def evict(self, tour_id: int) -> None:
        redis_client.delete_session_values(self.session_id, redis_client.schedule_key_type(tour_id))
