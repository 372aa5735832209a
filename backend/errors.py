"""
旅程・スケジュール操作で送出する例外。
Exceptions raised by schedule operations.
"""


class ScheduleError(Exception):
    """スケジュール操作の基底例外 / Base class for schedule errors."""


class PersistenceFailure(ScheduleError):
    """
    スケジュールの保存に失敗した（再試行可能）
    Saving a schedule failed; the in-memory overlay is kept for a retry.
    """
    retryable = True


class ScheduleLocked(ScheduleError):
    """編集モードでない状態で変更しようとした / Mutation attempted while Locked."""


class UnknownActivity(ScheduleError, KeyError):
    """カタログに存在しないアクティビティ / Activity key missing from the catalog."""

    def __str__(self) -> str:
        return f"Unknown activity: {self.args[0] if self.args else ''}"


class DayIndexOutOfRange(ScheduleError, IndexError):
    """日インデックスが旅程の範囲外 / Day index outside [0, day_count)."""
