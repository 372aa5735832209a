"""
変更通知メール（他のスタッフへ送信）。
Change notification emails sent to the other staff members.

RESEND_API_KEY が設定されていれば Resend API で送信し、未設定ならログに出力します。
Sends through the Resend API when RESEND_API_KEY is set, otherwise logs the message.
送信失敗は呼び出し元の処理を止めません。
Delivery failures never block the operation that triggered them.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.database import SessionLocal
from backend.models import Staff

logger = logging.getLogger(__name__)

RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
RESEND_TIMEOUT_SECONDS = 10

ACTION_TEXT = {"create": "Created", "update": "Updated", "delete": "Deleted"}
TYPE_TEXT = {"staff": "Staff Member", "tour": "Tour", "arrival": "Guest Arrival"}
EMPTY_VALUE = "-"
FOOTER_TEXT = "This is an automated notification from the staff management system."


class ChangedBy(BaseModel):
    id: Optional[int] = None
    name: str = ""
    email: str = ""


class Notification(BaseModel):
    """
    通知内容
    A change notification.

    changes は {フィールド名: {"old": 旧値, "new": 新値}} の形式です。
    `changes` maps field names to {"old": ..., "new": ...}.
    """
    action: str
    type: str
    changes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    changed_by: ChangedBy = Field(default_factory=ChangedBy)
    record_id: str = ""
    record_name: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def notifications_enabled() -> bool:
    return os.getenv("NOTIFICATIONS_ENABLED", "true").strip().lower() in ("1", "true", "yes", "on")


def diff_changes(old: Mapping[str, Any], new: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    更新前後で値が変わったフィールドだけを抽出する
    Fields whose value differs between the old and new record.

    None と空文字は同じ値として扱います。
    None and "" are treated as equal.
    """
    changes: Dict[str, Dict[str, Any]] = {}
    for field, new_value in new.items():
        old_value = old.get(field)
        if _display(old_value) != _display(new_value):
            changes[field] = {"old": old_value, "new": new_value}
    return changes


def snapshot_changes(record: Mapping[str, Any], action: str) -> Dict[str, Dict[str, Any]]:
    """作成・削除時の内容（空でない項目のみ） / Non-empty fields of a created or deleted record."""
    side = "old" if action == "delete" else "new"
    return {
        field: {side: value}
        for field, value in record.items()
        if field != "id" and _display(value) != EMPTY_VALUE
    }


def _display(value: Any) -> str:
    if value is None:
        return EMPTY_VALUE
    text = str(value)
    return text if text else EMPTY_VALUE


def _field_title(field: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in field.replace("_", " ").split(" "))


def build_subject(notification: Notification) -> str:
    type_text = TYPE_TEXT.get(notification.type, notification.type.title())
    action_text = ACTION_TEXT.get(notification.action, notification.action.title())
    subject = f"{type_text} {action_text}"
    if notification.record_name:
        subject += f" - {notification.record_name}"
    return subject


def build_email_content(notification: Notification) -> Tuple[str, str]:
    """
    件名とプレーンテキスト本文を生成する
    Build the subject line and the plain-text body.
    """
    subject = build_subject(notification)
    lines = []
    for field, change in notification.changes.items():
        title = _field_title(field)
        if notification.action == "update":
            lines.append(f'{title}: "{_display(change.get("old"))}" -> "{_display(change.get("new"))}"')
        elif notification.action == "create":
            lines.append(f"{title}: {_display(change.get('new'))}")
        else:
            lines.append(f"{title}: {_display(change.get('old'))}")

    actor = notification.changed_by
    body = "\n".join([
        subject,
        "",
        f"Action: {notification.action.upper()}",
        f"Type: {TYPE_TEXT.get(notification.type, notification.type)}",
        f"Changed by: {actor.name} ({actor.email})",
        f"Time: {notification.timestamp}",
        "",
        "Changes:",
        *lines,
        "",
        "---",
        FOOTER_TEXT,
    ])
    return subject, body


def recipient_emails(actor_id: Optional[int], db: Optional[Session] = None) -> List[str]:
    """
    変更者以外のスタッフのメールアドレス一覧
    Email addresses of every staff member except the actor.
    """
    own = db is None
    db = db or SessionLocal()
    try:
        query = db.query(Staff)
        if actor_id is not None:
            query = query.filter(Staff.id != actor_id)
        return [staff.email for staff in query.order_by(Staff.id).all() if staff.email]
    finally:
        if own:
            db.close()


def send_via_resend(
    to: List[str],
    subject: str,
    text: str,
    api_key: str,
    sender_email: str,
    sender_name: str,
) -> Optional[str]:
    """
    Resend API でメールを送信し、メッセージIDを返す
    Send through the Resend API and return the message id.
    """
    from_email = os.getenv("RESEND_FROM_EMAIL", "onboard@resend.dev")
    payload = {
        "from": f"{sender_name} <{from_email}>",
        "reply_to": sender_email,
        "to": to,
        "subject": subject,
        "text": text,
    }
    response = requests.post(
        RESEND_API_URL,
        json=payload,
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=RESEND_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    message_id = response.json().get("id")
    logger.info("Email sent successfully. Message ID: %s", message_id)
    return message_id


def send_notification(
    notification: Notification,
    recipients_provider: Callable[[Optional[int]], List[str]] = recipient_emails,
) -> Optional[Dict[str, Any]]:
    """
    通知メールを送信する（失敗しても例外は送出しない）
    Send a notification; never raises.

    送信先がいない場合や送信に失敗した場合は None を返します。
    Returns None when there is nobody to notify or delivery failed.
    """
    if not notifications_enabled():
        return None

    try:
        recipients = recipients_provider(notification.changed_by.id)
        if not recipients:
            logger.info("No other staff members to notify")
            return None

        subject, text = build_email_content(notification)
        actor = notification.changed_by
        api_key = os.getenv("RESEND_API_KEY")
        if api_key:
            send_via_resend(recipients, subject, text, api_key, actor.email, actor.name)
        else:
            logger.info(
                "Email notification (not sent, RESEND_API_KEY unset)\nFrom: %s <%s>\nTo: %s\nSubject: %s\n\n%s",
                actor.name, actor.email, ", ".join(recipients), subject, text,
            )

        return {
            "success": True,
            "recipient_count": len(recipients),
            "recipients": recipients,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sender_name": actor.name,
            "sender_email": actor.email,
        }
    except Exception as e:
        logger.warning("Error sending notification email: %s", e, exc_info=True)
        return None


def notify(
    action: str,
    record_type: str,
    changes: Dict[str, Dict[str, Any]],
    actor: Mapping[str, Any],
    record_id: Any,
    record_name: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """ルートから呼ぶための簡易ラッパー / Convenience wrapper used by the routes."""
    notification = Notification(
        action=action,
        type=record_type,
        changes=changes,
        changed_by=ChangedBy(
            id=actor.get("id"),
            name=actor.get("name") or "",
            email=actor.get("email") or "",
        ),
        record_id=str(record_id),
        record_name=record_name or None,
    )
    return send_notification(notification)
