"""
スタッフアカウントの管理と初期データ投入。
Staff account management and startup bootstrap.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend import security
from backend.models import Staff

logger = logging.getLogger(__name__)

DEMO_ADMIN_EMAIL = os.getenv("DEMO_ADMIN_EMAIL", "admin@example.com")
DEMO_ADMIN_PASSWORD = os.getenv("DEMO_ADMIN_PASSWORD", "password")
ROLES = ("admin", "staff")


class DuplicateEmail(Exception):
    """同じメールアドレスのスタッフが既に存在する / A staff member already uses the email."""


def split_name(name: str) -> Tuple[str, str]:
    """
    氏名を姓・名に分割する
    Split a full name into first and last name.

    1語だけの場合は同じ語を姓にも使います（"Mika" -> ("Mika", "Mika")）。
    A single word is reused as the last name.
    """
    parts = (name or "").split()
    if not parts:
        return "", ""
    first = parts[0]
    last = " ".join(parts[1:]) or first
    return first, last


def staff_to_dict(staff: Staff) -> Dict[str, Any]:
    return {
        "id": staff.id,
        "email": staff.email,
        "name": staff.full_name,
        "role": staff.role,
        "created_at": staff.created_at.isoformat() if staff.created_at else None,
    }


def session_profile(staff: Staff) -> Dict[str, Any]:
    """セッションに保存するプロフィール / Profile stored in the login session."""
    return {"id": staff.id, "email": staff.email, "name": staff.full_name, "role": staff.role}


def list_staff(db: Session) -> List[Dict[str, Any]]:
    return [staff_to_dict(staff) for staff in db.query(Staff).order_by(Staff.id).all()]


def find_by_email(db: Session, email: str) -> Optional[Staff]:
    return db.query(Staff).filter(Staff.email == (email or "").strip().lower()).first()


def authenticate(db: Session, email: str, password: str) -> Optional[Staff]:
    staff = find_by_email(db, email)
    if staff is None or not security.verify_password(staff.password_hash, password):
        return None
    return staff


def create_staff(db: Session, email: str, password: str, name: str, role: str) -> Dict[str, Any]:
    email = email.strip().lower()
    if find_by_email(db, email) is not None:
        raise DuplicateEmail(email)
    first_name, last_name = split_name(name)
    staff = Staff(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        availability_status="available",
        password_hash=security.hash_password(password),
    )
    db.add(staff)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicateEmail(email) from e
    db.refresh(staff)
    logger.info("Created staff %s (%s)", staff.id, staff.role)
    return staff_to_dict(staff)


def update_staff(
    db: Session,
    staff_id: int,
    name: Optional[str] = None,
    role: Optional[str] = None,
    password: Optional[str] = None,
) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """
    スタッフ情報を更新し (更新前, 更新後) を返す。存在しなければ None
    Update a staff member; returns (before, after) or None when missing.
    """
    staff = db.query(Staff).filter(Staff.id == staff_id).first()
    if staff is None:
        return None
    before = staff_to_dict(staff)
    if name:
        staff.first_name, staff.last_name = split_name(name)
    if role:
        staff.role = role
    if password:
        staff.password_hash = security.hash_password(password)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        raise e
    db.refresh(staff)
    return before, staff_to_dict(staff)


def delete_staff(db: Session, staff_id: int) -> Optional[Dict[str, Any]]:
    staff = db.query(Staff).filter(Staff.id == staff_id).first()
    if staff is None:
        return None
    deleted = staff_to_dict(staff)
    try:
        db.delete(staff)
        db.commit()
    except Exception as e:
        db.rollback()
        raise e
    return deleted


def ensure_demo_admin(db: Session) -> bool:
    """
    デモ用管理者が存在しなければ作成する
    Create the demo admin account unless it already exists.

    作成した場合は True を返します。
    Returns True when the account was created.
    """
    if find_by_email(db, DEMO_ADMIN_EMAIL) is not None:
        return False
    db.add(Staff(
        email=DEMO_ADMIN_EMAIL.strip().lower(),
        first_name="Admin",
        last_name="User",
        role="admin",
        availability_status="available",
        password_hash=security.hash_password(DEMO_ADMIN_PASSWORD),
    ))
    db.commit()
    logger.info("Demo admin %s created", DEMO_ADMIN_EMAIL)
    return True


def initialize_passwords(db: Session) -> int:
    """
    パスワード未設定のスタッフにデモ用パスワードを設定する
    Give staff rows without a password hash the demo password.
    """
    missing = db.query(Staff).filter(Staff.password_hash.is_(None)).all()
    if not missing:
        return 0
    password_hash = security.hash_password(DEMO_ADMIN_PASSWORD)
    for staff in missing:
        staff.password_hash = password_hash
    db.commit()
    logger.info("Initialized passwords for %s staff members", len(missing))
    return len(missing)


def bootstrap_staff(db: Session) -> None:
    """起動時の初期データ投入 / Startup bootstrap of staff accounts."""
    try:
        ensure_demo_admin(db)
        initialize_passwords(db)
    except Exception as e:
        db.rollback()
        logger.error("Staff bootstrap failed: %s", e, exc_info=True)
