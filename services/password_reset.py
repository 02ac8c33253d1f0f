import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from core.config import settings
from core.errors import InvalidToken
from models.user import User
from security.password import hash_password, hash_reset_token
from services.email import send_templated_email

logger = logging.getLogger(__name__)


def request_reset(db: Session, email: str) -> None:
    """
    Email a reset link if the account exists. Callers answer the same way
    either way so the endpoint does not reveal which emails are registered.
    """
    user = db.query(User).filter(User.email == email.lower()).one_or_none()
    if user is None:
        logger.info("Password reset requested for unknown email")
        return
    issue_reset_token(db, user)


def issue_reset_token(db: Session, user: User) -> str:
    token = secrets.token_hex(32)
    user.reset_password_token = hash_reset_token(token)
    user.reset_password_expires_at = datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES)
    db.commit()

    send_templated_email(
        user.email,
        "Password Reset Request",
        "emails/password_reset.html",
        {
            "name": user.name,
            "reset_url": f"{settings.FRONTEND_URL}/auth/reset-password/{token}",
            "ttl_minutes": settings.PASSWORD_RESET_TTL_MINUTES,
        },
    )
    return token


def reset_password(db: Session, token: str, new_password: str) -> User:
    user = (
        db.query(User)
        .filter(
            User.reset_password_token == hash_reset_token(token),
            User.reset_password_expires_at > datetime.utcnow(),
        )
        .one_or_none()
    )
    if user is None:
        raise InvalidToken("Invalid or expired token")

    user.password_hash = hash_password(new_password)
    user.reset_password_token = None
    user.reset_password_expires_at = None
    db.commit()
    logger.info("Password reset completed for user %s", user.id)

    send_templated_email(
        user.email,
        "Password Reset Successful",
        "emails/password_reset_success.html",
        {"name": user.name},
    )
    return user
