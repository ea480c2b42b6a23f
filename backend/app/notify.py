import os
import smtplib
from email.message import EmailMessage

from sqlalchemy.orm import Session

from . import models

EMAIL_OUTBOX: list[tuple[str, str, str]] = []


def send_email(to_email: str, subject: str, message: str):
    if os.getenv("TESTING") == "1":
        EMAIL_OUTBOX.append((to_email, subject, message))
        return
    server = os.getenv("SMTP_SERVER")
    if not server:
        return
    from_addr = os.getenv("EMAIL_FROM", "noreply@example.com")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_email
    msg.set_content(message)
    with smtplib.SMTP(server) as s:
        s.send_message(msg)


def notify_user(
    db: Session,
    user: models.User,
    title: str,
    message: str,
    *,
    category: str,
    related_type: str | None = None,
    related_id=None,
    email: bool = False,
) -> models.Notification:
    """Queue an in-app notification and optionally mirror it by email.

    The notification is only flushed; it is committed together with the
    change that triggered it.
    """
    notif = models.Notification(
        user_id=user.id,
        title=title,
        message=message,
        category=category,
        meta={
            "related_type": related_type,
            "related_id": str(related_id) if related_id else None,
        },
    )
    db.add(notif)
    db.flush()
    if email and user.email:
        send_email(user.email, title, message)
    return notif
