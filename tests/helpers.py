from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.security import create_access_token
from app.models.users import User

TEST_PASSWORD = "Password123!"


class FakeClock:
    """Управляемые часы для проверки истечения кодов"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def sent_code(notifier, template_suffix: str = "-email") -> str:
    """Код из последнего отправленного сообщения нужного канала"""
    for call in reversed(notifier.send.call_args_list):
        destination, subject, template_id, data = call.args
        if template_id.endswith(template_suffix):
            return data["code"]
    raise AssertionError(f"No '{template_suffix}' notification was sent")


def make_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token(
        subject=user.sid,
        claims={"username": user.username, "email": user.email, "role": user.role.value},
        expires_delta=expires_delta,
    )


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
