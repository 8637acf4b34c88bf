import time
from typing import Optional

from fastapi import HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

ANONYMOUS_USER_ID = 0


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(user_id: Optional[int] = None, max_age_hours: int = 2) -> str:
    timestamp = int(time.time())
    token_data = {
        "u": user_id or ANONYMOUS_USER_ID,
        "exp": timestamp + (max_age_hours * 3600),
    }
    return _serializer().dumps(token_data)


def validate_csrf_token(
    token: str, user_id: Optional[int] = None, max_age_hours: int = 2
) -> bool:
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False

    if data.get("u") != (user_id or ANONYMOUS_USER_ID):
        return False

    return int(time.time()) <= data.get("exp", 0)


def require_csrf(token: object, user_id: Optional[int] = None) -> None:
    if not isinstance(token, str) or not validate_csrf_token(token, user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
