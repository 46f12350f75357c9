import time

from itsdangerous import BadSignature, URLSafeSerializer

CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _serializer(secret: str) -> URLSafeSerializer:
    return URLSafeSerializer(secret, salt="csrf-token")


def generate_csrf_token(secret: str, user_id: int, max_age_hours: int = 12) -> str:
    serializer = _serializer(secret)
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"u": user_id, "ts": timestamp, "exp": expiry}

    return serializer.dumps(token_data)


def validate_csrf_token(secret: str, token: str, user_id: int) -> bool:
    if not token:
        return False
    serializer = _serializer(secret)
    try:
        data = serializer.loads(token)
    except BadSignature:
        return False

    if data.get("u") != user_id:
        return False

    current_time = int(time.time())
    expiry_time = data.get("exp", 0)

    if current_time > expiry_time:
        return False

    return True
