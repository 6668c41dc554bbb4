from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings
from errors import ValidationError


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.cursor_secret, salt="transaction-cursor")


def encode_cursor(transaction_id: int, user_id: int) -> str:
    serializer = _serializer()
    return serializer.dumps({"id": transaction_id, "u": user_id})


def decode_cursor(token: str, user_id: int) -> int:
    """Return the transaction id a cursor points at, or raise ValidationError."""
    serializer = _serializer()
    try:
        data = serializer.loads(token)
    except BadSignature as exc:
        raise ValidationError("Invalid cursor") from exc

    if not isinstance(data, dict) or data.get("u") != user_id:
        raise ValidationError("Invalid cursor")

    transaction_id = data.get("id")
    if not isinstance(transaction_id, int):
        raise ValidationError("Invalid cursor")
    return transaction_id
