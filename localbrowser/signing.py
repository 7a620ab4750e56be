"""HMAC-подпись запросов между воркером и Laravel."""
import hashlib
import hmac
import time

# Окно допустимого расхождения часов (±5 минут)
SIGNATURE_WINDOW_SECONDS = 300


def compute_signature(secret: str, timestamp: int | str) -> str:
    """Hex HMAC-SHA256 от строки unix-таймстемпа."""
    return hmac.new(
        secret.encode(), str(timestamp).encode(), hashlib.sha256
    ).hexdigest()


def signed_headers(secret: str, timestamp: int | None = None) -> dict[str, str]:
    """Заголовки X-Signature / X-Timestamp для исходящего запроса."""
    ts = int(time.time()) if timestamp is None else timestamp
    return {
        "X-Signature": compute_signature(secret, ts),
        "X-Timestamp": str(ts),
    }


def verify_signature(
    secret: str,
    signature: str | None,
    timestamp: str | None,
    now: float | None = None,
    window: int = SIGNATURE_WINDOW_SECONDS,
) -> bool:
    """Проверить подпись входящего запроса: заголовки есть, таймстемп свежий, HMAC совпал."""
    if not secret or not signature or not timestamp:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - ts) > window:
        return False
    return hmac.compare_digest(compute_signature(secret, ts), signature)
