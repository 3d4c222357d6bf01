"""Operator alerts for rejected deliveries.

Alerts go to a Telegram chat configured with ``TELEGRAM_BOT_TOKEN`` and
``TELEGRAM_CHAT_ID``; without them every call is a no-op.
"""
import logging
import os
import secrets
import time
from typing import Callable, Dict

logger = logging.getLogger("boxhook.notify")

_last_call: Dict[str, float] = {}


def retry(max_attempts: int = 3, base_delay: float = 0.5, backoff: float = 2.0, jitter: float = 0.1):
    def deco(func: Callable):
        def wrapped(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception:
                    attempt += 1
                    if attempt >= max_attempts:
                        raise
                    sleep = base_delay * (backoff ** (attempt - 1))
                    jitter_val = (secrets.randbelow(1000) / 1000.0) * jitter
                    if secrets.randbelow(2) == 0:
                        sleep = sleep * (1 - jitter_val)
                    else:
                        sleep = sleep * (1 + jitter_val)
                    logger.debug('%s failed (attempt %d), retrying in %.2fs', func.__name__, attempt, sleep)
                    time.sleep(sleep)
        wrapped.__name__ = func.__name__
        return wrapped
    return deco


def rate_limit(min_interval: float = 1.0):
    """Simple per-function rate limiter (min seconds between calls)."""
    def deco(func: Callable):
        key = func.__name__
        def wrapped(*args, **kwargs):
            now = time.time()
            last = _last_call.get(key, 0)
            if now - last < min_interval:
                logger.debug('Rate limit: skipping %s', key)
                return None
            _last_call[key] = now
            return func(*args, **kwargs)
        wrapped.__name__ = func.__name__
        return wrapped
    return deco


def notify_telegram(bot_token: str, chat_id: str, message: str) -> None:
    """Send a Telegram message via bot API. Network errors will raise."""
    import requests
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    resp = requests.post(url, json={"chat_id": chat_id, "text": message}, timeout=10)
    resp.raise_for_status()
    logger.info("Sent telegram alert to %s", chat_id)


@retry(max_attempts=3)
def _send_from_env(bot: str, chat: str, message: str) -> None:
    notify_telegram(bot, chat, message)


def _notify_telegram_from_env_impl(message: str) -> None:
    bot = os.getenv('TELEGRAM_BOT_TOKEN')
    chat = os.getenv('TELEGRAM_CHAT_ID')
    if not bot or not chat:
        logger.debug('Telegram creds not configured in env')
        return
    try:
        _send_from_env(bot, chat, message)
    except Exception:
        logger.exception('Failed to send telegram notification')


notify_telegram_from_env = rate_limit(1.0)(_notify_telegram_from_env_impl)
