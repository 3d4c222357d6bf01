"""Webhook receiver that authenticates Box deliveries before trusting them.

Provides a small FastAPI app with a POST endpoint (``/receiveWebhook`` by
default). The body is captured as raw bytes whatever the content type, the
``box-*`` signature headers are checked against the configured keys, and only
then is the payload parsed and handed to registered handlers. Run it via
``boxhook`` (see webhook_cli) or ``uvicorn --factory boxhook.webhook_receiver:app_from_env``
behind a TLS-enabled reverse proxy.
"""

import json
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import PlainTextResponse

from .config import Settings, load_settings
from .notifier import notify_telegram_from_env
from .verifier import DeliveryHeaders, check_delivery

logger = logging.getLogger("boxhook.webhook")

SEPARATOR = "─" * 44

EventHandler = Callable[[Dict[str, Any]], None]


class EventDispatcher:
    """Calls every registered handler with each verified event."""

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []

    def register(self, fn: EventHandler) -> EventHandler:
        self._handlers.append(fn)
        return fn

    def dispatch(self, event: Dict[str, Any]) -> None:
        for h in self._handlers:
            try:
                h(event)
            except Exception:
                logger.exception("handler %s failed", getattr(h, '__name__', h))


def _client_host(request: Request) -> str:
    return request.client.host if request.client else 'unknown'


def _log_event(body: bytes) -> Dict[str, Any]:
    text = body.decode('utf-8', errors='replace')
    try:
        event = json.loads(text)
        pretty = json.dumps(event, indent=2)
    except ValueError:
        event = {'raw': text}
        pretty = text
    logger.info("Webhook signature verified.\n%s\nWebhook event received:\n%s\n%s",
                SEPARATOR, pretty, SEPARATOR)
    if not isinstance(event, dict):
        event = {'data': event}
    return event


def _send_alert(message: str) -> None:
    try:
        notify_telegram_from_env(message)
    except Exception:
        logger.exception("Failed to send alert for rejected webhook")


def create_app(settings: Settings) -> FastAPI:
    app = FastAPI(title='boxhook')
    dispatcher = EventDispatcher()
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    max_age = timedelta(seconds=settings.max_age_seconds)

    @app.get('/health')
    async def health() -> Dict[str, str]:
        return {'status': 'ok'}

    @app.post(settings.webhook_path)
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
        body = await request.body()
        headers = DeliveryHeaders.from_mapping(request.headers, prefix=settings.header_prefix)
        result = check_delivery(body, headers, settings.keys, max_age=max_age)

        if not result:
            reason = result.reason.value if result.reason else 'unknown'
            logger.error("Invalid webhook signature from %s on %s (delivery=%s, reason=%s)",
                         _client_host(request), request.url.path, headers.delivery_id, reason)
            if settings.alerts_enabled:
                # sync task, runs in the threadpool after the response is sent
                background_tasks.add_task(
                    _send_alert,
                    f"SECURITY ALERT: rejected webhook on {request.url.path} from "
                    f"{_client_host(request)} ({reason})")
            return PlainTextResponse("Invalid signature", status_code=400, background=background_tasks)

        event = _log_event(body)
        background_tasks.add_task(dispatcher.dispatch, event)
        return PlainTextResponse("OK", status_code=200, background=background_tasks)

    return app


def register_handler(app: FastAPI, fn: EventHandler) -> EventHandler:
    """Register a callback to be called with every verified event."""
    return app.state.dispatcher.register(fn)


def app_from_env() -> FastAPI:
    """App factory reading settings from the environment (for ``uvicorn --factory``)."""
    return create_app(load_settings())
