"""Sign deliveries the way Box does, for exercising a receiver locally.

Run with ``boxhook-sign`` (or ``python -m boxhook.signer``): it posts a
``{"type": "TEST"}`` event to ``WEBHOOK_URL`` signed with the configured keys.
"""
import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from .config import load_settings
from .utils import setup_logging
from .verifier import (HEADER_PREFIX, SIGNATURE_ALGORITHM, SIGNATURE_VERSION,
                       ConfigurationError, KeyPair, compute_digest)

logger = logging.getLogger("boxhook.signer")

WEBHOOK_URL = os.getenv('WEBHOOK_URL', 'http://localhost:8080/receiveWebhook')


def format_timestamp(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.isoformat(timespec='seconds')


def sign_delivery(
    body: bytes,
    keys: KeyPair,
    timestamp: Optional[str] = None,
    delivery_id: Optional[str] = None,
    prefix: str = HEADER_PREFIX,
) -> Dict[str, str]:
    """Return the signature headers for ``body``.

    A secondary signature is included only when ``keys`` carries a secondary key.
    """
    timestamp = timestamp or format_timestamp()
    headers = {
        f'{prefix}delivery-id': delivery_id or uuid.uuid4().hex,
        f'{prefix}delivery-timestamp': timestamp,
        f'{prefix}signature-algorithm': SIGNATURE_ALGORITHM,
        f'{prefix}signature-version': SIGNATURE_VERSION,
        f'{prefix}signature-primary': compute_digest(keys.primary_key, body, timestamp),
    }
    if keys.secondary_key is not None:
        headers[f'{prefix}signature-secondary'] = compute_digest(keys.secondary_key, body, timestamp)
    return headers


def send_test_delivery(url: str, payload: Dict[str, Any], keys: KeyPair, timeout: float = 10) -> requests.Response:
    # serialize once; the signature covers these exact bytes
    body = json.dumps(payload).encode('utf-8')
    headers = {'Content-Type': 'application/json'}
    headers.update(sign_delivery(body, keys))
    resp = requests.post(url, data=body, headers=headers, timeout=timeout)
    logger.info('POST %s -> %s', url, resp.status_code)
    return resp


def main():
    setup_logging()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)
    resp = send_test_delivery(WEBHOOK_URL, {'type': 'TEST'}, settings.keys)
    print('Status:', resp.status_code)
    print('Response:', resp.text)


if __name__ == '__main__':
    main()
