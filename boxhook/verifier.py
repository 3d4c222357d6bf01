"""Signature verification for inbound Box webhook deliveries.

Box signs every delivery with HMAC-SHA256 over the raw body followed by the
``box-delivery-timestamp`` header, base64 encoded, and sends one signature per
configured key (``box-signature-primary`` / ``box-signature-secondary``).
Having two keys lets either side rotate without a synchronized cutover.

Usage::

    from boxhook.verifier import DeliveryHeaders, KeyPair, verify

    body = await request.body()  # raw bytes, never re-serialized
    headers = DeliveryHeaders.from_mapping(request.headers)
    if verify(body, headers, KeyPair('primary', 'secondary')):
        ...

Docs: https://developer.box.com/guides/webhooks/v2/signatures-v2/
"""
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Mapping, Optional

logger = logging.getLogger("boxhook.verifier")

MAX_AGE = timedelta(minutes=10)
SIGNATURE_ALGORITHM = 'HmacSHA256'
SIGNATURE_VERSION = '1'
HEADER_PREFIX = 'box-'


class ConfigurationError(Exception):
    """Raised at startup when the receiver cannot be configured."""


class RejectReason(str, Enum):
    MISSING_FIELDS = 'missing_fields'
    UNSUPPORTED_SCHEME = 'unsupported_scheme'
    INVALID_TIMESTAMP = 'invalid_timestamp'
    STALE_TIMESTAMP = 'stale_timestamp'
    FUTURE_TIMESTAMP = 'future_timestamp'
    SIGNATURE_MISMATCH = 'signature_mismatch'


@dataclass(frozen=True)
class KeyPair:
    """Primary signature key plus an optional key used during rotation."""
    primary_key: str
    secondary_key: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.primary_key:
            raise ConfigurationError('primary signature key is required')
        if self.secondary_key == '':
            object.__setattr__(self, 'secondary_key', None)

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        rotating = self.secondary_key is not None
        return f"KeyPair(primary_key='***', secondary_key={'***' if rotating else None!r})"


@dataclass(frozen=True)
class DeliveryHeaders:
    delivery_id: Optional[str] = None
    timestamp: Optional[str] = None
    algorithm: Optional[str] = None
    signature_primary: Optional[str] = None
    signature_secondary: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def from_mapping(cls, headers: Mapping[str, str], prefix: str = HEADER_PREFIX) -> 'DeliveryHeaders':
        """Pick the delivery headers out of ``headers`` (case-insensitive).

        Empty header values are treated as absent.
        """
        lowered = {str(k).lower(): v for k, v in headers.items()}

        def get(name: str) -> Optional[str]:
            value = lowered.get(f"{prefix}{name}".lower())
            return value or None

        return cls(
            delivery_id=get('delivery-id'),
            timestamp=get('delivery-timestamp'),
            algorithm=get('signature-algorithm'),
            signature_primary=get('signature-primary'),
            signature_secondary=get('signature-secondary'),
            version=get('signature-version'),
        )


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: Optional[RejectReason] = None

    def __bool__(self) -> bool:
        return self.ok


def compute_digest(key: str, body: bytes, timestamp: str) -> str:
    """Base64 HMAC-SHA256 of ``body`` followed by the raw ``timestamp`` string."""
    mac = hmac.new(key.encode('utf-8'), digestmod=hashlib.sha256)
    mac.update(body)
    mac.update(timestamp.encode('utf-8'))
    return base64.b64encode(mac.digest()).decode('ascii')


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 delivery timestamp. Naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _safe_equal(expected: str, received: str) -> bool:
    # compare_digest on str rejects non-ASCII input; compare bytes instead
    return hmac.compare_digest(expected.encode('utf-8'), received.encode('utf-8'))


def _reject(headers: DeliveryHeaders, reason: RejectReason, detail: str = '') -> VerificationResult:
    logger.warning('Rejected delivery %s: %s%s', headers.delivery_id or '<unknown>', reason.value,
                   f" ({detail})" if detail else '')
    return VerificationResult(False, reason)


def check_delivery(
    body: bytes,
    headers: DeliveryHeaders,
    keys: KeyPair,
    now: Optional[datetime] = None,
    max_age: timedelta = MAX_AGE,
) -> VerificationResult:
    """Verify a delivery and say why it was rejected.

    The reason is for local diagnostics only; callers answering the sender
    should collapse every failure into the same response.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if not headers.timestamp or not headers.signature_primary or not keys.primary_key:
        return _reject(headers, RejectReason.MISSING_FIELDS)

    if headers.algorithm is not None and headers.algorithm != SIGNATURE_ALGORITHM:
        return _reject(headers, RejectReason.UNSUPPORTED_SCHEME, f"algorithm={headers.algorithm}")
    if headers.version is not None and headers.version != SIGNATURE_VERSION:
        return _reject(headers, RejectReason.UNSUPPORTED_SCHEME, f"version={headers.version}")

    try:
        sent_at = parse_timestamp(headers.timestamp)
    except ValueError:
        return _reject(headers, RejectReason.INVALID_TIMESTAMP)
    age = now - sent_at
    if age > max_age:
        return _reject(headers, RejectReason.STALE_TIMESTAMP, f"age={age.total_seconds():.0f}s")
    if age < -max_age:
        return _reject(headers, RejectReason.FUTURE_TIMESTAMP, f"age={age.total_seconds():.0f}s")

    digest_primary = compute_digest(keys.primary_key, body, headers.timestamp)
    matches_primary = _safe_equal(digest_primary, headers.signature_primary)

    matches_secondary = False
    if keys.secondary_key is not None and headers.signature_secondary is not None:
        digest_secondary = compute_digest(keys.secondary_key, body, headers.timestamp)
        matches_secondary = _safe_equal(digest_secondary, headers.signature_secondary)

    if matches_primary or matches_secondary:
        logger.debug('Verified delivery %s (primary=%s, secondary=%s)',
                     headers.delivery_id, matches_primary, matches_secondary)
        return VerificationResult(True)
    return _reject(headers, RejectReason.SIGNATURE_MISMATCH)


def verify(
    body: bytes,
    headers: DeliveryHeaders,
    keys: KeyPair,
    now: Optional[datetime] = None,
    max_age: timedelta = MAX_AGE,
) -> bool:
    """Return True when the delivery is fresh and signed with a configured key."""
    return bool(check_delivery(body, headers, keys, now=now, max_age=max_age))
