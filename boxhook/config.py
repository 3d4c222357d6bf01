"""Receiver configuration, loaded once at startup.

Signature keys are looked up in the OS keyring first (service ``boxhook``),
then the environment / ``.env`` file, then HashiCorp Vault when
``VAULT_ADDR``, ``VAULT_TOKEN`` and ``VAULT_PATH`` are all set. Everything
else comes from the environment.
"""
import os
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .utils import load_env
from .verifier import ConfigurationError, KeyPair, HEADER_PREFIX

logger = logging.getLogger('boxhook.config')

KEYRING_SERVICE = 'boxhook'
KEY_NAMES = ('PRIMARY_KEY', 'SECONDARY_KEY')


@dataclass(frozen=True)
class Settings:
    keys: KeyPair
    host: str = '127.0.0.1'
    port: int = 8080
    webhook_path: str = '/receiveWebhook'
    header_prefix: str = HEADER_PREFIX
    max_age_seconds: int = 600
    log_level: str = 'INFO'
    alerts_enabled: bool = True


def get_secret_keyring(key: str) -> Optional[str]:
    try:
        import keyring
        return keyring.get_password(KEYRING_SERVICE, key)
    except Exception:
        logger.debug('keyring lookup failed for %s', key, exc_info=True)
        return None


def get_secret_vault(vault_addr: str, token: str, path: str) -> Optional[dict]:
    """Read a KV v2 secret from HashiCorp Vault using hvac. Returns dict or None."""
    try:
        import hvac
        client = hvac.Client(url=vault_addr, token=token)
        secret = client.secrets.kv.v2.read_secret_version(path=path)
        return secret.get('data', {}).get('data')
    except Exception:
        logger.exception('Failed to read secret from vault')
        return None


def read_signature_keys(env: Optional[Mapping[str, str]] = None) -> Dict[str, Optional[str]]:
    env = os.environ if env is None else env
    result: Dict[str, Optional[str]] = {}
    for name in KEY_NAMES:
        result[name] = get_secret_keyring(name) or env.get(name) or None

    vault_addr = env.get('VAULT_ADDR')
    vault_token = env.get('VAULT_TOKEN')
    vault_path = env.get('VAULT_PATH')
    if vault_addr and vault_token and vault_path and not all(result.values()):
        vault_data = get_secret_vault(vault_addr, vault_token, vault_path)
        if isinstance(vault_data, dict):
            for name in KEY_NAMES:
                result[name] = result.get(name) or vault_data.get(name) or None

    return result


def _as_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _as_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings(env_file: Optional[str] = '.env', overrides: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from ``.env``, the process environment and ``overrides``.

    Later sources win. Raises ConfigurationError when PRIMARY_KEY cannot be
    found anywhere, so a misconfigured receiver fails at startup instead of
    rejecting every delivery.
    """
    env: Dict[str, str] = {}
    if env_file:
        env.update(load_env(env_file))
    env.update(os.environ)
    if overrides:
        env.update(overrides)

    secrets = read_signature_keys(env)
    if not secrets.get('PRIMARY_KEY'):
        raise ConfigurationError('PRIMARY_KEY is not set (keyring, environment or vault)')
    keys = KeyPair(secrets['PRIMARY_KEY'], secrets.get('SECONDARY_KEY'))
    if keys.secondary_key is None:
        logger.info('SECONDARY_KEY not set; only the primary signature will be checked')

    max_age = _as_int(env, 'WEBHOOK_MAX_AGE_SECONDS', 600)
    if max_age <= 0:
        raise ConfigurationError('WEBHOOK_MAX_AGE_SECONDS must be positive')

    path = env.get('WEBHOOK_PATH') or '/receiveWebhook'
    if not path.startswith('/'):
        path = '/' + path

    return Settings(
        keys=keys,
        host=env.get('WEBHOOK_HOST') or '127.0.0.1',
        port=_as_int(env, 'PORT', 8080),
        webhook_path=path,
        header_prefix=env.get('WEBHOOK_HEADER_PREFIX') or HEADER_PREFIX,
        max_age_seconds=max_age,
        log_level=env.get('LOG_LEVEL') or 'INFO',
        alerts_enabled=_as_bool(env, 'WEBHOOK_ALERTS', True),
    )
