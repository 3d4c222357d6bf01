import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import boxhook.config as config
from boxhook import signer
from boxhook.signer import send_test_delivery, sign_delivery
from boxhook.verifier import DeliveryHeaders, KeyPair, check_delivery, compute_digest, verify


def test_sign_delivery_headers():
    body = b'{"type":"TEST"}'
    headers = sign_delivery(body, KeyPair('secret'), timestamp='2026-10-19T12:00:00+00:00', delivery_id='abc')
    assert headers['box-delivery-id'] == 'abc'
    assert headers['box-signature-algorithm'] == 'HmacSHA256'
    assert headers['box-signature-version'] == '1'
    assert headers['box-signature-primary'] == compute_digest('secret', body, '2026-10-19T12:00:00+00:00')
    assert 'box-signature-secondary' not in headers


def test_signed_headers_verify_now():
    body = b'{"type":"TEST"}'
    keys = KeyPair('secret', 'rotated')
    headers = sign_delivery(body, keys)
    assert 'box-signature-secondary' in headers
    assert verify(body, DeliveryHeaders.from_mapping(headers), keys) is True


def test_send_test_delivery_posts_signed_bytes(monkeypatch):
    captured = {}

    class FakeResponse:
        status_code = 200
        text = 'OK'

    def fake_post(url, data=None, headers=None, timeout=None):
        captured.update(url=url, data=data, headers=headers, timeout=timeout)
        return FakeResponse()

    monkeypatch.setattr(signer.requests, 'post', fake_post)
    keys = KeyPair('secret')
    resp = send_test_delivery('http://localhost:8080/receiveWebhook', {'type': 'TEST'}, keys)
    assert resp.status_code == 200
    assert captured['url'] == 'http://localhost:8080/receiveWebhook'
    assert json.loads(captured['data']) == {'type': 'TEST'}
    assert captured['headers']['Content-Type'] == 'application/json'
    result = check_delivery(captured['data'], DeliveryHeaders.from_mapping(captured['headers']), keys)
    assert result.ok


def test_main_exits_on_missing_key(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ('PRIMARY_KEY', 'SECONDARY_KEY', 'VAULT_ADDR'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, 'get_secret_keyring', lambda key: None)
    monkeypatch.setattr(signer, 'send_test_delivery', lambda *a, **kw: pytest.fail('should not send'))
    with pytest.raises(SystemExit) as exc:
        signer.main()
    assert exc.value.code == 2
