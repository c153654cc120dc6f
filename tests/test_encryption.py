"""Tests for credential encryption."""
import pytest

from storage_gateway.errors import EncryptionError
from storage_gateway.security.encryption import decrypt, decrypt_json, encrypt, encrypt_json


def test_round_trip_returns_exact_bytes():
    data = b"\x00\x01binary\xffpayload"
    token = encrypt(data, "s3cret")
    assert decrypt(token, "s3cret") == data


def test_tokens_are_salted_per_blob():
    assert encrypt("same", "s3cret") != encrypt("same", "s3cret")


def test_token_format():
    version, salt, nonce, ciphertext = encrypt("hello", "s3cret").split(":")
    assert version == "v1"
    assert len(bytes.fromhex(salt)) == 16
    assert len(bytes.fromhex(nonce)) == 12
    # 5 bytes of plaintext plus the 16 byte GCM tag
    assert len(bytes.fromhex(ciphertext)) == 21


def test_wrong_secret_fails_loudly():
    token = encrypt_json({"access_token": "abc"}, "right-secret")
    with pytest.raises(EncryptionError):
        decrypt_json(token, "wrong-secret")


def test_tampered_ciphertext_is_rejected():
    token = encrypt("hello", "s3cret")
    head, last = token[:-2], token[-2:]
    flipped = "00" if last != "00" else "ff"
    with pytest.raises(EncryptionError):
        decrypt(head + flipped, "s3cret")


@pytest.mark.parametrize("token", ["", "garbage", "v2:aa:bb:cc", "v1:zz:zz:zz", "v1:00:00:00"])
def test_malformed_tokens(token):
    with pytest.raises(EncryptionError):
        decrypt(token, "s3cret")


def test_empty_secret_is_rejected():
    with pytest.raises(EncryptionError):
        encrypt("hello", "")


def test_json_helpers():
    creds = {"key_id": "k", "application_key": "a"}
    assert decrypt_json(encrypt_json(creds, "s3cret"), "s3cret") == creds
