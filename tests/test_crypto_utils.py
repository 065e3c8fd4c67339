import pytest

from relaychat.crypto_utils import (
    DecryptionError,
    decrypt_message,
    encrypt_message,
    generate_keypair,
    is_public_key,
    load_private_key,
)


def test_keypair_is_hex_and_consistent():
    public_key, private_key = generate_keypair()
    assert is_public_key(public_key)
    assert len(private_key) == 64
    assert load_private_key(private_key).public_key().public_bytes_raw().hex() == public_key


def test_round_trip():
    public_key, private_key = generate_keypair()
    cipher = encrypt_message("привет, hello", public_key)
    assert "hello" not in cipher
    assert decrypt_message(cipher, private_key) == "привет, hello"


def test_wrong_key_never_yields_plaintext():
    public_key, _ = generate_keypair()
    _, other_private = generate_keypair()
    cipher = encrypt_message("secret", public_key)
    with pytest.raises(DecryptionError):
        decrypt_message(cipher, other_private)


def test_each_encryption_is_distinct():
    public_key, private_key = generate_keypair()
    first = encrypt_message("same text", public_key)
    second = encrypt_message("same text", public_key)
    assert first != second
    assert decrypt_message(first, private_key) == decrypt_message(second, private_key)


def test_tampered_ciphertext_rejected():
    public_key, private_key = generate_keypair()
    cipher = bytearray(bytes.fromhex(encrypt_message("secret", public_key)))
    cipher[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        decrypt_message(cipher.hex(), private_key)


@pytest.mark.parametrize("garbage", ["", "zz", "00" * 10])
def test_malformed_ciphertext_rejected(garbage):
    _, private_key = generate_keypair()
    with pytest.raises(DecryptionError):
        decrypt_message(garbage, private_key)


def test_invalid_recipient_key():
    with pytest.raises(ValueError):
        encrypt_message("hi", "not-a-key")


def test_is_public_key():
    public_key, _ = generate_keypair()
    assert is_public_key(public_key)
    assert not is_public_key(public_key.upper())
    assert not is_public_key("__NULL_GROUP__")
    assert not is_public_key(None)
