import os
import binascii
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes, serialization

_KEY_LEN = 32
_NONCE_LEN = 12
_HKDF_INFO = b"relaychat-ecies-v1"


class DecryptionError(Exception):
    pass


def generate_keypair():
    """Generate an X25519 identity keypair and return (public_hex, private_hex)."""
    priv = x25519.X25519PrivateKey.generate()
    return _public_hex(priv), _private_hex(priv)


def generate_ephemeral():
    """Generate X25519 ephemeral keypair and return (private, public_bytes)."""
    priv = x25519.X25519PrivateKey.generate()
    pub = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )
    return priv, pub


def _public_hex(priv):
    return priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    ).hex()


def _private_hex(priv):
    return priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption()
    ).hex()


def load_public_key(public_hex):
    """Load X25519 public key from a hex string."""
    return x25519.X25519PublicKey.from_public_bytes(bytes.fromhex(public_hex))


def load_private_key(private_hex):
    """Load X25519 private key from a hex string."""
    return x25519.X25519PrivateKey.from_private_bytes(bytes.fromhex(private_hex))


def hkdf_derive(key_material, salt, info, length=32):
    """HKDF with explicit salt and info."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info
    )
    return hkdf.derive(key_material)


def _message_key(shared_secret, eph_pub, recipient_pub):
    return hkdf_derive(shared_secret, None, _HKDF_INFO + eph_pub + recipient_pub, _KEY_LEN)


def encrypt_message(plaintext, recipient_public_hex):
    """
    Encrypt a message for a single recipient.

    A fresh ephemeral key is used on every call, so two recipients (or two
    sends to the same recipient) never share a ciphertext.

    Returns:
        hex string of ephemeral_pub || nonce || ciphertext
    """
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    try:
        recipient = load_public_key(recipient_public_hex)
    except ValueError as e:
        raise ValueError(f"Invalid recipient public key: {e}") from e
    recipient_pub = recipient.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )

    eph_priv, eph_pub = generate_ephemeral()
    key = _message_key(eph_priv.exchange(recipient), eph_pub, recipient_pub)
    nonce = os.urandom(_NONCE_LEN)
    ciphertext = ChaCha20Poly1305(key).encrypt(nonce, plaintext, eph_pub)
    return (eph_pub + nonce + ciphertext).hex()


def decrypt_message(encrypted_hex, private_hex):
    """
    Decrypt a message produced by encrypt_message.

    Raises DecryptionError for malformed input or when the key does not match.
    """
    try:
        data = bytes.fromhex(encrypted_hex)
    except (TypeError, ValueError) as e:
        raise DecryptionError(f"Invalid encrypted data hex: {e}") from e
    if len(data) < _KEY_LEN + _NONCE_LEN:
        raise DecryptionError("Encrypted data too short")
    try:
        priv = load_private_key(private_hex)
    except ValueError as e:
        raise DecryptionError(f"Invalid private key: {e}") from e

    eph_pub = data[:_KEY_LEN]
    nonce = data[_KEY_LEN:_KEY_LEN + _NONCE_LEN]
    ciphertext = data[_KEY_LEN + _NONCE_LEN:]
    own_pub = bytes.fromhex(_public_hex(priv))

    try:
        shared = priv.exchange(x25519.X25519PublicKey.from_public_bytes(eph_pub))
        key = _message_key(shared, eph_pub, own_pub)
        plaintext = ChaCha20Poly1305(key).decrypt(nonce, ciphertext, eph_pub)
    except (InvalidTag, ValueError) as e:
        raise DecryptionError("Decryption failed") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError(f"Invalid UTF-8: {e}") from e


def is_public_key(value):
    if not isinstance(value, str) or len(value) != _KEY_LEN * 2:
        return False
    try:
        binascii.unhexlify(value)
    except (binascii.Error, ValueError):
        return False
    return value == value.lower()


class IdentityProvider:
    """Keypair generation and per-recipient encryption used by the session."""

    def generate_keypair(self):
        return generate_keypair()

    def encrypt(self, plaintext, recipient_public_key):
        return encrypt_message(plaintext, recipient_public_key)

    def decrypt(self, ciphertext, private_key):
        return decrypt_message(ciphertext, private_key)
