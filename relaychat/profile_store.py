import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from .config import _env_truthy
from .crypto_utils import is_public_key

DEFAULT_DISPLAY_NAME = "John Doe"
_ALLOW_PLAINTEXT_KEYSTORE_ENV = "RELAYCHAT_ALLOW_PLAINTEXT_KEYSTORE"
_PROFILE_KEY = "profile"


class ProfileStoreError(Exception):
    pass


@dataclass
class SelfProfile:
    id: str
    name: str
    public_key: str
    private_key: str

    @classmethod
    def create(cls, public_key, private_key, name=DEFAULT_DISPLAY_NAME):
        return cls(id=public_key, name=name, public_key=public_key, private_key=private_key)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ProfileStoreError("Profile must be a JSON object")
        try:
            profile = cls(
                id=str(data["id"]),
                name=str(data["name"]),
                public_key=str(data["public_key"]),
                private_key=str(data["private_key"]),
            )
        except KeyError as e:
            raise ProfileStoreError(f"Profile is missing {e}") from e
        if profile.id != profile.public_key or not is_public_key(profile.public_key):
            raise ProfileStoreError("Profile public key is invalid")
        return profile

    def to_dict(self):
        return asdict(self)


class _KeyringStore:
    def __init__(self, service="relaychat"):
        self.service = service
        try:
            keyring.get_keyring()
        except Exception as e:
            raise RuntimeError("Keyring backend is not available") from e

    def get_json(self, key):
        try:
            raw = keyring.get_password(self.service, key)
        except KeyringError as e:
            raise RuntimeError("Keyring backend is not available") from e
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProfileStoreError(f"Stored profile is not valid JSON: {e}") from e

    def set_json(self, key, data):
        payload = json.dumps(data, ensure_ascii=True)
        try:
            keyring.set_password(self.service, key, payload)
        except KeyringError as e:
            raise RuntimeError("Keyring backend is not available") from e

    def delete(self, key):
        try:
            keyring.delete_password(self.service, key)
        except KeyringError:
            pass


class _FileStore:
    def __init__(self, path, allow_plaintext):
        self.path = Path(path)
        self.allow_plaintext = allow_plaintext

    def load(self):
        if not self.path.exists():
            return None
        if not self.allow_plaintext:
            raise RuntimeError(
                "Plaintext profile storage is blocked. "
                f"Enable a keyring backend or set {_ALLOW_PLAINTEXT_KEYSTORE_ENV}=1."
            )
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ProfileStoreError(f"Stored profile is not valid JSON: {e}") from e

    def save(self, data):
        if not self.allow_plaintext:
            raise RuntimeError(
                "Secure profile storage is unavailable. "
                f"Enable a keyring backend or set {_ALLOW_PLAINTEXT_KEYSTORE_ENV}=1."
            )
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def delete(self):
        if self.path.exists():
            self.path.unlink()


class ProfileStore:
    """Single durable slot for the local user's profile and private key."""

    def __init__(self, config_dir=".chat_config", service="relaychat", warning_callback=None,
                 use_keyring=True, allow_plaintext=None):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self._volatile = None
        self._storage_warning_emitted = False
        self._warning_callback = warning_callback
        self._keyring = None
        if use_keyring:
            try:
                self._keyring = _KeyringStore(service)
            except RuntimeError:
                self._keyring = None
        if allow_plaintext is None:
            allow_plaintext = _env_truthy(os.getenv(_ALLOW_PLAINTEXT_KEYSTORE_ENV))
        self._file = _FileStore(self.config_dir / "profile.json", allow_plaintext)

    def _warn_storage_issue(self, action, err):
        if self._storage_warning_emitted:
            return
        self._storage_warning_emitted = True
        message = (
            f"[IDENTITY][WARN] Profile persistence disabled ({action} failed: {err}). "
            "Using volatile in-memory storage for this session."
        )
        print(message)
        if callable(self._warning_callback):
            self._warning_callback(message)

    def load(self):
        data = None
        if self._keyring:
            try:
                data = self._keyring.get_json(_PROFILE_KEY)
            except RuntimeError:
                data = None
        if data is None:
            try:
                data = self._file.load()
            except RuntimeError as e:
                self._warn_storage_issue("load", e)
                data = None
        if data is None:
            data = self._volatile
        if data is None:
            return None
        return SelfProfile.from_dict(data)

    def save(self, profile):
        data = profile.to_dict()
        self._volatile = dict(data)
        if self._keyring:
            try:
                self._keyring.set_json(_PROFILE_KEY, data)
                return
            except RuntimeError:
                pass
        try:
            self._file.save(data)
        except RuntimeError as e:
            self._warn_storage_issue("save", e)

    def clear(self):
        self._volatile = None
        if self._keyring:
            self._keyring.delete(_PROFILE_KEY)
        self._file.delete()
