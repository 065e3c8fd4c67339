import os
import ssl

DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 3333
DEFAULT_CONFIG_DIR = ".chat_config"
MAX_MESSAGES_PER_CONVERSATION = 100


def _env_truthy(value):
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def _parse_tls_min_version(raw):
    if not raw:
        return None
    val = str(raw).strip().lower().replace("tls", "").replace("v", "")
    if val in ("1.2", "1_2", "12"):
        return ssl.TLSVersion.TLSv1_2
    if val in ("1.3", "1_3", "13"):
        return ssl.TLSVersion.TLSv1_3
    return None


class ClientConfig:
    def __init__(self, server_host=None, server_port=None, config_dir=None):
        self.server_host = server_host or os.getenv("RELAYCHAT_SERVER_HOST", DEFAULT_SERVER_HOST)
        self.server_port = server_port or _env_int("RELAYCHAT_SERVER_PORT", DEFAULT_SERVER_PORT)
        self.tls_enabled = _env_truthy(os.getenv("RELAYCHAT_TLS_ENABLED", "0"))
        self.tls_ca_file = os.getenv("RELAYCHAT_TLS_CA_FILE")
        self.tls_server_name = os.getenv("RELAYCHAT_TLS_SERVER_NAME") or self.server_host
        self.tls_min_version = _parse_tls_min_version(os.getenv("RELAYCHAT_TLS_MIN_VERSION", "1.2"))
        self.config_dir = config_dir or os.getenv("RELAYCHAT_CONFIG_DIR") or DEFAULT_CONFIG_DIR
        self.max_messages = _env_int("RELAYCHAT_MAX_MESSAGES", MAX_MESSAGES_PER_CONVERSATION)
        self.allow_plaintext_keystore = _env_truthy(os.getenv("RELAYCHAT_ALLOW_PLAINTEXT_KEYSTORE"))

    @property
    def database_path(self):
        return os.path.join(self.config_dir, "messages.db")

    def ssl_context(self):
        if not self.tls_enabled:
            return None
        if self.tls_ca_file:
            ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=self.tls_ca_file)
        else:
            ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        if self.tls_min_version:
            ctx.minimum_version = self.tls_min_version
        return ctx
