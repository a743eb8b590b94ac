"""
Fetch the RLMS user-data XML over SFTP with a short in-memory cache.

Settings come from an INI file ([sftp] section) and are overridden by
environment variables of the same name.
"""

import configparser
import io
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

import paramiko

from markup import RECORD_TAG, count_tag_occurrences

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.ini"
DEFAULT_REMOTE_PATH = "/home/cdotims/rlmsagent_log/user-data.xml"
DEFAULT_TTL_MS = 10000
DEFAULT_READY_TIMEOUT_MS = 20000

SETTING_KEYS = (
    "SFTP_HOST",
    "SFTP_PORT",
    "SFTP_USER",
    "SFTP_PASSWORD",
    "SFTP_PRIVATE_KEY",
    "SFTP_PRIVATE_KEY_PATH",
    "SFTP_REMOTE_PATH",
    "XML_TTL_MS",
    "SFTP_READY_TIMEOUT_MS",
)


class TransportError(Exception):
    """Raised when the remote XML cannot be retrieved."""


@dataclass(frozen=True)
class SftpSettings:
    host: str
    username: str
    port: int = 22
    password: Optional[str] = None
    private_key: Optional[str] = None
    private_key_path: Optional[str] = None
    remote_path: str = DEFAULT_REMOTE_PATH
    ttl_seconds: float = DEFAULT_TTL_MS / 1000
    timeout: float = DEFAULT_READY_TIMEOUT_MS / 1000


def _clean_value(value):
    if value and len(value) >= 2:
        if (value.startswith('"') and value.endswith('"')) or \
           (value.startswith("'") and value.endswith("'")):
            return value[1:-1]
    return value


def _read_config_file(config_file: str) -> Dict[str, str]:
    config = configparser.RawConfigParser()
    config.read(config_file)

    if 'sftp' not in config:
        raise ValueError("Config file must contain [sftp] section")

    values = {}
    for key in SETTING_KEYS:
        value = _clean_value(config.get('sftp', key, fallback=None))
        if value:
            values[key] = value
    logger.info(f"Loaded SFTP config from {config_file}")
    return values


def load_settings(config_file: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None) -> SftpSettings:
    """
    Build SftpSettings from an INI file plus environment overrides.

    Args:
        config_file: Path to INI file. If None, config.ini is used when present.
        environ: Mapping used for overrides (default: os.environ)
    """
    environ = os.environ if environ is None else environ

    values: Dict[str, str] = {}
    if config_file is not None:
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Config file not found: {config_file}")
        values.update(_read_config_file(config_file))
    elif os.path.exists(DEFAULT_CONFIG_FILE):
        values.update(_read_config_file(DEFAULT_CONFIG_FILE))

    for key in SETTING_KEYS:
        if environ.get(key):
            values[key] = environ[key]

    if not values.get("SFTP_HOST") or not values.get("SFTP_USER"):
        raise ValueError("SFTP_HOST and SFTP_USER must be configured")

    try:
        return SftpSettings(
            host=values["SFTP_HOST"],
            username=values["SFTP_USER"],
            port=int(values.get("SFTP_PORT", 22)),
            password=values.get("SFTP_PASSWORD"),
            private_key=values.get("SFTP_PRIVATE_KEY"),
            private_key_path=values.get("SFTP_PRIVATE_KEY_PATH"),
            remote_path=values.get("SFTP_REMOTE_PATH", DEFAULT_REMOTE_PATH),
            ttl_seconds=int(values.get("XML_TTL_MS", DEFAULT_TTL_MS)) / 1000,
            timeout=int(values.get("SFTP_READY_TIMEOUT_MS", DEFAULT_READY_TIMEOUT_MS)) / 1000,
        )
    except ValueError as e:
        raise ValueError(f"Invalid SFTP setting: {e}") from e


def load_private_key(pem: str) -> paramiko.PKey:
    """Parse a PEM private key given as text; literal '\\n' is accepted."""
    pem = pem.replace("\\n", "\n")
    for key_class in (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key):
        try:
            return key_class.from_private_key(io.StringIO(pem))
        except paramiko.SSHException:
            continue
    raise TransportError("sftp fail: unsupported or invalid private key")


def fetch_remote_xml(settings: SftpSettings) -> str:
    """Download the remote file and decode it as UTF-8."""
    pkey = load_private_key(settings.private_key) if settings.private_key else None

    client = paramiko.SSHClient()
    client.load_system_host_keys()
    client.set_missing_host_key_policy(paramiko.WarningPolicy())
    try:
        client.connect(
            hostname=settings.host,
            port=settings.port,
            username=settings.username,
            password=settings.password,
            pkey=pkey,
            key_filename=settings.private_key_path,
            timeout=settings.timeout,
            banner_timeout=settings.timeout,
            auth_timeout=settings.timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        with client.open_sftp() as sftp:
            with sftp.open(settings.remote_path, "rb") as remote_file:
                payload = remote_file.read()
    except (paramiko.SSHException, OSError) as e:
        logger.error(f"❌ SFTP fetch of {settings.remote_path} from {settings.host} failed: {e}")
        raise TransportError(f"sftp fail: {e}") from e
    finally:
        client.close()

    logger.info(f"✅ Fetched {len(payload)} bytes from {settings.host}:{settings.remote_path}")
    return payload.decode("utf-8", errors="replace")


@dataclass
class XmlCache:
    fetched_at: float = 0.0
    data: str = ""

    def is_fresh(self, now: float, ttl: float) -> bool:
        return bool(self.data) and now - self.fetched_at < ttl


class RlmsXmlSource:
    """Caller-owned SFTP source that reuses a fetched document for ttl_seconds."""

    def __init__(self, settings: SftpSettings,
                 fetch: Callable[[SftpSettings], str] = fetch_remote_xml,
                 clock: Callable[[], float] = time.monotonic,
                 cache: Optional[XmlCache] = None):
        self.settings = settings
        self.fetch = fetch
        self.clock = clock
        self.cache = cache if cache is not None else XmlCache()

    def get_xml(self) -> str:
        if self.cache.is_fresh(self.clock(), self.settings.ttl_seconds):
            logger.info("Serving RLMS XML from cache")
            return self.cache.data

        xml = self.fetch(self.settings)
        self.cache = XmlCache(fetched_at=self.clock(), data=xml)
        return xml

    def record_count(self, tag: str = RECORD_TAG) -> int:
        return count_tag_occurrences(self.get_xml(), tag)
