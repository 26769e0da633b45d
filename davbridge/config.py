"""
Configuration for davbridge.

Reads a TOML file and lets DAV_URL, DAV_USERNAME, DAV_PASSWORD and LOG_LEVEL
from the environment override it. Passwords can be kept out of the file and
fetched by running an external password program (e.g. `pass`).
"""

import logging
import os
import subprocess
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .cache import CollectionCache
from .calendar_service import CalendarService
from .contact_service import ContactService
from .dav_client import DAVRemoteClient
from .errors import ConfigError
from .recurrence import DEFAULT_MAX_OCCURRENCES, DEFAULT_WINDOW_DAYS
from .retry import RetryPolicy


logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Connection settings of the DAV account."""
    url: str = ""
    username: str = ""
    password_key: str = ""
    timeout: int = 30  # Seconds per HTTP request

    _password: Optional[str] = field(default=None, repr=False)

    def get_password(self, password_program: str) -> str:
        """Return the configured password or retrieve it with password_program."""
        if self._password is None:
            if not self.password_key:
                raise ConfigError("No password configured (set password, password_key or DAV_PASSWORD)")
            try:
                result = subprocess.run(
                    [password_program, self.password_key],
                    capture_output=True,
                    text=True,
                    timeout=30
                )
            except subprocess.TimeoutExpired:
                raise ConfigError(f"Password program timed out for key '{self.password_key}'")
            except FileNotFoundError:
                raise ConfigError(f"Password program not found: {password_program}")
            if result.returncode != 0:
                raise ConfigError(
                    f"Password program failed for key '{self.password_key}': {result.stderr.strip()}"
                )
            # pass prints the password on the first line, metadata may follow
            lines = result.stdout.splitlines()
            self._password = lines[0].strip() if lines else ""
        return self._password


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


@dataclass
class CacheConfig:
    max_age: Optional[float] = None  # Seconds; None leaves freshness to the ctag


@dataclass
class RecurrenceConfig:
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES
    window_days: int = DEFAULT_WINDOW_DAYS


@dataclass
class DefaultsConfig:
    """Collections used by writes that name no target."""
    calendar: Optional[str] = None
    address_book: Optional[str] = None


@dataclass
class Config:
    """Main configuration container for davbridge."""

    password_program: str = "/usr/bin/pass"
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    server: ServerConfig = field(default_factory=ServerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    recurrence: RecurrenceConfig = field(default_factory=RecurrenceConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'davbridge' / 'davbridge.toml'

    @classmethod
    def load(cls, config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """
        Load configuration from TOML, then apply environment overrides.

        Args:
            config_path: Explicit file; it must exist. Without it the default
                path is used if present, so an environment-only setup works.
            environ: Environment to read overrides from, os.environ if None

        Raises:
            FileNotFoundError: if config_path is given but missing
            ConfigError: if no server URL is configured anywhere
        """
        environ = os.environ if environ is None else environ

        data = {}
        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
        else:
            config_path = cls.get_default_config_path()
        if config_path.exists():
            with open(config_path, 'rb') as f:
                data = tomllib.load(f)
            logger.debug("Loaded configuration file", extra={"path": str(config_path)})

        general = data.get('General', {})
        server_data = data.get('Server', {})
        retry_data = data.get('Retry', {})
        cache_data = data.get('Cache', {})
        recurrence_data = data.get('Recurrence', {})
        defaults_data = data.get('Defaults', {})

        server = ServerConfig(
            url=environ.get('DAV_URL') or server_data.get('url', ''),
            username=environ.get('DAV_USERNAME') or server_data.get('username', ''),
            password_key=server_data.get('password_key', ''),
            timeout=server_data.get('timeout', 30),
            _password=environ.get('DAV_PASSWORD') or server_data.get('password'),
        )
        if not server.url:
            raise ConfigError("No DAV server URL configured (set [Server] url or DAV_URL)")

        max_age = cache_data.get('max_age')

        return cls(
            password_program=general.get('password_program', '/usr/bin/pass'),
            log_level=(environ.get('LOG_LEVEL') or general.get('log_level', 'INFO')).upper(),
            log_format=general.get('log_format', 'text'),
            server=server,
            retry=RetryConfig(
                max_attempts=retry_data.get('max_attempts', RetryConfig.max_attempts),
                base_delay=retry_data.get('base_delay', RetryConfig.base_delay),
                max_delay=retry_data.get('max_delay', RetryConfig.max_delay),
            ),
            cache=CacheConfig(max_age=max_age if max_age else None),
            recurrence=RecurrenceConfig(
                max_occurrences=recurrence_data.get('max_occurrences', RecurrenceConfig.max_occurrences),
                window_days=recurrence_data.get('window_days', RecurrenceConfig.window_days),
            ),
            defaults=DefaultsConfig(
                calendar=defaults_data.get('calendar'),
                address_book=defaults_data.get('address_book'),
            ),
        )

    # ==================== Factories ====================

    def create_client(self) -> DAVRemoteClient:
        return DAVRemoteClient(
            url=self.server.url,
            username=self.server.username,
            password=self.server.get_password(self.password_program),
            timeout=self.server.timeout,
        )

    def create_calendar_service(self, client=None) -> CalendarService:
        return CalendarService(
            client or self.create_client(),
            cache=CollectionCache(self.cache.max_age),
            retry_policy=self.retry.policy(),
            default_calendar=self.defaults.calendar,
            max_occurrences=self.recurrence.max_occurrences,
            window_days=self.recurrence.window_days,
        )

    def create_contact_service(self, client=None) -> ContactService:
        return ContactService(
            client or self.create_client(),
            cache=CollectionCache(self.cache.max_age),
            retry_policy=self.retry.policy(),
            default_address_book=self.defaults.address_book,
        )
