"""
Config store for the backup schedule.

The config is a small JSON document edited through the web surface (or by
hand) and re-read by the orchestrator at every scheduling decision:

    {
      "WebListenAddr": "127.0.0.1:8123",
      "IntervalMinutes": 5,
      "BackupFolder": "Backups",
      "Retention": 30,
      "Sites": [{"Enabled": true, "Name": "...", "Url": "..."}]
    }

Loading and saving always normalize the document, so callers never see a
negative interval, a zero retention or duplicate site names.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .config import default_backup_folder


logger = logging.getLogger(__name__)

DEFAULT_LISTEN_ADDR = '127.0.0.1:8123'
DEFAULT_INTERVAL_MINUTES = 5
DEFAULT_RETENTION = 30


class ConfigError(Exception):
    """Raised when the config file cannot be read, parsed or written."""
    pass


@dataclass
class Site:
    """A named HTTP endpoint serving one backup archive."""
    enabled: bool = True
    name: str = ''
    url: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Site':
        if not isinstance(data, dict):
            raise ConfigError(f"site entry must be a JSON object, got {data!r}")
        enabled = data.get('Enabled', False)
        if not isinstance(enabled, bool):
            raise ConfigError(f"Enabled must be true or false, got {enabled!r}")
        return cls(
            enabled=enabled,
            name=_str_field(data, 'Name'),
            url=_str_field(data, 'Url'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'Enabled': self.enabled, 'Name': self.name, 'Url': self.url}


@dataclass
class Config:
    """Backup schedule configuration."""
    web_listen_addr: str = DEFAULT_LISTEN_ADDR
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    backup_folder: str = ''
    retention: int = DEFAULT_RETENTION
    sites: List[Site] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """
        Build a Config from the JSON document.

        Missing fields get zero values, which validate_and_normalize() then
        replaces with defaults. A field of the wrong type is an error, so a
        bad hand edit never silently disables scheduling.

        Raises:
            ConfigError: If the document or one of its fields is mistyped
        """
        if not isinstance(data, dict):
            raise ConfigError("config document must be a JSON object")

        raw_sites = data.get('Sites')
        if raw_sites is None:
            raw_sites = []
        if not isinstance(raw_sites, list):
            raise ConfigError(f"Sites must be a list, got {raw_sites!r}")

        return cls(
            web_listen_addr=_str_field(data, 'WebListenAddr'),
            interval_minutes=_int_field(data, 'IntervalMinutes'),
            backup_folder=_str_field(data, 'BackupFolder'),
            retention=_int_field(data, 'Retention'),
            sites=[Site.from_dict(s) for s in raw_sites],
        )

    def merged_with(self, data: Dict[str, Any]) -> 'Config':
        """
        Overlay a partial update (e.g. a web form post) on a copy of this config.

        Only keys present in data are applied. Integer fields accept numeric
        strings; a value that can't be used keeps the current one. Sites, when
        given, replace the whole list.

        Raises:
            ConfigError: If data is not an object or a site entry is malformed
        """
        if not isinstance(data, dict):
            raise ConfigError("config document must be a JSON object")

        cfg = self.snapshot()

        for key, attr in (('IntervalMinutes', 'interval_minutes'), ('Retention', 'retention')):
            if key not in data:
                continue
            try:
                setattr(cfg, attr, _parse_int(data[key]))
            except ValueError:
                logger.warning(f"Ignoring invalid {key}: {data[key]!r}")

        for key, attr in (('BackupFolder', 'backup_folder'), ('WebListenAddr', 'web_listen_addr')):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                setattr(cfg, attr, value.strip())

        if 'Sites' in data:
            if isinstance(data['Sites'], list):
                cfg.sites = [Site.from_dict(s) for s in data['Sites']]
            else:
                logger.warning(f"Ignoring invalid Sites: {data['Sites']!r}")

        return cfg

    def to_dict(self) -> Dict[str, Any]:
        return {
            'WebListenAddr': self.web_listen_addr,
            'IntervalMinutes': self.interval_minutes,
            'BackupFolder': self.backup_folder,
            'Retention': self.retention,
            'Sites': [s.to_dict() for s in self.sites],
        }

    def snapshot(self) -> 'Config':
        """Independent copy handed to a single run."""
        return copy.deepcopy(self)

    def enabled_sites(self) -> List[Site]:
        return [s for s in self.sites if s.enabled]

    def validate_and_normalize(self) -> 'Config':
        """
        Apply defaults and sanity rules in place.

        Never fails: invalid values are replaced, empty site rows and later
        duplicate names (case-insensitive) are dropped.

        Returns:
            self, for chaining
        """
        if self.interval_minutes < 0:
            self.interval_minutes = 1
        if self.retention <= 0:
            self.retention = DEFAULT_RETENTION

        self.backup_folder = (self.backup_folder or '').strip()
        if not self.backup_folder:
            self.backup_folder = default_backup_folder()

        self.web_listen_addr = (self.web_listen_addr or '').strip()
        if not self.web_listen_addr:
            self.web_listen_addr = DEFAULT_LISTEN_ADDR

        sites = []
        seen = set()
        for site in self.sites:
            name = (site.name or '').strip()
            url = (site.url or '').strip()

            # Rows left empty by the UI
            if not name and not url:
                continue

            if name:
                key = name.lower()
                if key in seen:
                    logger.warning(f"Dropping duplicate site name: {name}")
                    continue
                seen.add(key)

            sites.append(Site(enabled=bool(site.enabled), name=name, url=url))

        self.sites = sites
        return self


def default_config() -> Config:
    return Config(
        web_listen_addr=DEFAULT_LISTEN_ADDR,
        interval_minutes=DEFAULT_INTERVAL_MINUTES,
        backup_folder=default_backup_folder(),
        retention=DEFAULT_RETENTION,
        sites=[Site(enabled=True, name='Example Site', url='http://example.com/backup.zip')],
    )


def load_or_create(path: str) -> Config:
    """
    Load the config from path, creating it with defaults if missing.

    Args:
        path: Path to the JSON config file

    Returns:
        Normalized Config

    Raises:
        ConfigError: If the file cannot be read, parsed or created
    """
    path = (path or '').strip()
    if not path:
        raise ConfigError("config path is empty")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = f.read()
    except FileNotFoundError:
        cfg = default_config().validate_and_normalize()
        try:
            save(path, cfg)
        except ConfigError as e:
            raise ConfigError(f"Failed to create default config at {path}: {e}")
        logger.info(f"Created default config at {path}")
        return cfg
    except OSError as e:
        raise ConfigError(f"Failed to read config {path}: {e}")

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"Failed to parse config {path}: {e}")

    try:
        cfg = Config.from_dict(data)
    except ConfigError as e:
        raise ConfigError(f"Invalid config {path}: {e}")
    return cfg.validate_and_normalize()


def save(path: str, cfg: Config):
    """
    Write cfg to path as pretty-printed JSON, atomically.

    The config is normalized first; the parent directory is created if needed.

    Raises:
        ConfigError: If the file cannot be written
    """
    path = (path or '').strip()
    if not path:
        raise ConfigError("config path is empty")

    cfg.validate_and_normalize()
    payload = json.dumps(cfg.to_dict(), indent=2, ensure_ascii=False) + '\n'

    parent = os.path.dirname(path)
    tmp_path = path + '.tmp'
    try:
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(payload)
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                logger.warning(f"Failed to remove temp config {tmp_path}")
        raise ConfigError(f"Failed to write config {path}: {e}")


def _parse_int(value) -> int:
    """JSON integer or integer string ("15"); anything else raises ValueError."""
    # bool is an int subclass; a JSON true is not a number here
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"not an integer: {value!r}")


def _int_field(data: Dict[str, Any], key: str) -> int:
    if data.get(key) is None:
        return 0
    try:
        return _parse_int(data[key])
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {data[key]!r}")


def _str_field(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return value
