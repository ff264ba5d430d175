# File: parkreserve/config.py
"""
Application configuration

Values are resolved in three layers, later layers winning:
1. Defaults declared on AppConfig
2. An optional YAML file (PARKRESERVE_CONFIG or an explicit path)
3. Environment variables PARKRESERVE_<FIELD> (e.g. PARKRESERVE_API_BASE_URL);
   list fields such as offline_users are parsed as YAML
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Mapping, Optional
import logging
import os

import yaml

ENV_PREFIX = "PARKRESERVE_"
CONFIG_FILE_ENV = "PARKRESERVE_CONFIG"

logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    """Runtime settings for the client"""
    api_base_url: str = "http://localhost:8000/api"
    timeout: float = 10
    storage_url: str = "sqlite:///parkreserve.db"
    redis_url: str = "redis://localhost:6379"
    realtime_enabled: bool = False
    offline: bool = False
    max_active_reservations: int = 3
    currency: str = "COP"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    offline_users: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_active_reservations < 1:
            raise ValueError("max_active_reservations must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        self.log_level = str(self.log_level).upper()
        if not isinstance(self.offline_users, list):
            raise ValueError("offline_users must be a list of user records")

    # ========================================================================
    # LOADING
    # ========================================================================

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'AppConfig':
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {}
        extra = {}
        for key, value in data.items():
            if key in known:
                values[key] = _coerce(cls._field_type(key), value)
            else:
                extra[key] = value
        return cls(extra=extra, **values)

    @classmethod
    def from_yaml(cls, path: str) -> 'AppConfig':
        return cls.from_dict(_read_yaml(path))

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """Defaults, then the YAML file if any, then PARKRESERVE_* variables"""
        environ = os.environ if environ is None else environ
        path = path or environ.get(CONFIG_FILE_ENV)

        data: Dict[str, Any] = {}
        if path:
            data.update(_read_yaml(path))
            logger.info(f"Configuration loaded from {path}")

        for f in fields(cls):
            key = f"{ENV_PREFIX}{f.name.upper()}"
            if f.name != "extra" and key in environ:
                data[f.name] = environ[key]

        return cls.from_dict(data)

    @classmethod
    def _field_type(cls, name: str) -> Any:
        return {f.name: f.type for f in fields(cls)}[name]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def service_config(self) -> Dict[str, Any]:
        """Subset consumed by ParkingDataService"""
        return {
            "max_active_reservations": self.max_active_reservations,
            "currency": self.currency,
        }


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def _coerce(field_type: Any, value: Any) -> Any:
    """Convert environment strings to the declared field type"""
    if not isinstance(value, str):
        return value

    type_name = field_type if isinstance(field_type, str) else getattr(field_type, "__name__", str(field_type))
    if type_name == "bool":
        return value.strip().lower() in ("1", "true", "yes", "on")
    if type_name == "int":
        return int(value)
    if type_name == "float":
        return float(value)
    if "Optional" in str(type_name) and value == "":
        return None
    if str(type_name).startswith(("List", "typing.List")):
        return yaml.safe_load(value) or []
    return value
