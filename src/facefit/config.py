"""
Application configuration.

Provides functionality to:
- Hold all tunables in one immutable object
- Load them from a JSON file, rejecting unknown keys
"""

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Dict, Any

from .history import DEFAULT_CAPACITY
from .offline_queue import DEFAULT_MAX_RETRIES
from .statistics import DEFAULT_WINDOW_SIZE


@dataclass(frozen=True)
class AppConfig:
    base_url: str = "http://localhost:3000"
    queue_dir: str = "./pending_exports"
    history_size: int = DEFAULT_CAPACITY
    window_size: int = DEFAULT_WINDOW_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout_seconds: float = 30.0
    resource_timeout_seconds: float = 60.0
    pairs_path: Optional[str] = None
    log_dir: str = "./captures"
    consent_granted: bool = True

    def __post_init__(self):
        if self.history_size <= 0:
            raise ValueError("history_size must be > 0")
        if self.window_size <= 0:
            raise ValueError("window_size must be > 0")
        if self.max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        if self.request_timeout_seconds <= 0 or self.resource_timeout_seconds <= 0:
            raise ValueError("timeouts must be > 0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """
        Build a config from a mapping.

        Raises:
            ValueError: If the mapping contains keys AppConfig does not know
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from a JSON file (defaults if ``path`` is None).

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a JSON object or has unknown keys
    """
    if path is None:
        return AppConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("Config file must contain a JSON object")
    return AppConfig.from_dict(data)
