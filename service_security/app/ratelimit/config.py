"""
Per-endpoint-class rate limit configuration.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from homebase_shared.errors import ValidationError
from homebase_shared.logging import get_logger


logger = get_logger("security.rate_limit_config")


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota for one endpoint class: ``max_requests`` per ``window_minutes``."""
    endpoint: str
    max_requests: int
    window_minutes: int

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValidationError("max_requests must be at least 1", {"endpoint": self.endpoint})
        if self.window_minutes < 1:
            raise ValidationError("window_minutes must be at least 1", {"endpoint": self.endpoint})

    @property
    def window_seconds(self) -> int:
        return self.window_minutes * 60


DEFAULT_CLASS = "default"

DEFAULT_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "auth": RateLimitConfig("auth", max_requests=10, window_minutes=15),
    "api": RateLimitConfig("api", max_requests=100, window_minutes=60),
    "analytics": RateLimitConfig("analytics", max_requests=120, window_minutes=10),
    "shopping": RateLimitConfig("shopping", max_requests=50, window_minutes=60),
    "chores": RateLimitConfig("chores", max_requests=30, window_minutes=60),
    "bills": RateLimitConfig("bills", max_requests=20, window_minutes=60),
    "meal-planner": RateLimitConfig("meal-planner", max_requests=25, window_minutes=60),
    DEFAULT_CLASS: RateLimitConfig(DEFAULT_CLASS, max_requests=100, window_minutes=60),
}

# Checked in order; "api" last since most paths contain it.
PATH_CLASSES = ("auth", "shopping", "chores", "bills", "meal-planner", "analytics", "api")


def resolve_rate_limit_config(
    path_or_key: str,
    table: Optional[Mapping[str, RateLimitConfig]] = None,
) -> RateLimitConfig:
    """Resolve a class name or request path to its ``RateLimitConfig``.

    Exact key match wins. Request paths (leading ``/``) then match the first
    known class whose ``/<class>`` segment they contain. Anything else falls
    back to the default class.
    """
    table = DEFAULT_RATE_LIMITS if table is None else table
    key = path_or_key.strip().lower()

    if key in table:
        return table[key]

    if key.startswith("/"):
        for endpoint_class in PATH_CLASSES:
            if f"/{endpoint_class}" in key and endpoint_class in table:
                return table[endpoint_class]

    return table.get(DEFAULT_CLASS, DEFAULT_RATE_LIMITS[DEFAULT_CLASS])


def load_rate_limit_table(path: Optional[str] = None) -> Dict[str, RateLimitConfig]:
    """Build the class table from defaults plus optional YAML overrides.

    The file maps class names to ``{max_requests, window_minutes}``; omitted
    fields keep their default (or the ``default`` class values for new
    classes).
    """
    table = dict(DEFAULT_RATE_LIMITS)
    if not path:
        return table

    try:
        with open(Path(path), "r", encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError("Unable to load rate limit file", {"path": path, "error": str(e)}) from e

    if not isinstance(overrides, dict):
        raise ValidationError("Rate limit file must map class names to limits", {"path": path})

    for name, values in overrides.items():
        endpoint_class = str(name).strip().lower()
        base = table.get(endpoint_class, table[DEFAULT_CLASS])
        values = values or {}
        config = RateLimitConfig(
            endpoint=endpoint_class,
            max_requests=int(values.get("max_requests", base.max_requests)),
            window_minutes=int(values.get("window_minutes", base.window_minutes)),
        )
        if 60 % config.window_minutes != 0:
            logger.warning(
                "window_minutes does not divide the hour; windows restart at the top of each hour",
                endpoint=endpoint_class,
                window_minutes=config.window_minutes,
            )
        table[endpoint_class] = config

    logger.info("Rate limit table loaded", path=path, classes=sorted(table))
    return table
