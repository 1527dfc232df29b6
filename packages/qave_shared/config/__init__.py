"""Public API for shared Qave configuration utilities."""

from .loader import load_settings
from .models import (
    DEFAULT_CONFIG_PATH,
    ComponentsSettings,
    HttpSettings,
    LoggingSettings,
    QaveSettings,
    SqlSettings,
    resolve_component_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ComponentsSettings",
    "HttpSettings",
    "LoggingSettings",
    "QaveSettings",
    "SqlSettings",
    "load_settings",
    "resolve_component_settings",
]
