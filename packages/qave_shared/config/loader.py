"""Settings loading entrypoint with deterministic precedence.

The cascade is always:
1) explicit keyword overrides
2) environment variables (``QAVE_`` prefix, ``__`` nesting, for example
   ``QAVE_LOGGING__LEVEL=DEBUG``)
3) the YAML config file (``~/.config/qave/qave.yaml`` unless overridden)
4) model defaults
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar

from .models import DEFAULT_CONFIG_PATH, QaveSettings


def load_settings(
    *, config_path: str | Path | None = None, **overrides: Any
) -> QaveSettings:
    """Load root settings, optionally reading YAML from ``config_path``."""
    resolved = Path(config_path).expanduser() if config_path is not None else None
    if resolved is None or resolved == DEFAULT_CONFIG_PATH:
        return QaveSettings(**overrides)

    class _PathScopedSettings(QaveSettings):
        _config_path: ClassVar[Path] = resolved

    return _PathScopedSettings(**overrides)
