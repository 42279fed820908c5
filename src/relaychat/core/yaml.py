"""YAML configuration loading.

Configuration files are parsed with ``yaml.safe_load`` so YAML tags can
never instantiate Python objects. The returned mapping is unvalidated; it is
always handed to a Pydantic model such as
[AppConfig][relaychat.services.configs.AppConfig] or
[PoolConfig][relaychat.core.pool.PoolConfig].
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from relaychat.exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load a YAML mapping from *config_path*.

    Returns:
        The parsed mapping, or ``{}`` for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
