"""
Approval settings -- tenant approver chains loaded from YAML.

Public API::

    from approval_config import load_definition_source

    definitions = load_definition_source()            # sets/default.yaml
    definitions = load_definition_source(Path("acme.yaml"))
    definition = definitions.resolve_definition("leave", "acme")

``load_definition_source`` is the single entry point: it loads, validates
and wraps the settings in a ``SettingsDefinitionSource`` that compiles
``ApprovalChainDefinition`` objects on demand.
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_config.loader import load_settings
from approval_config.source import SettingsDefinitionSource

_logger = logging.getLogger("approval_kernel.config")

_DEFAULT_SETTINGS_PATH = Path(__file__).parent / "sets" / "default.yaml"


def load_definition_source(path: Path | None = None) -> SettingsDefinitionSource:
    """
    Load approval settings and return a ready ``DefinitionSource``.

    Args:
        path: YAML settings file.  Defaults to approval_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ConfigurationError: If the settings fail validation.
    """
    settings_path = path or _DEFAULT_SETTINGS_PATH
    settings = load_settings(settings_path)
    source = SettingsDefinitionSource(settings)

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "settings_id": settings.settings_id,
            "settings_version": settings.version,
            "checksum": settings.checksum,
            "tenant_count": len(settings.tenants),
            "path": str(settings_path),
        },
    )
    return source


__all__ = [
    "SettingsDefinitionSource",
    "load_definition_source",
]
