"""
itad_config -- single public entrypoint for ITAD configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  Services receive their settings section through their
    constructors and never read files or environment variables.

Architecture position:
    Configuration.  Sits above ``itad_kernel``; the kernel MUST NEVER
    import from ``itad_config``.

Failure modes:
    - ``FileNotFoundError`` -- override path does not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every call emits an ``itad_config_loaded`` log entry carrying the
    checksum of the effective configuration, tying each bulk run back to
    the exact settings that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from itad_config.loader import DEFAULTS_PATH, deep_merge, load_yaml_file, parse_config
from itad_config.schema import ITADConfig

_logger = logging.getLogger("itad_kernel.config")


def get_active_config(path: Path | str | None = None) -> ITADConfig:
    """
    The ONLY public configuration entrypoint.

    Loads the packaged ``defaults.yaml`` and, when ``path`` is given,
    deep-merges that YAML file over it.

    Args:
        path: Optional override file.

    Returns:
        Frozen ``ITADConfig`` with ``checksum`` set.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = deep_merge(data, load_yaml_file(Path(path)))

    config = parse_config(data)
    _logger.info(
        "itad_config_loaded",
        extra={
            "override_path": str(path) if path is not None else None,
            "checksum": config.checksum,
            "ledger_enabled": config.ledger.enabled,
        },
    )
    return config


__all__ = ["ITADConfig", "get_active_config"]
