"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain the org directory and policy table at
    runtime through ``get_active_config()``.  No other component reads
    configuration files directly.

Architecture position:
    Configuration -- YAML-driven, compiled once at process start.  This
    package sits above ``approval_kernel``; the kernel MUST NEVER import
    from ``approval_config``.  The returned ``ApprovalConfiguration`` is
    injected into ``WorkflowEngine``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic compilation: the same YAML fragments always produce the
      same checksum.
    - Every ``PolicyKey`` has a compiled policy.

Failure modes:
    - ``ConfigurationError`` -- configuration set missing, incomplete or
      referencing unknown departments / roles.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry containing the config_id, version,
    checksum and department / policy counts.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.loader import load_config_set
from approval_kernel.domain.policy import ApprovalConfiguration, PolicyKey
from approval_kernel.exceptions import ConfigurationError
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_SET = "default"


def get_active_config(
    config_set: str = DEFAULT_CONFIG_SET,
    config_dir: Path | None = None,
) -> ApprovalConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        config_set: Name of the configuration set directory.
        config_dir: Override path to the configuration sets directory.
            Defaults to approval_config/sets/.

    Returns:
        ApprovalConfiguration -- the compiled directory and policy table.

    Raises:
        ConfigurationError: If the set cannot be loaded or does not define
            a policy for every ``PolicyKey``.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    config = load_config_set(sets_dir / config_set)

    missing = [k.value for k in PolicyKey if k not in config.policies]
    if missing:
        raise ConfigurationError(
            f"Configuration set {config_set!r} has no policy for: {', '.join(missing)}"
        )

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "department_count": len(config.directory.list_departments()),
            "policy_count": len(config.policies),
        },
    )
    return config


__all__ = ["get_active_config", "ApprovalConfiguration", "DEFAULT_CONFIG_SET"]
