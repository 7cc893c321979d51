"""Config file loading and auto-discovery for cluster-import.

The controller looks for ``cluster-import.yaml`` in the working directory
and then in each parent.  Paths in the file are relative to the file
itself.  ``MAX_CONCURRENT_RECONCILES`` in the environment wins over the
worker count from the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from cluster_import.constants import HOSTED_WORK_SUFFIXES

CONFIG_FILENAME = "cluster-import.yaml"
MAX_CONCURRENT_RECONCILES_ENV = "MAX_CONCURRENT_RECONCILES"
DEFAULT_MAX_CONCURRENT_RECONCILES = 10


@dataclass(frozen=True)
class ControllerConfig:
    """Settings for one controller process."""

    config_path: Path | None = None
    kubeconfig: str | None = None
    context: str | None = None
    in_cluster: bool = False
    audit_log: str | None = None
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES
    hosted_work_suffixes: tuple[str, ...] = HOSTED_WORK_SUFFIXES
    backoff_base_seconds: float = 0.005
    backoff_max_seconds: float = 1000.0
    request_timeout_seconds: float | None = None


def find_config(start: Path | None = None) -> Path | None:
    """Return the nearest ``cluster-import.yaml`` at or above *start*."""
    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> ControllerConfig:
    """Build the controller config.

    An explicit *path* must exist.  Without one the file is discovered
    (unless *auto_discover* is off), and with no file at all every setting
    keeps its default.  The environment override always applies.
    """
    if path is not None:
        config_path: Path | None = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    else:
        config_path = find_config() if auto_discover else None

    data = _read_config(config_path) if config_path is not None else {}
    return _build_config(config_path, data, os.environ.get(MAX_CONCURRENT_RECONCILES_ENV))


def _read_config(config_path: Path) -> dict[str, Any]:
    with config_path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ValueError(msg)
    return data


def _workers(raw: Any) -> int:
    try:
        workers = int(raw)
    except (TypeError, ValueError):
        msg = f"max_concurrent_reconciles must be an integer, got {raw!r}"
        raise ValueError(msg) from None
    if workers < 1:
        msg = f"max_concurrent_reconciles must be >= 1, got {workers}"
        raise ValueError(msg)
    return workers


def _suffixes(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, str) or not all(isinstance(s, str) and s for s in raw):
        msg = f"hosted_work_suffixes must be a list of non-empty strings, got {raw!r}"
        raise ValueError(msg)
    return tuple(raw)


def _build_config(
    config_path: Path | None,
    data: dict[str, Any],
    env_workers: str | None,
) -> ControllerConfig:
    base = config_path.parent if config_path is not None else Path.cwd()

    def _relative(key: str) -> str | None:
        value = data.get(key)
        return str((base / value).resolve()) if value is not None else None

    timeout = data.get("request_timeout_seconds")
    return ControllerConfig(
        config_path=config_path,
        kubeconfig=_relative("kubeconfig"),
        context=data.get("context"),
        in_cluster=bool(data.get("in_cluster", False)),
        audit_log=_relative("audit_log"),
        max_concurrent_reconciles=_workers(
            env_workers or data.get("max_concurrent_reconciles", DEFAULT_MAX_CONCURRENT_RECONCILES)
        ),
        hosted_work_suffixes=_suffixes(data.get("hosted_work_suffixes", HOSTED_WORK_SUFFIXES)),
        backoff_base_seconds=float(data.get("backoff_base_seconds", 0.005)),
        backoff_max_seconds=float(data.get("backoff_max_seconds", 1000.0)),
        request_timeout_seconds=float(timeout) if timeout is not None else None,
    )
