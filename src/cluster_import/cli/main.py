"""cluster-import CLI — run and debug the ClusterDeployment import controller.

Commands:
    run             Watch the hub and import installed clusters
    reconcile       Reconcile one cluster once and print the outcome
    route           Show which cluster a watch event would reconcile
    audit verify    Verify audit log chain integrity
    audit show      Show recent audit log entries
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
import yaml

from cluster_import import __version__
from cluster_import.audit.recorder import AuditError, read_log, verify_log
from cluster_import.config import ControllerConfig, load_config
from cluster_import.context import build_context
from cluster_import.controller.manager import Controller
from cluster_import.models import EventType, ResourceKind, WatchEvent
from cluster_import.reconcile.orchestrator import ClusterDeploymentReconciler
from cluster_import.router.router import EventRouter

DEFAULT_AUDIT_LOG = "./audit.jsonl"


def _load_cfg(config_path: str | None) -> ControllerConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """cluster-import: import installed hive clusters into the hub."""


_config_option = click.option(
    "--config", "config_path", default=None, type=click.Path(dir_okay=False),
    help="Path to cluster-import.yaml (default: auto-discover).",
)
_log_level_option = click.option(
    "--log-level", default="info", show_default=True,
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
)


# --- run command ---


@cli.command()
@_config_option
@_log_level_option
def run(config_path: str | None, log_level: str) -> None:
    """Watch the hub and reconcile clusters until interrupted."""
    _setup_logging(log_level)
    cfg = _load_cfg(config_path)
    ctx = build_context(cfg)
    controller = Controller(ctx)
    controller.start()
    try:
        while not ctx.cancel.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("Shutting down...", err=True)
    finally:
        controller.stop()


# --- reconcile command ---


@cli.command()
@click.argument("name")
@_config_option
@_log_level_option
@click.option("--json-output", is_flag=True, help="Output as JSON.")
def reconcile(name: str, config_path: str | None, log_level: str, json_output: bool) -> None:
    """Reconcile the cluster NAME once."""
    _setup_logging(log_level)
    cfg = _load_cfg(config_path)
    ctx = build_context(cfg)
    seen = len(ctx.recorder.read_events())
    result = ClusterDeploymentReconciler(ctx).reconcile(name)
    events = [e for e in ctx.recorder.read_events()[seen:] if e.cluster == name]

    if json_output:
        click.echo(json.dumps({
            "cluster": name,
            "ok": result.ok,
            "requeue": result.requeue,
            "error": str(result.error) if result.error is not None else None,
            "events": [e.model_dump(mode="json") for e in events],
        }, indent=2))
    else:
        for event in events:
            click.echo(f"{event.reason}: {event.message}")
        if result.ok:
            click.echo(f"{name}: reconciled")
        else:
            click.echo(f"{name}: failed: {result.error}", err=True)

    if not result.ok:
        sys.exit(1)


# --- route command ---


@cli.command()
@click.argument("event_file", type=click.Path(exists=True, dir_okay=False))
@_config_option
def route(event_file: str, config_path: str | None) -> None:
    """Show the cluster a watch event in EVENT_FILE (YAML/JSON) routes to.

    The file holds ``kind``, ``type`` (create/update/delete/generic) and
    ``old``/``new`` objects.
    """
    cfg = _load_cfg(config_path)
    try:
        data = yaml.safe_load(Path(event_file).read_text(encoding="utf-8")) or {}
        event = WatchEvent(
            kind=ResourceKind(data["kind"]),
            type=EventType(data.get("type", EventType.UPDATE)),
            old=data.get("old"),
            new=data.get("new"),
        )
    except (yaml.YAMLError, KeyError, ValueError, TypeError) as exc:
        raise click.ClickException(f"Invalid event file {event_file}: {exc}") from exc

    key = EventRouter(cfg.hosted_work_suffixes).route(event)
    click.echo(key if key is not None else "<ignored>")


# --- audit group ---


@cli.group()
def audit() -> None:
    """Audit log commands."""


def _audit_path(explicit: str | None, config_path: str | None) -> str:
    if explicit:
        return explicit
    return _load_cfg(config_path).audit_log or DEFAULT_AUDIT_LOG


@audit.command("verify")
@click.option("--audit-log", default=None, help="Audit log file path.")
@_config_option
def audit_verify(audit_log: str | None, config_path: str | None) -> None:
    """Verify the hash chain of the audit log."""
    path = _audit_path(audit_log, config_path)
    is_valid, errors = verify_log(path)
    if is_valid:
        click.echo(f"Audit log OK: {path}")
        return
    for error in errors:
        click.echo(error, err=True)
    click.echo(f"Audit log INVALID: {len(errors)} error(s)", err=True)
    sys.exit(1)


@audit.command("show")
@click.option("--audit-log", default=None, help="Audit log file path.")
@click.option("--last", "last", default=20, show_default=True, help="Number of entries.")
@click.option("--cluster", default=None, help="Only show events for this cluster.")
@_config_option
def audit_show(audit_log: str | None, last: int, cluster: str | None, config_path: str | None) -> None:
    """Show the most recent audit log entries."""
    path = _audit_path(audit_log, config_path)
    try:
        events = read_log(path)
    except AuditError as exc:
        raise click.ClickException(str(exc)) from exc

    if cluster is not None:
        events = [e for e in events if e.cluster == cluster]
    if not events:
        click.echo("No audit events.")
        return
    for event in events[-last:]:
        click.echo(
            f"{event.timestamp.isoformat()}  {event.reason:<36} "
            f"{event.cluster or '-':<20} {event.message}"
        )


if __name__ == "__main__":
    cli()
