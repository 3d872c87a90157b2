"""CLI commands for configuration management."""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Annotated

import typer

from coach_sync.config import LoggingConfig, RemoteConfig, SyncConfig

config_app = typer.Typer(help="Configuration management")


def _masked(config: SyncConfig) -> dict[str, object]:
    data = config.to_dict()
    if config.remote.api_key:
        data["remote"]["api_key"] = config.remote.api_key[:4] + "..."
    return data


@config_app.command("show")
def show_cmd(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show the effective configuration (API key masked).

    Examples:
        coach-sync config show
        coach-sync config show --json
    """
    config = SyncConfig.load()
    data = _masked(config)

    if json_output:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    typer.echo(f"Config file: {config.config_path}")
    typer.echo(f"Replica:     {config.replica_db_path}")
    for section in ("remote", "sync", "reachability", "logging"):
        typer.secho(f"\n[{section}]", fg=typer.colors.CYAN, bold=True)
        for key, value in data[section].items():
            typer.echo(f"  {key} = {value}")


@config_app.command("set-remote")
def set_remote_cmd(
    url: Annotated[str, typer.Argument(help="Remote project URL")],
    api_key: Annotated[
        str | None, typer.Option("--api-key", "-k", help="Public API key")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", "-t", help="Request timeout in seconds")
    ] = None,
) -> None:
    """Point the client at a remote project.

    Examples:
        coach-sync config set-remote https://project.example.co --api-key anon-key
    """
    if not url.startswith(("http://", "https://")):
        typer.secho("URL must start with http:// or https://", fg=typer.colors.RED)
        raise typer.Exit(1)

    config = SyncConfig.load()
    remote = RemoteConfig(
        url=url.rstrip("/"),
        api_key=api_key if api_key is not None else config.remote.api_key,
        timeout=timeout if timeout is not None else config.remote.timeout,
    )
    replace(config, remote=remote).save()
    typer.secho(f"Remote set to {remote.url}", fg=typer.colors.GREEN)


@config_app.command("log-level")
def log_level_cmd(
    level: Annotated[str, typer.Argument(help="DEBUG, INFO, WARNING, ERROR or CRITICAL")],
) -> None:
    """Set the logging level written to stderr."""
    parsed = LoggingConfig.from_dict({"level": level})
    if parsed.level != level.upper():
        typer.secho(f"Unknown level: {level}", fg=typer.colors.RED)
        raise typer.Exit(1)

    config = SyncConfig.load()
    replace(config, logging=parsed).save()
    typer.secho(f"Log level set to {parsed.level}", fg=typer.colors.GREEN)
