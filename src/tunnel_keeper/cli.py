"""
tunnel-keeper command line interface.

Usage:
    tunnel-keeper run [--config PATH]
    tunnel-keeper check [--config PATH]
    tunnel-keeper sample-config [PATH]
    tunnel-keeper config-path
"""

from pathlib import Path
from typing import Annotated

import typer

from .common.exceptions import ConfigurationError
from .common.logging import setup_logging
from .config import (
    CONFIG_ENV_VAR,
    ensure_config,
    get_config_path,
    load_config,
    write_sample_config,
)
from .models import Connection
from .service import TunnelService

app = typer.Typer(
    name="tunnel-keeper",
    help="Maintain persistent SSH tunnels.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help=f"Config file (default: ${CONFIG_ENV_VAR} or the platform location)",
    ),
]


def _load(config: Path | None) -> list[Connection]:
    path = config or get_config_path()
    try:
        return load_config(ensure_config(path))
    except ConfigurationError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e


@app.command("run")
def run(
    config: ConfigOption = None,
    log_level: Annotated[
        str, typer.Option("--log-level", "-l", help="Logging level")
    ] = "INFO",
    json_logs: Annotated[
        bool, typer.Option("--json-logs", help="Emit logs as JSON")
    ] = False,
    log_file: Annotated[
        str | None, typer.Option("--log-file", help="Also write logs to this file")
    ] = None,
):
    """Connect every configured server and keep the tunnels up."""
    try:
        setup_logging(level=log_level, json_format=json_logs, log_file=log_file)
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e
    connections = _load(config)
    TunnelService(connections).run_forever()


@app.command("check")
def check(config: ConfigOption = None):
    """Validate the config file without connecting."""
    connections = _load(config)
    for connection in connections:
        typer.echo(f"{connection.name}: {connection.host} ({len(connection.tunnels)} tunnels)")
        for tunnel in connection.tunnels:
            typer.echo(f"  {tunnel}")
    typer.secho("Config OK", fg=typer.colors.GREEN)


@app.command("sample-config")
def sample_config(
    path: Annotated[
        Path | None, typer.Argument(help="Config path the sample is written next to")
    ] = None,
):
    """Write an example config file."""
    example = write_sample_config(path or get_config_path())
    typer.echo(f"Sample config written to {example}")


@app.command("config-path")
def config_path():
    """Print where the config file is looked up."""
    typer.echo(str(get_config_path()))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
