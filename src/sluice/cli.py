# src/sluice/cli.py
"""sluice Command Line Interface.

Entry point for the sluice CLI tool.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import SecretStr, ValidationError

from sluice import __version__
from sluice.contracts.errors import AggregateError, CipherError
from sluice.core.config import SluiceSettings, describe_settings, load_settings

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

FAILURE_BANNER = "All backups failed. Not able to generate a valid backup artifact. See error(s) below: "

app = typer.Typer(
    name="sluice",
    help="sluice: encrypted physical backups of every node in a database cluster.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"sluice version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    # Existing environment variables win over .env entries
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """sluice: encrypted physical backups of every node in a database cluster."""
    from sluice.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(json_output=json_logs, level=log_level)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    panel = Panel(
        content,
        title=f"[red bold]{title}[/]",
        border_style="red",
        padding=(0, 1),
    )
    console.print(panel)


def _load_settings_or_exit(settings: str) -> SluiceSettings:
    """Load settings, turning every configuration problem into exit code 1."""
    settings_path = Path(settings).expanduser()

    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None


@app.command()
def run(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Back up every configured node.

    Prints one line per produced artifact pair (archive, metadata). Exits 1
    only when no node produced an artifact.
    """
    from sluice.engine.orchestrator import Orchestrator
    from sluice.plugins.clients.http import HTTPBackupDownloader
    from sluice.plugins.preparers import XtraBackupPreparer

    config = _load_settings_or_exit(settings)

    try:
        with HTTPBackupDownloader(config.download, config.retry) as downloader:
            orchestrator = Orchestrator(
                config,
                downloader=downloader,
                preparer=XtraBackupPreparer(config.prepare),
            )
            result = orchestrator.execute()
    except AggregateError as e:
        typer.echo(f"{FAILURE_BANNER}{e}", err=True)
        raise typer.Exit(1) from None
    except OSError as e:
        # Output or staging directory unusable before any node ran
        typer.echo(f"Error preparing backup run: {e}", err=True)
        raise typer.Exit(1) from None

    for artifact in result.artifacts:
        typer.echo(f"{artifact.archive_path}\t{artifact.metadata_path}")

    if result.failed:
        typer.echo(
            f"{result.failed} of {len(result.outcomes)} node backup(s) failed; see log for details.",
            err=True,
        )


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate backup configuration without running."""
    import yaml

    config = _load_settings_or_exit(settings)

    typer.echo(f"Configuration valid: {len(config.nodes)} node(s).")
    typer.echo(yaml.dump(describe_settings(config), default_flow_style=False, sort_keys=False))


@app.command()
def decrypt(
    archive: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Encrypted archive produced by 'sluice run'.",
    ),
    output: Path = typer.Argument(
        ...,
        dir_okay=False,
        help="Where to write the decrypted tar archive.",
    ),
    key: str = typer.Option(
        ...,
        "--key",
        "-k",
        envvar="SLUICE_SYMMETRIC_KEY",
        prompt="Symmetric key",
        hide_input=True,
        help="Symmetric key the archive was encrypted with.",
    ),
) -> None:
    """Decrypt an archive for verification or restore.

    Output appears only after authentication succeeds; a wrong key or a
    corrupted archive leaves no output file.
    """
    from sluice.core.crypto import AesGcmEncryption

    if output.exists():
        typer.echo(f"Error: output already exists: {output}", err=True)
        raise typer.Exit(1)

    try:
        encryption = AesGcmEncryption(SecretStr(key))
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    temp_output = output.with_name(f".{output.name}.part")
    try:
        with open(archive, "rb") as source, open(temp_output, "wb") as sink:
            encryption.decrypt(source, sink)
            sink.flush()
            os.fsync(sink.fileno())
        os.replace(temp_output, output)
    except CipherError as e:
        typer.echo(f"Error: cannot decrypt {archive}: {e}", err=True)
        raise typer.Exit(1) from None
    except OSError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        temp_output.unlink(missing_ok=True)

    typer.echo(f"Decrypted {archive} -> {output}")


if __name__ == "__main__":
    app()
