from __future__ import annotations

import argparse
import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter

from classroom_runner import (
    DEFAULT_REGISTRY,
    CodeRunner,
    DockerLauncher,
    LocalLauncher,
    SandboxPolicy,
    ValidationError,
)
from classroom_runner.policy import resolve_policy, resolve_server_settings

_CONSOLE = Console(no_color=False)
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles."""

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m crn")
        ```
    """

    def error(self, message: str) -> Never:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running code and serving the runner API.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m crn",
        description=(
            "classroom-code-runner CLI\n"
            "Run student submissions in resource-capped sandboxes.\n"
            "Every run gets a fresh workspace and a hard deadline."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m crn languages\n"
            "  python -m crn run hello.py\n"
            "  python -m crn run Main.java --language java\n"
            "  python -m crn serve --port 4000\n"
            "  python -m crn cleanup\n\n"
            "Remote Examples:\n"
            "  python -m crn --docker-context my-remote-context run hello.py\n"
            "  python -m crn --docker-host ssh://ubuntu@server serve"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a TOML config file with [policy] and [server] tables.\n"
            "Defaults to $CLASSROOM_RUNNER_CONFIG, then built-in defaults."
        ),
    )
    parser.add_argument(
        "--docker-context",
        help=(
            "Use an existing Docker context name.\n"
            "Mutually exclusive with --docker-host."
        ),
    )
    parser.add_argument(
        "--docker-host",
        help=(
            "Connect directly with DOCKER_HOST.\n"
            "Examples: ssh://user@server, tcp://host:2376"
        ),
    )
    parser.add_argument(
        "--backend",
        choices=["docker", "local"],
        default="docker",
        help=(
            "Sandbox backend (default: docker).\n"
            "'local' runs on the host without isolation; development only."
        ),
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING; serve uses INFO unless set).",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "languages",
        help="List supported languages.",
        description="Show every language profile with its image and run command.",
        formatter_class=_HELP_FORMATTER,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one source file in a sandbox.",
        description=(
            "Run a source file and print its output.\n"
            "The language is inferred from the file extension unless given."
        ),
        epilog=(
            "Examples:\n"
            "  python -m crn run hello.py\n"
            "  python -m crn run script.txt --language javascript"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("path", help="Source file to run.")
    run_cmd.add_argument(
        "--language",
        choices=DEFAULT_REGISTRY.ids(),
        help="Language of the source file.",
    )

    serve_cmd = sub.add_parser(
        "serve",
        help="Serve the HTTP run API.",
        description=(
            "Start the HTTP API.\n"
            "POST /api/run {code, language} returns {output}; GET /health."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    serve_cmd.add_argument("--host", help="Bind address (default from config: 0.0.0.0).")
    serve_cmd.add_argument("--port", type=int, help="Bind port (default from config: 4000).")

    sub.add_parser(
        "cleanup",
        help="Remove stale sandbox containers and workspaces.",
        description=(
            "Remove stale managed resources.\n"
            "Deletes labelled sandbox containers and leftover run directories."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_launcher(args: argparse.Namespace, policy: SandboxPolicy) -> DockerLauncher | LocalLauncher:
    """Create the sandbox launcher selected by global CLI flags.

    Example:
        ```python
        launcher = build_launcher(args, SandboxPolicy())
        ```
    """
    if args.backend == "local":
        return LocalLauncher(policy)
    return DockerLauncher(
        policy,
        docker_context=args.docker_context,
        docker_host=args.docker_host,
    )


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level), format=_LOG_FORMAT)


def _print_languages() -> None:
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("File", style="magenta")
    table.add_column("Image")
    table.add_column("Command")
    for profile in DEFAULT_REGISTRY:
        table.add_row(
            profile.id,
            profile.filename,
            profile.runtime_image,
            profile.build_run_command(profile.filename),
        )
    _CONSOLE.print(table)


def _run_file(args: argparse.Namespace, runner: CodeRunner) -> int:
    path = Path(args.path)
    if not path.is_file():
        _CONSOLE.print(Panel.fit(f"File not found: {path}", style="bold red"))
        return 2
    language = args.language
    if language is None:
        profile = runner.registry.for_extension(path.suffix)
        if profile is None:
            _CONSOLE.print(
                Panel.fit(f"Cannot infer language from '{path.suffix}'; pass --language", style="bold red")
            )
            return 2
        language = profile.id
    try:
        outcome = asyncio.run(runner.run(path.read_text(encoding="utf-8"), language))
    except ValidationError as exc:
        _CONSOLE.print(Panel.fit(str(exc), style="bold red"))
        return 2
    style = "green" if outcome.ok else "red"
    _CONSOLE.print(
        Panel(outcome.output, title=f"{language} · {outcome.kind.value}", border_style=style, expand=False)
    )
    return 0 if outcome.ok else 1


def _serve(args: argparse.Namespace, runner: CodeRunner) -> int:
    import uvicorn

    from classroom_runner.server import create_app

    settings = resolve_server_settings(args.config)
    app = create_app(runner, settings)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=args.log_level.lower(),
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `crn` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.command == "serve" and args.log_level == "WARNING":
        args.log_level = "INFO"
    _configure_logging(args.log_level)

    if args.command == "languages":
        _print_languages()
        return 0

    try:
        policy = resolve_policy(None, args.config)
        launcher = build_launcher(args, policy)
    except ValueError as exc:
        parser.error(str(exc))
    runner = CodeRunner(launcher, policy=policy)

    if args.command == "run":
        return _run_file(args, runner)
    if args.command == "serve":
        return _serve(args, runner)
    if args.command == "cleanup":
        summary: dict[str, Any] = {"removed_workspaces": runner.preparer.purge()}
        if isinstance(launcher, DockerLauncher):
            summary["removed_containers"] = launcher.cleanup_stale()
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
        return 0

    parser.error("Unhandled command")
