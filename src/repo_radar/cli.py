import argparse
import json
import logging
import os
import subprocess
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import engine, ops
from .config import Config, Settings
from .constants import APP_NAME, CONFIG_FILE
from .models import Action, ActionResult, Badge, OperationLogEntry, RepoStatus
from .storage import RadarStore

logger = logging.getLogger(APP_NAME)
console = Console()

BADGE_STYLES = {
    Badge.CLEAN: "green",
    Badge.DIRTY: "yellow",
    Badge.AHEAD: "cyan",
    Badge.BEHIND: "magenta",
    Badge.DIVERGED: "bold red",
    Badge.NO_UPSTREAM: "dim",
    Badge.DETACHED_HEAD: "yellow",
    Badge.ERROR: "bold red",
    Badge.NO_ACCESS: "bold red",
    Badge.MISSING_LOCALLY: "blue",
}

ACTION_COMMANDS = {
    "fetch": Action.FETCH,
    "pull": Action.REBASE_PULL,
    "push": Action.PUSH,
}


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Args:
        config (Config): Supplies the log directory and rotation size.
        verbose (bool): If True, debug messages reach stderr.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_file = engine.log_file_path(config)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
    except OSError as e:
        logger.warning(f"Could not open log file {log_file}: {e}")
        return
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _badge_text(badges: list[Badge]) -> Text:
    text = Text()
    for i, badge in enumerate(badges):
        if i:
            text.append(" ")
        text.append(str(badge), style=BADGE_STYLES.get(badge, "white"))
    return text


def _sync_text(repo: RepoStatus) -> str:
    if repo.missing:
        return "-"
    if not repo.upstream:
        return "no upstream"
    return f"↑{repo.ahead} ↓{repo.behind}"


def render_repos(repos: list[RepoStatus]) -> Table:
    """Builds the repository overview table."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Branch")
    table.add_column("Sync", justify="right")
    table.add_column("Changes", justify="right")
    table.add_column("Status")

    for repo in repos:
        changes = (
            "-"
            if repo.missing
            else f"{repo.modified_count}M {repo.untracked_count}U"
        )
        table.add_row(
            repo.name,
            repo.branch,
            _sync_text(repo),
            changes,
            _badge_text(repo.badges),
        )
    return table


def show_status(
    settings: Settings, force_rescan: bool, config: Config, as_json: bool = False
) -> None:
    """Prints the status of every repository under the root folder."""
    if not settings.root_folder:
        console.print(
            "[yellow]No root folder configured. Pass --root or set "
            "[bold]scan.root_folder[/bold] via 'repo-radar config'.[/yellow]"
        )
        return

    store = RadarStore(config.storage.path)
    with console.status("[bold blue]Scanning repositories...[/bold blue]"):
        repos = engine.get_repos(settings, force_rescan, config, store)

    if as_json:
        print(json.dumps([r.to_dict() for r in repos], indent=2))
        return

    if not repos:
        console.print(
            f"[dim]No repositories found under {settings.root_folder}.[/dim]"
        )
        return

    console.print(render_repos(repos))
    errors = [r for r in repos if r.error]
    for repo in errors:
        console.print(f"[bold red]ERROR {repo.name}:[/bold red] {repo.error}")
    console.print(f"[dim]{len(repos)} repositories.[/dim]")


def show_logs(config: Config, limit: int | None = None, as_json: bool = False) -> None:
    """Prints recent operation log entries, newest first."""
    window = limit if limit is not None else config.limits.log_window
    store = RadarStore(config.storage.path)
    entries: list[OperationLogEntry] = store.read_logs(window)

    if as_json:
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return

    if not entries:
        console.print("[dim]Operation log is empty.[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Time", style="dim")
    table.add_column("Action")
    table.add_column("Repository", style="cyan")
    table.add_column("Result")
    table.add_column("Message")

    for entry in entries:
        result = (
            Text("ok", style="green")
            if entry.success
            else Text("fail", style="red")
        )
        table.add_row(
            entry.timestamp,
            str(entry.action),
            Path(entry.repo).name or entry.repo,
            result,
            entry.message,
        )
    console.print(table)


def _print_result(result: ActionResult) -> None:
    if result.blocked:
        console.print(f"[bold yellow]BLOCKED:[/bold yellow] {result.message}")
        return
    if result.ok:
        console.print(f"[bold green]SUCCESS:[/bold green] {result.message}")
    else:
        console.print(f"[bold red]ERROR:[/bold red] {result.message}")

    output = f"{result.stdout}\n{result.stderr}".strip()
    if output:
        console.print(Panel(output, title="git output", expand=False))


def run_repo_action(path: str, action: Action, config: Config) -> bool:
    """Runs one gated action and prints the outcome.

    Returns:
        bool: True if the action ran and succeeded.
    """
    repo_path = str(Path(path).expanduser().resolve())
    store = RadarStore(config.storage.path)
    with console.status(
        f"[bold blue]Running {action} in {Path(repo_path).name}...[/bold blue]"
    ):
        result = ops.run_action(repo_path, action, config, store)
    _print_result(result)
    return result.ok


def clone_cli(value: str, root_folder: str, config: Config) -> bool:
    """Clones a repository into the root folder and prints the outcome."""
    if not root_folder:
        console.print("[bold red]ERROR:[/bold red] No root folder configured.")
        return False

    store = RadarStore(config.storage.path)
    with console.status(f"[bold blue]Cloning {value}...[/bold blue]"):
        result = ops.clone_repo(root_folder, value, config, store)
    _print_result(result)
    if result.cloned_path:
        console.print(f"   Cloned into [cyan]{result.cloned_path}[/cyan]")
    return result.ok


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# Repo Radar Configuration\n\n"
                "[scan]\n"
                '# root_folder = "~/projects"\n'
                '# expected_repos = ["owner/repo"]\n\n'
                "[git]\n"
                '# timeout = "2m"\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Monitor and synchronize a tree of local Git working copies.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug logging on stderr"
    )
    parser.add_argument(
        "--config-file", type=Path, default=None, help="Alternate config file"
    )

    subparsers = parser.add_subparsers(dest="command")

    status_parser = subparsers.add_parser("status", help="Show repository status")
    status_parser.add_argument(
        "--rescan", action="store_true", help="Ignore the discovery cache"
    )
    status_parser.add_argument("--root", help="Root folder to scan")
    status_parser.add_argument(
        "--expect",
        action="append",
        default=None,
        metavar="OWNER/REPO",
        help="Expected repository slug (repeatable)",
    )
    status_parser.add_argument("--json", action="store_true", help="Emit JSON")

    for name, action in ACTION_COMMANDS.items():
        action_parser = subparsers.add_parser(
            name, help=f"Run a gated '{action}' in a repository"
        )
        action_parser.add_argument("path", help="Path to the repository")

    clone_parser = subparsers.add_parser("clone", help="Clone into the root folder")
    clone_parser.add_argument("input", help="URL, SSH spec, or owner/repo shorthand")
    clone_parser.add_argument("--root", help="Root folder to clone into")

    log_parser = subparsers.add_parser("log", help="Show the operation log")
    log_parser.add_argument(
        "-n", "--limit", type=int, default=None, help="Number of entries"
    )
    log_parser.add_argument("--json", action="store_true", help="Emit JSON")

    subparsers.add_parser("config", help="Open the config file")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Repo Radar CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = Config.load(args.config_file)
    setup_logging(config, verbose=args.verbose)

    if args.command == "status":
        settings = config.settings()
        if args.root:
            root = str(Path(args.root).expanduser())
            settings = replace(settings, root_folder=root)
        if args.expect is not None:
            settings = replace(settings, expected_slugs=args.expect)
        show_status(settings, args.rescan, config, as_json=args.json)
        return
    elif args.command in ACTION_COMMANDS:
        if not run_repo_action(args.path, ACTION_COMMANDS[args.command], config):
            sys.exit(1)
        return
    elif args.command == "clone":
        root = config.settings().root_folder
        if args.root:
            root = str(Path(args.root).expanduser())
        if not clone_cli(args.input, root, config):
            sys.exit(1)
        return
    elif args.command == "log":
        show_logs(config, args.limit, as_json=args.json)
        return
    elif args.command == "config":
        open_config()
        return

    parser.print_help()


if __name__ == "__main__":
    main()
