"""CLI interface for Cloudreve."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .auth import Session, SessionManager
from .batch import BatchOrchestrator, BatchReport
from .cli_progress import BatchProgressDisplay
from .config import Config
from .exceptions import CloudreveError, SessionError
from .file_entries_manager import RemoteEntriesManager
from .output import OutputFormatter
from .token_store import TokenStore

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_AUTH = 2
EXIT_INTERRUPTED = 130


def setup_logging(level: int, verbose: bool) -> None:
    """Configure logging for the CLI process."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pycloudreve").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
        # Only raise the package's own level when the config asks for it
        if level < logging.WARNING:
            logging.getLogger("pycloudreve").setLevel(level)
        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)


def require_session(ctx: Any) -> Session:
    """Resolve the API session or exit with a login hint."""
    out: OutputFormatter = ctx.obj["out"]
    manager: SessionManager = ctx.obj["manager"]

    try:
        return manager.resolve_session(
            url=ctx.obj["url"],
            email=ctx.obj["email"],
            token=ctx.obj["token"],
            api_version=ctx.obj["api_version"] or "v4",
        )
    except SessionError as e:
        out.error(str(e))
        out.error("Please run 'cloudreve login' to authenticate.")
        ctx.exit(EXIT_AUTH)
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)
    raise click.Abort()


def finish_batch(ctx: Any, report: BatchReport) -> None:
    """Print the batch summary and exit non-zero if anything failed."""
    out: OutputFormatter = ctx.obj["out"]
    out.print_summary(report)
    if report.failed:
        ctx.exit(EXIT_FAILURE)


def run_batch(ctx: Any, description: str, action: Any) -> None:
    """Run a batch action with a progress bar and standard error handling.

    Args:
        ctx: Click context
        description: Progress bar label
        action: Callable taking a BatchOrchestrator and returning a BatchReport
    """
    out: OutputFormatter = ctx.obj["out"]
    session = require_session(ctx)
    show_progress = not out.quiet and not out.json_output

    try:
        with BatchProgressDisplay(description, enabled=show_progress) as display:
            orchestrator = BatchOrchestrator(
                session.api,
                workers=ctx.obj["workers"],
                on_item_complete=display.on_item_complete,
            )
            report = action(orchestrator)
    except KeyboardInterrupt:
        out.warning("Cancelled by user")
        ctx.exit(EXIT_INTERRUPTED)
    except SessionError as e:
        out.error(str(e))
        out.error("Please run 'cloudreve login' to authenticate.")
        ctx.exit(EXIT_AUTH)
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)
    finally:
        session.api.close()

    if not report.succeeded and not report.failed and not report.skipped:
        out.warning("No files matched the specified paths")
        return
    finish_batch(ctx, report)


@click.group()
@click.option("--url", "-u", help="Cloudreve instance URL")
@click.option("--email", "-e", help="Account email selecting the cached login")
@click.option("--token", "-t", help="Access token to use instead of the cache")
@click.option(
    "--api-version",
    type=click.Choice(["v3", "v4"]),
    default=None,
    help="API version of the instance (detected on login when omitted)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml",
)
@click.option(
    "--workers",
    "-j",
    type=click.IntRange(min=0),
    default=None,
    help="Number of parallel operations for batch commands (0 = unlimited)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging output")
@click.version_option(package_name="pycloudreve")
@click.pass_context
def main(
    ctx: Any,
    url: Optional[str],
    email: Optional[str],
    token: Optional[str],
    api_version: Optional[str],
    config_path: Optional[Path],
    workers: Optional[int],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """Cloudreve CLI - transfer and manage files on a Cloudreve instance."""
    ctx.ensure_object(dict)
    out = OutputFormatter(json_output=json, quiet=quiet)

    try:
        config = Config.load(config_path)
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)

    setup_logging(config.logging_level, verbose)

    store = TokenStore(config.tokens_file)
    ctx.obj["out"] = out
    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.obj["manager"] = SessionManager(store)
    ctx.obj["url"] = url or config.default_url
    ctx.obj["email"] = email or config.default_email
    ctx.obj["token"] = token
    ctx.obj["api_version"] = api_version
    ctx.obj["workers"] = config.workers if workers is None else workers


# =========================
# Authentication
# =========================


@main.command()
@click.option("--password", "-p", help="Account password (prompted when omitted)")
@click.pass_context
def login(ctx: Any, password: Optional[str]) -> None:
    """Log in and cache the session token."""
    out: OutputFormatter = ctx.obj["out"]
    manager: SessionManager = ctx.obj["manager"]

    url = ctx.obj["url"] or click.prompt("Enter Cloudreve instance URL")
    email = ctx.obj["email"] or click.prompt("Enter your email")
    if not password:
        password = click.prompt("Enter your password", hide_input=True)

    try:
        session = manager.login(url, email, password, api_version=ctx.obj["api_version"])
    except CloudreveError as e:
        out.error(f"Authentication failed: {e}")
        ctx.exit(EXIT_FAILURE)

    credential = session.credential
    session.api.close()
    if credential is not None:
        if out.json_output:
            out.output_json(
                {
                    "email": credential.email,
                    "display_name": credential.display_name,
                    "url": credential.instance_url,
                    "api_version": credential.api_version,
                }
            )
        else:
            out.success(
                f"Logged in as {credential.display_name or credential.email} "
                f"({credential.email}) on {credential.instance_url}"
            )


@main.command()
@click.option("--all", "remove_all", is_flag=True, help="Forget every cached login")
@click.pass_context
def logout(ctx: Any, remove_all: bool) -> None:
    """Forget the cached token for the selected account."""
    out: OutputFormatter = ctx.obj["out"]
    manager: SessionManager = ctx.obj["manager"]
    url, email = ctx.obj["url"], ctx.obj["email"]

    if not remove_all and not url and not email:
        out.error("Select an account with --email/--url or pass --all")
        ctx.exit(EXIT_FAILURE)

    try:
        removed = manager.logout(url=url, email=email)
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)

    if removed:
        out.success(f"Removed {removed} cached login(s)")
    else:
        out.warning("No matching cached login")


@main.command()
@click.pass_context
def accounts(ctx: Any) -> None:
    """List cached logins."""
    out: OutputFormatter = ctx.obj["out"]
    store: TokenStore = ctx.obj["store"]

    try:
        credentials = store.load_all()
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)

    if not credentials:
        out.info("No cached logins. Run 'cloudreve login' first.")
        return

    rows = [
        {
            "email": c.email,
            "name": c.display_name,
            "url": c.instance_url,
            "api": c.api_version,
            "expires": c.access_expires or "-",
        }
        for c in credentials
    ]
    out.output_table(
        rows,
        [
            ("email", "Email"),
            ("name", "Name"),
            ("url", "Instance"),
            ("api", "API"),
            ("expires", "Access expires"),
        ],
    )


# =========================
# Browsing
# =========================


@main.command("ls")
@click.argument("path", default="/")
@click.pass_context
def list_files(ctx: Any, path: str) -> None:
    """List a remote directory."""
    out: OutputFormatter = ctx.obj["out"]
    session = require_session(ctx)

    try:
        entries = RemoteEntriesManager(session.api).get_all_in_folder(path)
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)
    finally:
        session.api.close()

    rows = [
        {
            "name": f"{e.name}/" if e.is_folder else e.name,
            "type": "folder" if e.is_folder else "file",
            "size": "" if e.is_folder else out.format_size(e.size),
            "updated": e.updated_at or "",
        }
        for e in sorted(entries, key=lambda e: (not e.is_folder, e.name))
    ]
    out.output_table(
        rows,
        [("name", "Name"), ("type", "Type"), ("size", "Size"), ("updated", "Updated")],
        title=path,
    )


@main.command()
@click.pass_context
def policies(ctx: Any) -> None:
    """List storage policies available for uploads."""
    out: OutputFormatter = ctx.obj["out"]
    session = require_session(ctx)

    try:
        available = session.api.get_storage_policies()
    except CloudreveError as e:
        out.error(str(e))
        ctx.exit(EXIT_FAILURE)
    finally:
        session.api.close()

    out.output_table(
        [{"id": p.id, "name": p.name, "type": p.type} for p in available],
        [("id", "ID"), ("name", "Name"), ("type", "Type")],
    )


# =========================
# Transfers
# =========================


@main.command()
@click.argument("paths", nargs=-1, required=True)
@click.option("--dest", "-d", default=None, help="Remote directory to upload into")
@click.option("--overwrite", is_flag=True, help="Store as a new version if the file exists")
@click.option("--policy", default=None, help="Storage policy ID to use")
@click.option("--recursive", "-r", is_flag=True, help="Upload directories recursively")
@click.pass_context
def upload(
    ctx: Any,
    paths: tuple[str, ...],
    dest: Optional[str],
    overwrite: bool,
    policy: Optional[str],
    recursive: bool,
) -> None:
    """Upload local files or directories.

    PATHS: Local files, directories or wildcard patterns
    """
    config: Config = ctx.obj["config"]
    dest_dir = dest or config.default_upload_path
    policy_id = policy or config.default_policy

    run_batch(
        ctx,
        "Uploading",
        lambda orchestrator: orchestrator.upload(
            list(paths),
            dest_dir,
            overwrite=overwrite,
            policy_id=policy_id,
            recursive=recursive,
        ),
    )


@main.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Local directory to save into",
)
@click.option("--recursive", "-r", is_flag=True, help="Download matched folders recursively")
@click.pass_context
def download(
    ctx: Any, patterns: tuple[str, ...], output: Optional[Path], recursive: bool
) -> None:
    """Download remote files.

    PATTERNS: Remote paths or wildcard patterns (e.g. /docs/*.pdf)
    """
    config: Config = ctx.obj["config"]
    output_dir = output or Path(config.default_download_dir)

    run_batch(
        ctx,
        "Downloading",
        lambda orchestrator: orchestrator.download(
            list(patterns), output_dir, recursive=recursive
        ),
    )


@main.command("cp")
@click.argument("sources", nargs=-1, required=True)
@click.argument("destination")
@click.pass_context
def copy_files(ctx: Any, sources: tuple[str, ...], destination: str) -> None:
    """Copy remote files into DESTINATION."""
    run_batch(
        ctx, "Copying", lambda orchestrator: orchestrator.copy(list(sources), destination)
    )


@main.command("mv")
@click.argument("sources", nargs=-1, required=True)
@click.argument("destination")
@click.pass_context
def move_files(ctx: Any, sources: tuple[str, ...], destination: str) -> None:
    """Move remote files into DESTINATION."""
    run_batch(
        ctx, "Moving", lambda orchestrator: orchestrator.move(list(sources), destination)
    )


@main.command("rm")
@click.argument("paths", nargs=-1, required=True)
@click.option("--force", "-f", is_flag=True, help="Delete without confirmation")
@click.pass_context
def remove(ctx: Any, paths: tuple[str, ...], force: bool) -> None:
    """Delete remote files. Use /path/* to clear a folder."""
    out: OutputFormatter = ctx.obj["out"]

    if not force:
        session = require_session(ctx)
        try:
            expansion = BatchOrchestrator(session.api).resolve_delete_targets(list(paths))
        except CloudreveError as e:
            out.error(str(e))
            ctx.exit(EXIT_FAILURE)
        finally:
            session.api.close()

        for _, error in expansion.errors:
            out.error(str(error))
        targets = expansion.paths
        if not targets:
            if expansion.errors:
                ctx.exit(EXIT_FAILURE)
            out.info("No files to delete")
            return
        out.print("Delete operation:")
        out.print(f"  Items: {len(targets)}")
        for target in targets:
            out.print(f"  - {target}")
        if not click.confirm("Proceed?", default=False):
            out.info("Operation cancelled")
            return

    run_batch(ctx, "Deleting", lambda orchestrator: orchestrator.delete(list(paths)))


if __name__ == "__main__":
    main()
