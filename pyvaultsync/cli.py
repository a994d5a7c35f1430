"""CLI interface for pyvaultsync."""

import logging
import time
from pathlib import Path
from typing import Any, Optional

import click

from .api import DriveClient
from .config import config
from .exceptions import DriveAPIError, VaultSyncConfigError, VaultSyncError
from .local import LocalTree
from .output import OutputFormatter
from .sync import SyncContext, SyncStateManager, pull, push, reset
from .sync.operations import Operations
from .watcher import VaultWatcher

logger = logging.getLogger(__name__)

OPERATION_STYLES = {
    "create": "[green]create[/green]",
    "modify": "[yellow]modify[/yellow]",
    "delete": "[red]delete[/red]",
}


@click.group()
@click.option(
    "--vault",
    "vault",
    envvar="VAULTSYNC_VAULT",
    type=click.Path(file_okay=False, path_type=Path),
    help="Local vault directory (defaults to the configured vault)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option()
@click.pass_context
def main(
    ctx: Any,
    vault: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """PyVaultSync - Keep a notes vault in sync with a cloud drive."""
    ctx.ensure_object(dict)
    ctx.obj["vault"] = vault
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyvaultsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def _vault_path(ctx: Any) -> Path:
    vault = ctx.obj.get("vault") or config.vault_path
    if vault is None:
        raise VaultSyncConfigError(
            "No vault configured. Run 'pyvaultsync init' or pass --vault."
        )
    vault = Path(vault).expanduser()
    if not vault.is_dir():
        raise VaultSyncConfigError(f"Vault directory does not exist: {vault}")
    return vault


def build_context(ctx: Any) -> SyncContext:
    """Assemble a sync context from the configuration and stored state.

    The refresh token comes from the environment if set, otherwise from the
    vault's state file. When the drive rejects it, it is removed from the
    state so the next run asks for a new one.
    """
    out: OutputFormatter = ctx.obj["out"]
    vault = _vault_path(ctx)
    state_manager = SyncStateManager()
    state = state_manager.load_state(vault)

    refresh_token = config.refresh_token or state.refresh_token
    if not refresh_token:
        raise VaultSyncConfigError(
            "Not signed in. Run 'pyvaultsync init' to enter a refresh token."
        )

    def forget_token() -> None:
        state.refresh_token = None
        state_manager.save_state(state)

    client = DriveClient(
        refresh_token=refresh_token,
        vault_name=config.vault_name_for(vault),
        on_auth_invalid=forget_token,
    )
    return SyncContext(
        client=client,
        tree=LocalTree(vault),
        state=state,
        state_manager=state_manager,
        output=out,
        batch_size=config.batch_size,
        app_dir=config.app_dir or None,
        app_include=config.app_include,
        app_exclude=config.app_exclude,
    )


def _context_or_exit(ctx: Any) -> SyncContext:
    out: OutputFormatter = ctx.obj["out"]
    try:
        return build_context(ctx)
    except VaultSyncConfigError as e:
        out.error(str(e))
        raise click.exceptions.Exit(1) from e


def _operation_rows(operations: Operations) -> list[list[str]]:
    return [
        [OPERATION_STYLES.get(kind.value, kind.value), path]
        for path, kind in sorted(operations.items())
    ]


@main.command()
@click.option(
    "--vault",
    "vault",
    prompt="Vault directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Local vault directory",
)
@click.option(
    "--refresh-token",
    "-t",
    prompt="Refresh token",
    hide_input=True,
    help="OAuth refresh token for the drive",
)
@click.pass_context
def init(ctx: Any, vault: Path, refresh_token: str) -> None:
    """Configure the vault and sign in.

    Stores the vault location in ~/.config/pyvaultsync/config.json and the
    refresh token in the vault's sync state.
    """
    out: OutputFormatter = ctx.obj["out"]
    vault = vault.expanduser().resolve()

    out.info("Validating refresh token...")
    try:
        with DriveClient(
            refresh_token=refresh_token,
            vault_name=config.vault_name_for(vault),
        ) as client:
            client.get_root_folder_id()
        out.success("Refresh token is valid")
    except DriveAPIError as e:
        out.error(f"Refresh token validation failed: {e}")
        if not click.confirm("Save refresh token anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    config.set("vault", str(vault))
    config_path = config.save()

    state_manager = SyncStateManager()
    state = state_manager.load_state(vault)
    state.refresh_token = refresh_token
    state_manager.save_state(state)

    if out.json_output:
        out.output_json({"vault": str(vault), "config": str(config_path)})
        return
    out.success("Configuration saved successfully")
    out.info(f"Config file: {config_path}")
    out.info(f"State file: {state_manager.get_state_file(vault)}")


@main.command("pull")
@click.pass_context
def pull_command(ctx: Any) -> None:
    """Download remote changes into the vault."""
    out: OutputFormatter = ctx.obj["out"]
    sync_ctx = _context_or_exit(ctx)
    try:
        stats = pull(sync_ctx)
    except VaultSyncError:
        ctx.exit(1)
    finally:
        sync_ctx.client.close()

    if stats is None:
        out.warning("A sync is already running.")
        return
    if out.json_output:
        out.output_json({k: v for k, v in stats.items() if k != "applied"})


@main.command("push")
@click.option("--yes", "-y", is_flag=True, help="Push without asking for confirmation")
@click.option(
    "--exclude",
    "-e",
    multiple=True,
    help="Discard the pending change of this path instead of pushing it",
)
@click.pass_context
def push_command(ctx: Any, yes: bool, exclude: tuple[str, ...]) -> None:
    """Upload pending local changes to the drive.

    Remote changes are pulled first. Changes named with --exclude are
    reverted to the remote state.
    """
    out: OutputFormatter = ctx.obj["out"]
    sync_ctx = _context_or_exit(ctx)

    def confirm(operations: Operations) -> Optional[set]:
        accepted = set(operations) - set(exclude)
        if out.json_output:
            return accepted
        out.output_table(
            "Pending changes",
            ["Operation", "Path"],
            _operation_rows(operations),
        )
        if exclude:
            out.info(f"{len(operations) - len(accepted)} change(s) will be discarded")
        if yes:
            return accepted
        if not click.confirm("Push these changes?", default=True):
            return None
        return accepted

    try:
        stats = push(sync_ctx, confirm=confirm)
    except VaultSyncError:
        ctx.exit(1)
    finally:
        sync_ctx.client.close()

    if stats is None:
        return
    if out.json_output:
        out.output_json(stats)


@main.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset_command(ctx: Any, yes: bool) -> None:
    """Discard pending local changes and restore the remote state."""
    out: OutputFormatter = ctx.obj["out"]
    sync_ctx = _context_or_exit(ctx)

    pending = sync_ctx.operations.snapshot()
    if pending and not yes:
        out.output_table("Changes to discard", ["Operation", "Path"], _operation_rows(pending))
        if not click.confirm("Discard these changes?", default=False):
            out.warning("Reset cancelled.")
            sync_ctx.client.close()
            return

    try:
        stats = reset(sync_ctx)
    except VaultSyncError:
        ctx.exit(1)
    finally:
        sync_ctx.client.close()

    if stats is not None and out.json_output:
        out.output_json(stats)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show pending changes and sync state."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        vault = _vault_path(ctx)
    except VaultSyncConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    state = SyncStateManager().load_state(vault)
    pending = state.operations.snapshot()

    if out.json_output:
        out.output_json(
            {
                "vault": str(vault),
                "last_synced_at": state.last_synced_at.isoformat(),
                "known_objects": len(state.identity),
                "signed_in": bool(config.refresh_token or state.refresh_token),
                "pending": {path: kind.value for path, kind in pending.items()},
            }
        )
        return

    out.info(f"Vault: {vault}")
    out.info(f"Last synced: {state.last_synced_at.isoformat()}")
    out.info(f"Known remote objects: {len(state.identity)}")
    if not (config.refresh_token or state.refresh_token):
        out.warning("Not signed in. Run 'pyvaultsync init'.")
    if not pending:
        out.success("No pending changes.")
        return
    out.output_table("Pending changes", ["Operation", "Path"], _operation_rows(pending))


@main.command()
@click.option(
    "--pull-interval",
    type=int,
    default=0,
    help="Pull every N seconds while watching (0 disables)",
)
@click.pass_context
def watch(ctx: Any, pull_interval: int) -> None:
    """Watch the vault and record changes for the next push.

    Pulls once on startup when online. Stop with Ctrl+C.
    """
    out: OutputFormatter = ctx.obj["out"]
    sync_ctx = _context_or_exit(ctx)

    def try_pull() -> None:
        if not sync_ctx.client.check_connection():
            logger.info("Offline, skipping pull")
            return
        try:
            pull(sync_ctx)
        except VaultSyncError as e:
            # Already reported; keep watching
            logger.debug(f"Pull failed while watching: {e}")

    try_pull()
    watcher = VaultWatcher(sync_ctx)
    watcher.start()
    out.info(f"Watching {sync_ctx.tree.root} - press Ctrl+C to stop")
    last_pull = time.monotonic()
    try:
        while True:
            time.sleep(1)
            if pull_interval > 0 and time.monotonic() - last_pull >= pull_interval:
                try_pull()
                last_pull = time.monotonic()
    except KeyboardInterrupt:
        out.info("Stopping...")
    finally:
        watcher.stop()
        sync_ctx.checkpoint()
        sync_ctx.client.close()


if __name__ == "__main__":
    main()
