"""Persisted sync state.

The state of one vault is a single JSON document holding the operation log,
the identity index, the last-synced timestamp, the change cursor and the
stored refresh token. It is rewritten after every applied item so that an
interrupted run resumes exactly where it stopped.
"""

import hashlib
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..utils import EPOCH, parse_iso_timestamp
from .identity import IdentityIndex
from .operations import OperationLog

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Sync state of one vault."""

    vault_path: str
    """Local vault directory"""

    identity: IdentityIndex = field(default_factory=IdentityIndex)
    """Remote id <-> vault path"""

    operations: OperationLog = field(init=False)
    """Pending local mutations"""

    last_synced_at: datetime = EPOCH
    """Remote objects modified after this instant are pulled"""

    change_cursor: Optional[str] = None
    """Change feed token; used to discover remote deletions"""

    refresh_token: Optional[str] = None
    """Stored credential"""

    def __post_init__(self) -> None:
        self.operations = OperationLog(is_known_remotely=self.identity.has_path)

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "vault_path": self.vault_path,
            "operations": self.operations.to_dict(),
            "identity": self.identity.to_dict(),
            "last_synced_at": self.last_synced_at.isoformat(),
            "change_cursor": self.change_cursor,
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary."""
        state = cls(
            vault_path=data.get("vault_path", ""),
            identity=IdentityIndex.from_dict(data.get("identity", {})),
            last_synced_at=parse_iso_timestamp(data.get("last_synced_at")) or EPOCH,
            change_cursor=data.get("change_cursor"),
            refresh_token=data.get("refresh_token"),
        )
        state.operations = OperationLog.from_dict(
            data.get("operations", {}), is_known_remotely=state.identity.has_path
        )
        return state


class SyncStateManager:
    """Loads and saves sync state documents.

    State files live in the user's config directory, keyed by a hash of the
    vault path to support several vaults.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize state manager.

        Args:
            state_dir: Directory to store state files. Defaults to
                      ~/.config/pyvaultsync/sync_state/
        """
        if state_dir is None:
            state_dir = Path.home() / ".config" / "pyvaultsync" / "sync_state"
        self.state_dir = state_dir
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_state_key(self, vault_path: Path) -> str:
        # Use absolute path for consistency
        vault_abs = str(Path(vault_path).resolve())
        return hashlib.sha256(vault_abs.encode()).hexdigest()[:16]

    def get_state_file(self, vault_path: Path) -> Path:
        return self.state_dir / f"{self._get_state_key(vault_path)}.json"

    def load_state(self, vault_path: Path) -> SyncState:
        """Load sync state for a vault, or a fresh state if none exists.

        Args:
            vault_path: Local vault directory

        Returns:
            The stored state, or an empty one
        """
        state_file = self.get_state_file(vault_path)

        if not state_file.exists():
            logger.debug(f"No sync state found at {state_file}")
            return SyncState(vault_path=str(Path(vault_path).resolve()))

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            state = SyncState.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load sync state, starting fresh: {e}")
            return SyncState(vault_path=str(Path(vault_path).resolve()))

        logger.debug(
            f"Loaded sync state with {len(state.operations)} pending operation(s) "
            f"and {len(state.identity)} known object(s)"
        )
        return state

    def save_state(self, state: SyncState) -> None:
        """Write the state document atomically.

        Args:
            state: State to save
        """
        state_file = self.get_state_file(Path(state.vault_path))
        with self._lock:
            tmp_file = state_file.with_suffix(".json.tmp")
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_file, state_file)
        logger.debug(f"Saved sync state to {state_file}")

    def clear_state(self, vault_path: Path) -> bool:
        """Clear sync state for a vault.

        Returns:
            True if state was cleared, False if no state existed
        """
        state_file = self.get_state_file(vault_path)

        if state_file.exists():
            state_file.unlink()
            logger.debug(f"Cleared sync state at {state_file}")
            return True
        return False
