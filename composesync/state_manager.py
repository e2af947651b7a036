"""
Snapshot state management for composesync.

Owns the fixed snapshot directories under the state root and the transitions
between them:

    state.old      previous snapshot, kept until the run's teardown is done
    state.new      staging snapshot being generated and applied this run
    state          current snapshot, replaced only by renaming state.new
    state.retired  units whose teardown failed, pinned for retry

Each snapshot holds one directory per unit id containing the persisted
descriptor.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from composesync.config import Config
from composesync.errors import DuplicateUnitError, StateTransitionError
from composesync.identity import descriptor_path, unit_store_path


def ensure_absent(path: Path) -> bool:
    """
    Make sure nothing exists at path.

    Absence is success: a missing path is not an error.

    Args:
        path: File or directory to remove

    Returns:
        True if something was removed, False if the path was already absent

    Raises:
        StateTransitionError: If the path exists and could not be removed
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StateTransitionError(f"Failed to remove {path}: {e}") from e


def list_units(snapshot_path: Path) -> Set[str]:
    """Unit ids stored in a snapshot directory; empty if it doesn't exist."""
    try:
        return {entry.name for entry in snapshot_path.iterdir() if entry.is_dir()}
    except FileNotFoundError:
        return set()


class SnapshotStore:
    """
    Manages the snapshot directories and the reset/promote protocol.
    """

    def __init__(self, config: Config):
        """
        Initialize SnapshotStore.

        Args:
            config: Configuration providing the state root and descriptor filename
        """
        self.config = config
        self.current_path = config.current_path
        self.staging_path = config.staging_path
        self.previous_path = config.previous_path
        self.retired_path = config.retired_path
        self.logger = logging.getLogger(__name__)

    def reset(self) -> List[StateTransitionError]:
        """
        Prepare a clean starting point for a run.

        Demotes current to previous and recreates an empty staging snapshot.
        When current is missing but previous exists, an earlier run was
        interrupted between demotion and promotion: previous is then the last
        known-good snapshot and is kept as is.

        Failures other than the final creation of staging are logged and
        returned rather than raised, so later steps still run.

        Returns:
            The non-fatal errors encountered

        Raises:
            StateTransitionError: If the empty staging directory can't be created
        """
        errors: List[StateTransitionError] = []

        if self.current_path.exists():
            try:
                if ensure_absent(self.previous_path):
                    self.logger.info(f"Removed stale previous snapshot {self.previous_path}")
            except StateTransitionError as e:
                self.logger.warning(str(e))
                errors.append(e)

            try:
                os.rename(self.current_path, self.previous_path)
                self.logger.debug(f"Demoted {self.current_path} to {self.previous_path}")
            except OSError as e:
                error = StateTransitionError(
                    f"Failed to demote {self.current_path} to {self.previous_path}: {e}"
                )
                self.logger.warning(str(error))
                errors.append(error)
        elif self.previous_path.exists():
            self.logger.warning(
                f"No current snapshot but {self.previous_path} exists; "
                "recovering it as the previous state of an interrupted run"
            )
        else:
            self.logger.info("No previous state found, starting from an empty host state")

        try:
            if ensure_absent(self.staging_path):
                self.logger.info(f"Removed leftover staging snapshot {self.staging_path}")
        except StateTransitionError as e:
            self.logger.warning(str(e))
            errors.append(e)

        try:
            self.staging_path.mkdir(parents=True)
        except OSError as e:
            raise StateTransitionError(
                f"Failed to create staging snapshot {self.staging_path}: {e}"
            ) from e

        return errors

    def promote(self) -> None:
        """
        Atomically replace current with staging, then drop previous.

        Raises:
            StateTransitionError: If the rename fails; current is left untouched
        """
        try:
            os.rename(self.staging_path, self.current_path)
        except OSError as e:
            raise StateTransitionError(
                f"Failed to promote {self.staging_path} to {self.current_path}: {e}"
            ) from e
        self.logger.info(f"Promoted {self.staging_path} to {self.current_path}")

        try:
            ensure_absent(self.previous_path)
        except StateTransitionError as e:
            # Cleaned up by the next reset
            self.logger.warning(str(e))

    def write_unit(self, uid: str, descriptor: Dict[str, Any], origin: str) -> Path:
        """
        Persist a unit's descriptor into the staging snapshot.

        The descriptor is written to a temporary file in the unit directory
        and renamed into place, so a store never holds a partial descriptor.

        Args:
            uid: Unit id
            descriptor: Serializable descriptor mapping
            origin: Path of the unit definition, used in error messages

        Returns:
            Path of the unit's store directory

        Raises:
            DuplicateUnitError: If staging already holds this unit id
            StateTransitionError: If the store can't be written
        """
        store = unit_store_path(self.staging_path, uid)
        try:
            store.mkdir()
        except FileExistsError as e:
            raise DuplicateUnitError(origin, uid) from e
        except OSError as e:
            raise StateTransitionError(f"Failed to create unit store {store}: {e}") from e

        temp_path = None
        try:
            temp_fd, temp_path = tempfile.mkstemp(dir=store, prefix=".descriptor_", suffix=".tmp")
            with os.fdopen(temp_fd, "w") as f:
                yaml.safe_dump(descriptor, f, default_flow_style=False, sort_keys=False)
            os.replace(temp_path, descriptor_path(self.staging_path, uid, self.config.compose_file))
        except (OSError, yaml.YAMLError) as e:
            if temp_path is not None:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
            # A store without a descriptor must not be applied or promoted
            self._discard(store)
            raise StateTransitionError(f"Failed to write descriptor for {uid}: {e}") from e

        return store

    def _discard(self, store: Path) -> None:
        try:
            ensure_absent(store)
        except StateTransitionError as e:
            self.logger.warning(str(e))

    def read_descriptor(self, snapshot_path: Path, uid: str) -> Optional[Dict[str, Any]]:
        path = descriptor_path(snapshot_path, uid, self.config.compose_file)
        if not path.exists():
            return None
        with open(path, "r") as f:
            return yaml.safe_load(f)

    def staged_units(self) -> Set[str]:
        return list_units(self.staging_path)

    def current_units(self) -> Set[str]:
        return list_units(self.current_path)

    def previous_units(self) -> Set[str]:
        return list_units(self.previous_path)

    def pinned_units(self) -> Set[str]:
        return list_units(self.retired_path)

    def removal_candidates(self) -> Dict[str, Path]:
        """
        Units that must be torn down, mapped to the store to tear them down from.

        Candidates are the units of previous and the pinned units of earlier
        failed teardowns, minus everything in staging. Previous wins over a
        pinned store of the same unit since it holds the newer descriptor.
        """
        staged = self.staged_units()
        candidates: Dict[str, Path] = {}
        for uid in self.pinned_units() - staged:
            candidates[uid] = unit_store_path(self.retired_path, uid)
        for uid in self.previous_units() - staged:
            candidates[uid] = unit_store_path(self.previous_path, uid)
        return candidates

    def pin(self, uid: str, store: Path) -> None:
        """
        Keep a unit whose teardown failed so the next run retries it.

        Raises:
            StateTransitionError: If the store can't be moved into the retired area
        """
        target = unit_store_path(self.retired_path, uid)
        if store == target:
            return
        try:
            self.retired_path.mkdir(parents=True, exist_ok=True)
            ensure_absent(target)
            shutil.move(str(store), str(target))
        except (OSError, shutil.Error) as e:
            raise StateTransitionError(f"Failed to pin {uid} for teardown retry: {e}") from e
        self.logger.info(f"Pinned {uid} for teardown retry on the next run")

    def unpin(self, uid: str) -> bool:
        """Forget a pinned unit. Returns True if it was pinned."""
        return ensure_absent(unit_store_path(self.retired_path, uid))
