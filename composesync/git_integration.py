"""
Git Integration Module

Keeps a local clone of every declared source repository up to date and
lists the unit definition files it contains.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from git import Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from composesync.errors import SourceResolutionError, StateTransitionError
from composesync.identity import source_id
from composesync.state_manager import ensure_absent


@dataclass(frozen=True)
class Source:
    """A declared source repository and where it is cloned locally."""
    address: str
    id: str
    path: Path

    @classmethod
    def from_address(cls, address: str, sources_root: Path) -> "Source":
        sid = source_id(address)
        return cls(address=address, id=sid, path=Path(sources_root) / sid)


class SourceResolver:
    """Clone-or-update resolver for source repositories."""

    def __init__(self, sources_root: Path, branch: str = "main"):
        """
        Initialize the resolver.

        Args:
            sources_root: Directory holding one clone per source id
            branch: Branch every clone is reset to
        """
        self.sources_root = Path(sources_root)
        self.branch = branch
        self.logger = logging.getLogger(__name__)

    def source(self, address: str) -> Source:
        return Source.from_address(address, self.sources_root)

    def resolve_sync(self, address: str) -> Path:
        """
        Bring the local clone of a source in line with its remote branch.

        Clones on first use; afterwards fetches and hard-resets to
        origin/<branch>, discarding any local modification.

        Args:
            address: Repository address

        Returns:
            Path of the local clone

        Raises:
            SourceResolutionError: If the repository can't be cloned or updated
        """
        source = self.source(address)
        try:
            if (source.path / ".git").exists():
                repo = Repo(str(source.path))
                self.logger.debug(f"Updating {address} in {source.path}")
                repo.remotes.origin.fetch()
                repo.git.reset("--hard", f"origin/{self.branch}")
            else:
                self.sources_root.mkdir(parents=True, exist_ok=True)
                # Partial clone left by an interrupted run
                ensure_absent(source.path)
                self.logger.info(f"Cloning {address} into {source.path}")
                Repo.clone_from(address, str(source.path), branch=self.branch)
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError,
                StateTransitionError, ValueError) as e:
            raise SourceResolutionError(address, str(e)) from e
        return source.path

    async def resolve(self, address: str) -> Path:
        return await asyncio.to_thread(self.resolve_sync, address)


def list_unit_definitions(
    source_path: Path,
    unit_dir: str,
    suffixes: Sequence[str],
    address: Optional[str] = None,
) -> List[Path]:
    """
    Get all unit definition files of a resolved source.

    Args:
        source_path: Local clone of the source
        unit_dir: Directory inside the source holding unit definitions
        suffixes: Accepted file suffixes
        address: Source address, used in error messages

    Returns:
        Sorted list of definition file paths (not recursive)

    Raises:
        SourceResolutionError: If the unit directory doesn't exist
    """
    units_path = Path(source_path) / unit_dir
    if not units_path.is_dir():
        raise SourceResolutionError(
            address or str(source_path),
            f"No {unit_dir} directory found in {source_path}",
        )

    return sorted(
        entry for entry in units_path.iterdir()
        if entry.is_file() and entry.suffix in suffixes and not entry.name.startswith(".")
    )
