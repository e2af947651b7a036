"""
Test helpers for the composesync test suite.
Provides source repository builders, a fake resolver and a recording reconciler.
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import yaml
from git import Actor, Repo

from composesync.errors import ApplyError, SourceResolutionError, TeardownError
from composesync.git_integration import SourceResolver

AUTHOR = Actor("composesync tests", "tests@example.com")


def compose_doc(image: str, **extra) -> dict:
    """A minimal compose document running one container."""
    service = {"image": image}
    service.update(extra)
    return {"services": {"app": service}}


class TestHelper:
    """Helper class for creating source repositories."""

    __test__ = False

    @staticmethod
    def write_units(source_path: Path, units: Dict[str, dict], unit_dir: str = "services") -> List[str]:
        """
        Write unit definitions into a source directory.

        Args:
            source_path: Root of the source
            units: Unit filename (e.g. "web.yml") to compose document
            unit_dir: Directory inside the source holding definitions

        Returns:
            Paths of the written files, relative to source_path
        """
        units_path = Path(source_path) / unit_dir
        units_path.mkdir(parents=True, exist_ok=True)
        written = []
        for filename, document in units.items():
            (units_path / filename).write_text(yaml.safe_dump(document))
            written.append(f"{unit_dir}/{filename}")
        return written

    @staticmethod
    def create_source_repo(
        repo_path: Path,
        units: Dict[str, dict],
        unit_dir: str = "services",
        branch: str = "main",
    ) -> Repo:
        """
        Create a git repository holding unit definitions on the given branch.
        """
        repo_path = Path(repo_path)
        repo_path.mkdir(parents=True, exist_ok=True)
        repo = Repo.init(str(repo_path))

        readme = repo_path / "README.md"
        readme.write_text("# Test fleet\n")
        paths = ["README.md"] + TestHelper.write_units(repo_path, units, unit_dir)

        repo.index.add(paths)
        repo.index.commit("Initial fleet", author=AUTHOR, committer=AUTHOR)
        repo.git.branch("-M", branch)
        return repo

    @staticmethod
    def commit_units(
        repo: Repo,
        units: Optional[Dict[str, dict]] = None,
        remove: Iterable[str] = (),
        unit_dir: str = "services",
        message: str = "Update fleet",
    ) -> str:
        """
        Add, change or remove unit definitions and commit.

        Returns:
            The new commit hash
        """
        root = Path(repo.working_tree_dir)
        if units:
            repo.index.add(TestHelper.write_units(root, units, unit_dir))
        removed = [f"{unit_dir}/{filename}" for filename in remove]
        if removed:
            repo.index.remove(removed, working_tree=True)
        commit = repo.index.commit(message, author=AUTHOR, committer=AUTHOR)
        return commit.hexsha


class FakeResolver(SourceResolver):
    """
    Resolver mapping addresses to plain local directories, without git.

    Addresses listed in `failing` raise SourceResolutionError.
    """

    def __init__(self, sources_root: Path, directories: Dict[str, Path], failing: Iterable[str] = ()):
        super().__init__(sources_root)
        self.directories = dict(directories)
        self.failing: Set[str] = set(failing)
        self.resolved: List[str] = []

    async def resolve(self, address: str) -> Path:
        await asyncio.sleep(0)
        self.resolved.append(address)
        if address in self.failing:
            raise SourceResolutionError(address, "connection refused")
        return self.directories[address]


class RecordingReconciler:
    """
    Reconciler that records every call instead of running docker compose.

    Attributes:
        calls: ("apply" | "teardown", unit_id) in the order calls completed
        descriptors: Descriptor file content seen by each apply
    """

    def __init__(
        self,
        fail_apply: Iterable[str] = (),
        fail_teardown: Iterable[str] = (),
        compose_file: str = "docker-compose.yml",
    ):
        self.fail_apply = set(fail_apply)
        self.fail_teardown = set(fail_teardown)
        self.compose_file = compose_file
        self.calls: List[Tuple[str, str]] = []
        self.descriptors: Dict[str, dict] = {}

    @property
    def applied(self) -> Set[str]:
        return {uid for op, uid in self.calls if op == "apply"}

    @property
    def torn_down(self) -> Set[str]:
        return {uid for op, uid in self.calls if op == "teardown"}

    async def apply(self, unit_id: str, store: Path) -> None:
        await asyncio.sleep(0)
        self.calls.append(("apply", unit_id))
        self.descriptors[unit_id] = yaml.safe_load((Path(store) / self.compose_file).read_text())
        if unit_id in self.fail_apply:
            raise ApplyError(unit_id, "docker compose up exited with status 1")

    async def teardown(self, unit_id: str, store: Path) -> None:
        await asyncio.sleep(0)
        self.calls.append(("teardown", unit_id))
        if unit_id in self.fail_teardown:
            raise TeardownError(unit_id, "docker compose down exited with status 1")
