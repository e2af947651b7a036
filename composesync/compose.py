"""
docker compose facade for composesync.
Runs compose lifecycle commands against a unit's persisted descriptor.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence

from composesync.errors import ApplyError, CommandError, TeardownError
from composesync.identity import project_name


@dataclass(frozen=True)
class ExecutionContext:
    """
    Where and how an external command runs.

    Passed explicitly to every command so concurrent calls never share a
    working directory.
    """
    cwd: Path
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None


async def run_command(command: Sequence[str], context: ExecutionContext) -> str:
    """
    Run an external command and capture its output.

    Args:
        command: Argument vector
        context: Working directory, extra environment and timeout

    Returns:
        Captured standard output

    Raises:
        CommandError: If the command can't be started, exits non-zero or
            exceeds the context timeout (the process is killed)
    """
    env = dict(os.environ)
    env.update(context.env)

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(context.cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(command, None, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=context.timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise CommandError(command, None, f"no exit after {context.timeout}s")

    if process.returncode != 0:
        raise CommandError(command, process.returncode, stderr.decode(errors="replace"))
    return stdout.decode(errors="replace")


class ComposeReconciler:
    """
    Brings units up and down with `docker compose`.

    Each unit runs as its own compose project named after the unit id, from
    the directory holding its persisted descriptor.
    """

    def __init__(
        self,
        compose_file: str = "docker-compose.yml",
        timeout: Optional[float] = None,
        pull: bool = True,
        docker: str = "docker",
    ):
        """
        Initialize the reconciler.

        Args:
            compose_file: Descriptor filename inside a unit store
            timeout: Per-command timeout in seconds
            pull: Pull images before bringing a unit up
            docker: docker executable
        """
        self.compose_file = compose_file
        self.timeout = timeout
        self.pull = pull
        self.docker = docker
        self.logger = logging.getLogger(__name__)

    def _compose(self, unit_id: str, *args: str) -> list:
        return [self.docker, "compose", "-p", project_name(unit_id), "-f", self.compose_file, *args]

    def _context(self, store: Path) -> ExecutionContext:
        return ExecutionContext(cwd=Path(store), timeout=self.timeout)

    async def apply(self, unit_id: str, store: Path) -> None:
        """
        Ensure a unit runs with the descriptor persisted in its store.

        Raises:
            ApplyError: If any compose command fails
        """
        context = self._context(store)
        try:
            if self.pull:
                await run_command(self._compose(unit_id, "pull"), context)
            await run_command(self._compose(unit_id, "up", "-d", "--remove-orphans"), context)
        except CommandError as e:
            raise ApplyError(unit_id, str(e)) from e
        self.logger.info(f"Unit {unit_id} is up")

    async def teardown(self, unit_id: str, store: Path) -> None:
        """
        Stop and remove a unit.

        Raises:
            TeardownError: If `docker compose down` fails
        """
        try:
            await run_command(self._compose(unit_id, "down", "--remove-orphans"), self._context(store))
        except CommandError as e:
            raise TeardownError(unit_id, str(e)) from e
        self.logger.info(f"Unit {unit_id} torn down")
