"""
Staged reconciliation engine for composesync.

A run:
    1. reset the snapshot directories (current becomes previous, empty staging)
    2. generate staging from every source, concurrently
    3. bring up every unit in staging, concurrently
    4. tear down units of previous (and pinned units) missing from staging
    5. promote staging to current

Failures of a single source or unit are logged and recorded in the run
report without stopping the others. Only a failed promotion, or a staging
directory that can't be created, aborts the run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from composesync.compose import ComposeReconciler
from composesync.config import Config
from composesync.errors import StateTransitionError
from composesync.git_integration import Source, SourceResolver, list_unit_definitions
from composesync.identity import unit_id, unit_store_path
from composesync.loader import DescriptorLoader, UnitDefinition
from composesync.lock import RunLock
from composesync.state_manager import SnapshotStore


@dataclass
class SourceOutcome:
    """Result of generating one source into staging."""
    address: str
    source_id: str
    units: List[str] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class RunReport:
    """What happened during one reconciliation run."""
    sources: List[SourceOutcome] = field(default_factory=list)
    applied: List[str] = field(default_factory=list)
    apply_failed: Dict[str, str] = field(default_factory=dict)
    torn_down: List[str] = field(default_factory=list)
    teardown_failed: Dict[str, str] = field(default_factory=dict)
    pinned: List[str] = field(default_factory=list)
    state_errors: List[str] = field(default_factory=list)
    promoted: bool = False

    @property
    def failed_sources(self) -> List[SourceOutcome]:
        return [outcome for outcome in self.sources if not outcome.ok]

    @property
    def success(self) -> bool:
        """Apply and teardown failures don't affect the outcome of a run."""
        return self.promoted and not self.failed_sources


def _raise_interrupts(results: Sequence[Any]) -> None:
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result


class Engine:
    """
    Orchestrates one reconciliation run over all declared sources.
    """

    def __init__(
        self,
        config: Config,
        resolver: Optional[SourceResolver] = None,
        loader: Optional[DescriptorLoader] = None,
        reconciler=None,
        store: Optional[SnapshotStore] = None,
        debug: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            config: Run configuration
            resolver: Source resolver (default: GitPython clone-or-update)
            loader: Descriptor loader (default: YAML loader)
            reconciler: Object with async apply(unit_id, store) and
                teardown(unit_id, store) (default: docker compose)
            store: Snapshot store (default: built from config)
            debug: Log stack traces of isolated failures
        """
        self.config = config
        self.resolver = resolver or SourceResolver(config.sources_path, config.branch)
        self.loader = loader or DescriptorLoader()
        self.reconciler = reconciler or ComposeReconciler(
            compose_file=config.compose_file,
            timeout=config.command_timeout,
            pull=config.pull,
        )
        self.store = store or SnapshotStore(config)
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _log_failure(self, message: str, error: BaseException) -> None:
        self.logger.error(f"{message}: {error}", exc_info=error if self.debug else None)

    async def run(self) -> RunReport:
        """
        Execute one full run while holding the run lock.

        Returns:
            RunReport describing the run

        Raises:
            LockError: If another run is in progress
            StateTransitionError: If staging can't be created or promoted
        """
        self.config.ensure_directories()
        with RunLock(self.config.lock_path):
            return await self._run()

    async def _run(self) -> RunReport:
        report = RunReport()

        self.logger.info("Resetting snapshot state")
        errors = await asyncio.to_thread(self.store.reset)
        report.state_errors.extend(str(e) for e in errors)

        self.logger.info(f"Generating staging snapshot from {len(self.config.sources)} source(s)")
        report.sources = await self.generate()
        for outcome in report.failed_sources:
            for error in outcome.errors:
                self._log_failure(f"Source {outcome.address} failed", error)

        await self.apply_all(report)
        await self.teardown_removed(report)

        self.logger.info(
            f"Applied {len(report.applied)} unit(s), {len(report.apply_failed)} failed; "
            f"tore down {len(report.torn_down)} unit(s), {len(report.teardown_failed)} failed"
        )

        await asyncio.to_thread(self.store.promote)
        report.promoted = True

        if report.failed_sources:
            self.logger.error(
                f"Run finished with {len(report.failed_sources)} failed source(s)"
            )
        else:
            self.logger.info("Run finished successfully")
        return report

    async def generate(self) -> List[SourceOutcome]:
        """
        Populate staging from every declared source.

        Returns:
            One outcome per source, in declaration order
        """
        outcomes = [
            SourceOutcome(address=address, source_id=self.resolver.source(address).id)
            for address in self.config.sources
        ]
        results = await asyncio.gather(
            *(self._generate_source(outcome) for outcome in outcomes),
            return_exceptions=True,
        )
        _raise_interrupts(results)
        for outcome, result in zip(outcomes, results):
            if isinstance(result, Exception):
                outcome.errors.append(result)
        return outcomes

    async def _definitions(self, address: str) -> List[UnitDefinition]:
        source: Source = self.resolver.source(address)
        path = await self.resolver.resolve(address)
        paths = await asyncio.to_thread(
            list_unit_definitions,
            path,
            self.config.unit_dir,
            self.config.unit_suffixes,
            address,
        )
        return [UnitDefinition.from_path(p, source.id) for p in paths]

    async def _generate_source(self, outcome: SourceOutcome) -> None:
        definitions = await self._definitions(outcome.address)
        self.logger.debug(f"Source {outcome.address} declares {len(definitions)} unit(s)")

        results = await asyncio.gather(
            *(self._generate_unit(definition) for definition in definitions),
            return_exceptions=True,
        )
        _raise_interrupts(results)
        for result in results:
            if isinstance(result, Exception):
                outcome.errors.append(result)
            else:
                outcome.units.append(result)

    async def _generate_unit(self, definition: UnitDefinition) -> str:
        descriptor = await asyncio.to_thread(self.loader.load, definition.path)
        uid = unit_id(definition.name, definition.source_id)
        await asyncio.to_thread(self.store.write_unit, uid, descriptor, str(definition.path))
        self.logger.debug(f"Staged unit {uid}")
        return uid

    async def list_units(self) -> List[SourceOutcome]:
        """
        Resolve every source and list the unit ids it would produce, without staging.

        Resolving updates the shared source clones, so the run lock is held.

        Raises:
            LockError: If a run is in progress
        """
        self.config.ensure_directories()
        with RunLock(self.config.lock_path):
            return await self._list_units()

    async def _list_units(self) -> List[SourceOutcome]:
        outcomes = []
        for address in self.config.sources:
            outcome = SourceOutcome(address=address, source_id=self.resolver.source(address).id)
            try:
                definitions = await self._definitions(address)
            except Exception as e:
                outcome.errors.append(e)
            else:
                outcome.units = [unit_id(d.name, d.source_id) for d in definitions]
            outcomes.append(outcome)
        return outcomes

    async def apply_all(self, report: RunReport) -> None:
        """Bring up every unit in staging, whether new, changed or unchanged."""
        staged = sorted(self.store.staged_units())
        results = await asyncio.gather(
            *(
                self.reconciler.apply(uid, unit_store_path(self.store.staging_path, uid))
                for uid in staged
            ),
            return_exceptions=True,
        )
        _raise_interrupts(results)
        for uid, result in zip(staged, results):
            if isinstance(result, Exception):
                self._log_failure(f"Failed to bring up {uid}", result)
                report.apply_failed[uid] = str(result)
            else:
                report.applied.append(uid)

    async def teardown_removed(self, report: RunReport) -> None:
        """
        Tear down units that are no longer declared.

        Units whose teardown fails are pinned so the next run retries them.
        """
        for uid in sorted(self.store.pinned_units() & self.store.staged_units()):
            self.logger.info(f"Unit {uid} is declared again, dropping its pending teardown")
            self._forget(uid)

        candidates = self.store.removal_candidates()
        removed = sorted(candidates)
        results = await asyncio.gather(
            *(self.reconciler.teardown(uid, candidates[uid]) for uid in removed),
            return_exceptions=True,
        )
        _raise_interrupts(results)
        for uid, result in zip(removed, results):
            if isinstance(result, Exception):
                self._log_failure(f"Failed to tear down {uid}", result)
                report.teardown_failed[uid] = str(result)
                self._pin(uid, candidates[uid], report)
            else:
                report.torn_down.append(uid)
                self._forget(uid)

    def _pin(self, uid: str, store: Path, report: RunReport) -> None:
        try:
            self.store.pin(uid, store)
        except StateTransitionError as e:
            self._log_failure(f"Unit {uid} will not be retried", e)
            report.state_errors.append(str(e))
        else:
            report.pinned.append(uid)

    def _forget(self, uid: str) -> None:
        try:
            self.store.unpin(uid)
        except StateTransitionError as e:
            self.logger.warning(str(e))
