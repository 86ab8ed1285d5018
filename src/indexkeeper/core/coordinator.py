"""Remap coordinator — Zero-downtime migration of a logical index to a new definition.

A migration never touches the live index's structure. It builds a new
concrete index next to it, fills it, and moves the alias in one atomic step:

  idle ──> copying ──> cutover ──> done
              │           │
              └──> failed <┘

  1. idle -> copying: create the target generation, install a dual-write
     registration, let pre-registration writes land, refresh the source and
     start the snapshot copy.
  2. copying -> cutover: re-apply writes whose mirror to the target failed,
     then swap the alias from source to target (compare-and-swap).
  3. cutover -> done: remove the registration, wait for dual writes still
     in flight, re-apply any mirror they missed and delete the retired source.

Until the swap, the source stays the fully consistent system of record, so
abandoning a migration (or losing the process) at any point before it only
leaves an orphaned target behind. :meth:`RemapCoordinator.recover` finds and
deletes such orphans by comparing existing generations with the alias.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from indexkeeper.config.settings import MigrationSettings
from indexkeeper.core.alias import AliasResolver
from indexkeeper.core.copier import SnapshotCopier
from indexkeeper.core.index import IndexHandle, generation_pattern
from indexkeeper.core.write_guard import WriteGuard
from indexkeeper.exceptions import AliasNotFound, ConcreteIndexMissing, IndexAlreadyExists, MigrationInProgress
from indexkeeper.models.remap import DualWriteRegistration, RemapState
from indexkeeper.transport.base.exceptions import TransportError
from indexkeeper.transport.base.transport import SearchTransport

logger = logging.getLogger(__name__)


class MigrationHandle:
    """Caller-side view of one migration.

    The coordinator task is the only writer of these attributes; callers
    read them or go through :class:`RemapCoordinator`.

    Attributes:
        id: Unique migration identifier.
        logical_name: Alias being migrated.
        state: Current :class:`RemapState`.
        source: Concrete index the alias pointed to when the migration started.
        target: Concrete index being built.
        copied: Documents copied so far by the snapshot pass.
        error: Exception that failed the migration, if any.
    """

    def __init__(self, logical_name: str, definition: dict[str, Any]) -> None:
        self.id = f"remap_{uuid.uuid4().hex[:12]}"
        self.logical_name = logical_name
        self.definition = definition
        self.state = RemapState.IDLE
        self.source: str | None = None
        self.target: str | None = None
        self.copied = 0
        self.error: BaseException | None = None
        self.started_at = time.monotonic()
        self.finished_at: float | None = None
        self._task: asyncio.Task[RemapState] | None = None

    def __repr__(self) -> str:
        return f"MigrationHandle({self.id!r}, {self.logical_name!r}, state={self.state.value})"

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def elapsed_ms(self) -> int:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return int((end - self.started_at) * 1000)

    def _record_progress(self, copied: int) -> None:
        self.copied = copied


class RemapCoordinator:
    """Drives migrations of logical indices.

    One coordinator runs at most one migration per logical name; the write
    guard passed in must be the one application writes go through.

    Args:
        transport: Engine transport.
        guard: Write guard shared with application code.
        settings: Migration tuning (batch size, retries).
        resolver: Alias resolver; built from the transport if omitted.
        copier: Snapshot copier; built from ``settings`` if omitted.
    """

    def __init__(
        self,
        transport: SearchTransport,
        guard: WriteGuard,
        settings: MigrationSettings | None = None,
        resolver: AliasResolver | None = None,
        copier: SnapshotCopier | None = None,
    ) -> None:
        self.transport = transport
        self.guard = guard
        self.settings = settings or MigrationSettings()
        self.resolver = resolver or AliasResolver(transport)
        self.copier = copier or SnapshotCopier(
            batch_size=self.settings.batch_size,
            max_retries=self.settings.max_retries,
            retry_backoff=self.settings.retry_backoff,
        )
        self._active: dict[str, MigrationHandle] = {}

    # ── Public API ───────────────────────────────────────────────────────

    def migrate(self, logical_name: str, definition: dict[str, Any]) -> MigrationHandle:
        """Start migrating ``logical_name`` to a new index definition.

        Returns immediately; the migration runs as a background task.

        Raises:
            MigrationInProgress: If this coordinator is already migrating the name.
        """
        current = self._active.get(logical_name)
        if current is not None and not current.done:
            raise MigrationInProgress(f"Migration {current.id} of '{logical_name}' is still {current.state.value}.")

        handle = MigrationHandle(logical_name, definition)
        handle._task = asyncio.create_task(self._drive(handle), name=handle.id)
        self._active[logical_name] = handle
        logger.info("Migration %s of %s started", handle.id, logical_name)
        return handle

    def status(self, handle: MigrationHandle) -> RemapState:
        return handle.state

    async def wait(self, handle: MigrationHandle) -> RemapState:
        """Wait for a migration to finish and return its final state.

        Cancelling the waiter does not cancel the migration.

        Raises:
            Exception: Whatever failed the migration.
        """
        if handle._task is None:
            return handle.state
        return await asyncio.shield(handle._task)

    async def run(self, logical_name: str, definition: dict[str, Any]) -> MigrationHandle:
        """Migrate and wait for completion."""
        handle = self.migrate(logical_name, definition)
        await self.wait(handle)
        return handle

    async def abandon(self, handle: MigrationHandle) -> bool:
        """Cancel a migration that has not reached cutover and discard its target.

        Returns:
            True if the migration was abandoned, False if it had already cut
            over (the alias has moved and the migration can only finish).
        """
        if handle.state in (RemapState.CUTOVER, RemapState.DONE):
            logger.warning("Migration %s is %s, too late to abandon", handle.id, handle.state.value)
            return False

        task = handle._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        if handle.target is not None:
            if handle.target in await self.resolver.bound_indices(handle.logical_name):
                logger.error("Migration %s target %s is bound to the alias; not deleting", handle.id, handle.target)
                return False
            await self._discard(IndexHandle(self.transport, handle.target))

        handle.state = RemapState.ABANDONED
        logger.info("Migration %s of %s abandoned", handle.id, handle.logical_name)
        return True

    async def recover(self, logical_name: str) -> list[str]:
        """Delete generations of ``logical_name`` left behind by interrupted migrations.

        Every concrete generation that is neither bound to the alias nor the
        target of a migration running in this coordinator is deleted.

        Returns:
            Names of the deleted indices.

        Raises:
            AliasNotFound: If the alias is not bound; nothing is deleted then.
        """
        bound = set(await self.resolver.bound_indices(logical_name))
        if not bound:
            raise AliasNotFound(f"Alias '{logical_name}' is not bound; refusing to delete its generations.")

        running = {
            h.target for h in self._active.values() if h.logical_name == logical_name and not h.done and h.target
        }
        pattern = generation_pattern(logical_name)
        orphans = [
            name
            for name in await self.transport.list_indices(f"{logical_name}-*")
            if pattern.match(name) and name not in bound and name not in running
        ]
        for name in orphans:
            logger.warning("Deleting orphaned generation %s of %s", name, logical_name)
            await self._discard(IndexHandle(self.transport, name))
        return orphans

    # ── State machine ────────────────────────────────────────────────────

    def _transition(self, handle: MigrationHandle, state: RemapState) -> None:
        logger.info("Migration %s of %s: %s -> %s", handle.id, handle.logical_name, handle.state.value, state.value)
        handle.state = state

    async def _drive(self, handle: MigrationHandle) -> RemapState:
        logical_name = handle.logical_name
        registration: DualWriteRegistration | None = None
        swapped = False
        try:
            source = await self.resolver.resolve(logical_name)
            target = IndexHandle.new_generation(self.transport, logical_name, previous=source)
            handle.source = source.name

            handle.target = target.name
            try:
                await target.create(handle.definition)
            except IndexAlreadyExists:
                handle.target = None
                raise

            registration = DualWriteRegistration(logical_name=logical_name, source=source.name, target=target.name)
            self.guard.register(registration)
            self._transition(handle, RemapState.COPYING)

            await self.guard.drain(logical_name)
            await source.refresh()
            await self.copier.copy(source, target, on_progress=handle._record_progress)
            await self._heal(handle, source, target)
            if self.settings.refresh_after_copy:
                await target.refresh()

            self._transition(handle, RemapState.CUTOVER)
            await self.resolver.swap(logical_name, source, target)
            swapped = True

            self._release(registration)
            await self.guard.drain(logical_name)
            await self._heal(handle, source, target)
            await self._retire(source)
            self._transition(handle, RemapState.DONE)
            return handle.state
        except asyncio.CancelledError:
            if not swapped:
                self._release(registration)
                self._transition(handle, RemapState.ABANDONED)
                if handle.target:
                    logger.warning("Migration %s interrupted; %s left orphaned", handle.id, handle.target)
            raise
        except Exception as e:
            handle.error = e
            self._release(registration)
            self._transition(handle, RemapState.FAILED)
            if swapped:
                logger.error("Migration %s failed after cutover; alias already on %s", handle.id, handle.target)
            elif handle.target:
                logger.error(
                    "Migration %s failed; %s still serves %s, %s left orphaned",
                    handle.id,
                    handle.source,
                    logical_name,
                    handle.target,
                    exc_info=True,
                )
            else:
                logger.error("Migration %s of %s failed before copying", handle.id, logical_name, exc_info=True)
            raise
        finally:
            handle.finished_at = time.monotonic()
            if self._active.get(logical_name) is handle:
                del self._active[logical_name]

    def _release(self, registration: DualWriteRegistration | None) -> None:
        if registration is not None and self.guard.registration(registration.logical_name) is registration:
            self.guard.unregister(registration.logical_name)

    async def _heal(self, handle: MigrationHandle, source: IndexHandle, target: IndexHandle) -> None:
        """Re-apply writes whose mirror to the target failed, until none are left."""
        pending = self.guard.take_unmirrored(handle.logical_name)
        while pending:
            logger.warning(
                "Migration %s: re-applying %d write(s) missed by %s", handle.id, len(pending), target.name
            )
            await self.copier.recopy(source, target, pending)
            pending = self.guard.take_unmirrored(handle.logical_name)

    async def _retire(self, source: IndexHandle) -> None:
        """Delete the retired source index, retrying transient failures.

        A failure here never reopens the migration: the alias already moved.
        """
        for attempt in range(1 + self.settings.delete_retries):
            if attempt:
                await asyncio.sleep(self.settings.retry_backoff * (2 ** (attempt - 1)))
            try:
                await source.delete()
                return
            except ConcreteIndexMissing:
                return
            except TransportError as e:
                logger.warning(
                    "Deleting retired index %s failed (attempt %d/%d): %s",
                    source.name,
                    attempt + 1,
                    1 + self.settings.delete_retries,
                    e,
                )
        logger.error("Retired index %s was not deleted; run recover to remove it", source.name)

    async def _discard(self, index: IndexHandle) -> None:
        try:
            await index.delete()
        except ConcreteIndexMissing:
            logger.debug("Index %s already gone", index.name)
