"""Remap models — Migration state and dual-write registrations."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RemapState(str, Enum):
    """Lifecycle of a single migration.

    ``idle -> copying -> cutover -> done``; ``failed`` is reachable from
    ``copying`` and ``cutover``. ``abandoned`` is reported once a migration
    has been cancelled before cutover and its target discarded.
    """

    IDLE = "idle"
    COPYING = "copying"
    CUTOVER = "cutover"
    DONE = "done"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (RemapState.DONE, RemapState.FAILED, RemapState.ABANDONED)


class DualWriteRegistration(BaseModel):
    """Source and target concrete indices receiving every write during a copy."""

    model_config = ConfigDict(frozen=True)

    logical_name: str = Field(description="Alias the application writes through")
    source: str = Field(description="Concrete index currently bound to the alias (system of record)")
    target: str = Field(description="Concrete index being populated")
