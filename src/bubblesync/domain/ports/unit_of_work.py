"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from bubblesync.domain.entities import EntityKind

if TYPE_CHECKING:
    from types import TracebackType

    from bubblesync.domain.ports.persistence import (
        EntityRepository,
        SyncActivityRepository,
        SyncCursorRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection."""

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class SyncRepositories(RepositoryCollection):
    """Repositories needed by sync, relink, file migration and checkpoints."""

    invoices: EntityRepository
    invoice_items: EntityRepository
    customers: EntityRepository
    agents: EntityRepository
    payments: EntityRepository
    registrations: EntityRepository
    activity: SyncActivityRepository
    cursors: SyncCursorRepository

    def for_kind(self, kind: EntityKind) -> EntityRepository:
        match kind:
            case EntityKind.INVOICE:
                return self.invoices
            case EntityKind.INVOICE_ITEM:
                return self.invoice_items
            case EntityKind.CUSTOMER:
                return self.customers
            case EntityKind.AGENT:
                return self.agents
            case EntityKind.PAYMENT:
                return self.payments
            case EntityKind.SEDA_REGISTRATION:
                return self.registrations


type SyncUnitOfWork = UnitOfWork[SyncRepositories]
