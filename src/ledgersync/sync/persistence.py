"""Contracts of the collaborators a sync pass reports to.

The engine does not store anything itself. Applications pass objects
satisfying these protocols to :class:`~ledgersync.sync.orchestrator.SyncOrchestrator`.
"""

from typing import Protocol

from ..models import Account, Profile, SyncInfo, Transaction


class SyncPersistence(Protocol):
    """Stores the result of one sync pass, replacing the profile's previous data."""

    async def save(
        self,
        profile: Profile,
        accounts: list[Account],
        transactions: list[Transaction],
    ) -> None: ...


class AppStateService(Protocol):
    """Application-wide state updated after a successful sync."""

    def update_sync_info(self, info: SyncInfo) -> None: ...

    def signal_data_changed(self) -> None: ...
