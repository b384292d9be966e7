"""Application state stores — the consumer-facing view over the services.

Stores hold the last loaded data, a per-resource state and the last error
message. A failed refresh keeps whatever was loaded before. The error stays
until the next success or the next failure replaces it. Stores never retry;
retrying is the API client's job.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Generic, TypeVar

from .errors import TrackerError

if TYPE_CHECKING:
    from .account_service import AccountService
    from .catalog_service import CatalogService, SyncReport
    from .models import User

CatalogT = TypeVar("CatalogT")
ProgressT = TypeVar("ProgressT")


class ResourceState(str, enum.Enum):
    EMPTY = "empty"
    FETCHING = "fetching"
    POPULATED = "populated"


class CatalogStore(Generic[CatalogT, ProgressT]):
    """Catalog items plus per-user progress for one domain."""

    def __init__(self, service: CatalogService[CatalogT, ProgressT], logger: logging.Logger) -> None:
        self._service = service
        self._logger = logger
        self.items: list[CatalogT] = []
        self.progress: dict[str, list[ProgressT]] = {}
        self.state = ResourceState.EMPTY
        self.is_syncing = False
        self.error: str | None = None
        self.last_sync: SyncReport | None = None

    @property
    def service(self) -> CatalogService[CatalogT, ProgressT]:
        return self._service

    def _fail(self, message: str, exc: Exception) -> None:
        self.error = f"{message}: {exc}"
        self._logger.error("%s: %s", message, exc)

    async def load(self, force_refresh: bool = False) -> None:
        """Empty/Populated → Fetching → Populated; on failure keep the prior items."""
        self.state = ResourceState.FETCHING
        try:
            items = await self._service.get_all(force_refresh)
        except TrackerError as e:
            self.state = ResourceState.POPULATED if self.items else ResourceState.EMPTY
            self._fail(f"Failed to load {self._service.domain}", e)
            return
        self.items = items
        self.state = ResourceState.POPULATED
        self.error = None

    async def load_user_progress(self, user: User, force_refresh: bool = False) -> None:
        try:
            rows = await self._service.get_user_progress(user.id, user.api_key, force_refresh)
        except TrackerError as e:
            self._fail(f"Failed to load {self._service.domain} for {user.name}", e)
            return
        self.progress[user.id] = rows
        self.error = None

    async def sync_all_users(self) -> SyncReport:
        """Sync every user, then reload each user's rows from the local store."""
        self.is_syncing = True
        try:
            report = await self._service.sync_all_users()
            for user_id in report.succeeded + list(report.failed):
                self.progress[user_id] = await self._service.list_progress(user_id)
        except TrackerError as e:
            self._fail(f"Failed to sync {self._service.domain}", e)
            raise
        finally:
            self.is_syncing = False

        self.last_sync = report
        if report.failed:
            self.error = f"{self._service.domain} sync failed for {len(report.failed)} user(s)"
        else:
            self.error = None
        return report

    def forget_user(self, user_id: str) -> None:
        self.progress.pop(user_id, None)


class UserStore:
    """Tracked users and the current selection."""

    def __init__(self, accounts: AccountService, logger: logging.Logger) -> None:
        self._accounts = accounts
        self._logger = logger
        self.users: list[User] = []
        self.selected_user_ids: list[str] = []
        self.is_loading = False
        self.error: str | None = None

    async def load_users(self) -> None:
        self.is_loading = True
        try:
            self.users = await self._accounts.list_users()
            self.selected_user_ids = [u.id for u in self.users]
            self.error = None
        except TrackerError as e:
            self.error = f"Failed to load users: {e}"
            self._logger.error("%s", self.error)
        finally:
            self.is_loading = False

    async def add_user(self, name: str, api_key: str) -> User:
        """Add and select a user. Errors are recorded and re-raised."""
        self.is_loading = True
        try:
            user = await self._accounts.add_user(name, api_key)
        except TrackerError as e:
            self.error = str(e)
            raise
        finally:
            self.is_loading = False
        self.users.append(user)
        self.selected_user_ids.append(user.id)
        self.error = None
        return user

    async def remove_user(self, user_id: str) -> None:
        self.is_loading = True
        try:
            await self._accounts.remove_user(user_id)
        except TrackerError as e:
            self.error = str(e)
            raise
        finally:
            self.is_loading = False
        self.users = [u for u in self.users if u.id != user_id]
        self.deselect_user(user_id)
        self.error = None

    async def rename_user(self, user_id: str, name: str) -> None:
        try:
            updated = await self._accounts.rename_user(user_id, name)
        except TrackerError as e:
            self.error = str(e)
            raise
        self.users = [updated if u.id == user_id else u for u in self.users]
        self.error = None

    # ── Selection ────────────────────────────────────────────

    def select_user(self, user_id: str) -> None:
        if user_id not in self.selected_user_ids:
            self.selected_user_ids.append(user_id)

    def deselect_user(self, user_id: str) -> None:
        self.selected_user_ids = [uid for uid in self.selected_user_ids if uid != user_id]

    def select_all_users(self) -> None:
        self.selected_user_ids = [u.id for u in self.users]

    def clear_selection(self) -> None:
        self.selected_user_ids = []

    @property
    def selected_users(self) -> list[User]:
        return [u for u in self.users if u.id in self.selected_user_ids]
