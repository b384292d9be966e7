"""Account endpoints and user profile management.

A user is identified locally by a generated id and upstream by their API key.
Adding a user validates the key against /tokeninfo and /account first; the
uniqueness and user-count checks run inside the insert transaction.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from .api_client import CacheSpec
from .errors import ApiError, NetworkFailure, UnknownUserError
from .models import User
from .schemas import AccountInfoResponse, TokenInfoResponse, validate_payload
from .utils import mask_key, now_ms

if TYPE_CHECKING:
    from .api_client import Gw2ApiClient
    from .config import TrackerConfig
    from .database import TrackerDatabase


class AccountService:
    """Token/account lookups plus add/remove/rename of tracked users."""

    def __init__(
        self,
        config: TrackerConfig,
        database: TrackerDatabase,
        api: Gw2ApiClient,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._db = database
        self._api = api
        self._logger = logger

    # ══════════════════════════════════════════════════════════
    #  Upstream account info
    # ══════════════════════════════════════════════════════════

    async def get_token_info(self, api_key: str) -> TokenInfoResponse:
        payload = await self._api.get(
            "/tokeninfo",
            credential=api_key,
            cache=CacheSpec(f"tokeninfo:{api_key}", self._config.cache.token_info_ms),
        )
        return validate_payload(TokenInfoResponse, payload, "/tokeninfo")

    async def get_account_info(self, api_key: str) -> AccountInfoResponse:
        payload = await self._api.get(
            "/account",
            credential=api_key,
            cache=CacheSpec(f"account:{api_key}", self._config.cache.account_info_ms),
        )
        return validate_payload(AccountInfoResponse, payload, "/account")

    async def validate_api_key(self, api_key: str) -> bool:
        """True if /tokeninfo accepts the key."""
        try:
            await self.get_token_info(api_key)
            return True
        except (ApiError, NetworkFailure) as e:
            self._logger.warning("API key %s failed validation: %s", mask_key(api_key), e)
            return False

    # ══════════════════════════════════════════════════════════
    #  Users
    # ══════════════════════════════════════════════════════════

    async def list_users(self) -> list[User]:
        return await self._db.list_users()

    async def get_user(self, user_id: str) -> User | None:
        return await self._db.get_user(user_id)

    async def add_user(self, name: str, api_key: str) -> User:
        """Validate the key upstream, then persist a new user.

        Raises InvalidCredentialError for a rejected key,
        DuplicateCredentialError if the key is already tracked, and
        UserLimitError past the configured maximum.
        """
        api_key = api_key.strip()
        account, token = await asyncio.gather(
            self.get_account_info(api_key),
            self.get_token_info(api_key),
        )
        user = User(
            id=uuid.uuid4().hex,
            name=name.strip() or account.name,
            api_key=api_key,
            account_name=account.name,
            account_id=account.id,
            permissions=list(token.permissions),
            created_at=now_ms(),
        )
        await self._db.add_user(user, self._config.sync.max_users)
        self._logger.info("Added user %s (%s, key %s)", user.name, user.account_name, mask_key(api_key))
        return user

    async def remove_user(self, user_id: str) -> None:
        """Delete the user, their progress in every domain and their cache entries."""
        user = await self._db.get_user(user_id)
        if user is None:
            raise UnknownUserError(f"No user with id {user_id}")
        await self._db.remove_user(user.id, user.api_key)
        self._logger.info("Removed user %s (%s)", user.name, user.id)

    async def rename_user(self, user_id: str, name: str) -> User:
        user = await self._db.get_user(user_id)
        if user is None:
            raise UnknownUserError(f"No user with id {user_id}")
        user.name = name.strip()
        await self._db.update_user(user_id, name=user.name)
        return user
