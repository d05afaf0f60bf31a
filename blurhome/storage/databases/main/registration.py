#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2017-2018 New Vector Ltd
# Copyright 2019,2020 The Matrix.org Foundation C.I.C.
# Copyright (C) 2023 New Vector, Ltd
# Copyright (C) 2026 The Blurhome Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# See the GNU Affero General Public License for more details:
# <https://www.gnu.org/licenses/agpl-3.0.html>.
#
# Originally licensed under the Apache License, Version 2.0:
# <http://www.apache.org/licenses/LICENSE-2.0>.
#
#
import logging
import sqlite3
from typing import Optional

import attr

from blurhome.api.errors import Codes, StoreError
from blurhome.storage._base import SQLBaseStore
from blurhome.storage.database import LoggingTransaction
from blurhome.types import UserID

logger = logging.getLogger(__name__)


@attr.s(frozen=True, slots=True, auto_attribs=True)
class UserInfo:
    """Holds information about a user. Result of get_user_by_id.

    Attributes:
        user_id: ID of the user.
        creation_ts: Creation timestamp of the user, in milliseconds.
        is_admin: True if the user is an admin.
        is_deactivated: True if the user has been deactivated.
    """

    user_id: UserID
    creation_ts: int
    is_admin: bool
    is_deactivated: bool


@attr.s(frozen=True, slots=True, auto_attribs=True)
class TokenLookupResult:
    """Result of looking up an access token.

    Attributes:
        user_id: The user that this token authenticates as
        token_id: The ID of the access token looked up
        device_id: The device that this token authenticates as
    """

    user_id: str
    token_id: int
    device_id: Optional[str] = None


class RegistrationWorkerStore(SQLBaseStore):
    async def get_user_by_id(self, user_id: str) -> Optional[UserInfo]:
        """Returns info about the user account, if it exists."""
        row = await self.db_pool.simple_select_one(
            table="users",
            keyvalues={"name": user_id},
            retcols=("name", "creation_ts", "admin", "deactivated"),
            allow_none=True,
            desc="get_user_by_id",
        )
        if row is None:
            return None

        return UserInfo(
            user_id=UserID.from_string(row[0]),
            creation_ts=row[1],
            is_admin=bool(row[2]),
            is_deactivated=bool(row[3]),
        )

    async def is_server_admin(self, user: UserID) -> bool:
        """Determines if a user is an admin of this homeserver.

        Args:
            user: user ID of the user to test

        Returns:
            true iff the user is a server admin, false otherwise.
        """
        res = await self.db_pool.simple_select_one_onecol(
            table="users",
            keyvalues={"name": user.to_string()},
            retcol="admin",
            allow_none=True,
            desc="is_server_admin",
        )

        return bool(res) if res else False

    async def set_server_admin(self, user: UserID, admin: bool) -> None:
        """Sets whether a user is an admin of this homeserver.

        Args:
            user: user ID of the user to test
            admin: true iff the user is to be a server admin, false otherwise.
        """
        await self.db_pool.simple_update_one(
            table="users",
            keyvalues={"name": user.to_string()},
            updatevalues={"admin": 1 if admin else 0},
            desc="set_server_admin",
        )

    async def get_user_by_access_token(self, token: str) -> Optional[TokenLookupResult]:
        """Get a user from the given access token.

        Args:
            token: The access token of a user.
        Returns:
            None, if the token did not match, otherwise a `TokenLookupResult`
        """
        row = await self.db_pool.simple_select_one(
            table="access_tokens",
            keyvalues={"token": token},
            retcols=("user_id", "id", "device_id"),
            allow_none=True,
            desc="get_user_by_access_token",
        )
        if row is None:
            return None
        return TokenLookupResult(user_id=row[0], token_id=row[1], device_id=row[2])

    async def user_get_password_hash(self, user_id: str) -> Optional[str]:
        """Get the password hash of a user, or None if they have no password
        (or do not exist)."""
        return await self.db_pool.simple_select_one_onecol(
            table="users",
            keyvalues={"name": user_id},
            retcol="password_hash",
            allow_none=True,
            desc="user_get_password_hash",
        )


class RegistrationStore(RegistrationWorkerStore):
    async def add_access_token_to_user(
        self, user_id: str, token: str, device_id: Optional[str] = None
    ) -> int:
        """Adds an access token for the given user.

        Args:
            user_id: The user ID.
            token: The new access token to add.
            device_id: ID of the device to associate with the access token.

        Returns:
            The token ID
        """

        def _add_access_token_to_user_txn(txn: LoggingTransaction) -> int:
            txn.execute(
                "INSERT INTO access_tokens (user_id, device_id, token, last_validated)"
                " VALUES (?, ?, ?, ?)",
                (user_id, device_id, token, self._clock.time_msec()),
            )
            assert txn.lastrowid is not None
            return txn.lastrowid

        return await self.db_pool.runInteraction(
            "add_access_token_to_user", _add_access_token_to_user_txn
        )

    async def register_user(
        self,
        user_id: str,
        password_hash: Optional[str] = None,
        create_profile_with_displayname: Optional[str] = None,
        admin: bool = False,
    ) -> None:
        """Attempts to register an account.

        Args:
            user_id: The desired user ID to register.
            password_hash: Optional. The password hash for this user.
            create_profile_with_displayname: Optionally create a profile for
                the user, setting their displayname to the given value
            admin: is an admin user?

        Raises:
            StoreError if the user_id could not be registered.
        """
        await self.db_pool.runInteraction(
            "register_user",
            self._register_user,
            user_id,
            password_hash,
            create_profile_with_displayname,
            admin,
        )

    def _register_user(
        self,
        txn: LoggingTransaction,
        user_id: str,
        password_hash: Optional[str],
        create_profile_with_displayname: Optional[str],
        admin: bool,
    ) -> None:
        now = self._clock.time_msec()

        try:
            self.db_pool.simple_insert_txn(
                txn,
                "users",
                values={
                    "name": user_id,
                    "password_hash": password_hash,
                    "creation_ts": now,
                    "admin": 1 if admin else 0,
                },
            )
        except sqlite3.IntegrityError:
            raise StoreError(400, "User ID already taken.", errcode=Codes.USER_IN_USE)

        if create_profile_with_displayname:
            self.db_pool.simple_upsert_txn(
                txn,
                "profiles",
                keyvalues={"full_user_id": user_id},
                values={"displayname": create_profile_with_displayname},
            )
