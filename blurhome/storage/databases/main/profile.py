#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
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
from typing import Optional

import attr

from blurhome.storage._base import SQLBaseStore
from blurhome.types import UserID


@attr.s(slots=True, frozen=True, auto_attribs=True)
class ProfileInfo:
    displayname: Optional[str]
    avatar_url: Optional[str]
    blurhash: Optional[str]


class ProfileWorkerStore(SQLBaseStore):
    async def create_profile(self, user_id: UserID) -> None:
        """
        Create a blank profile for a user.

        Args:
            user_id: The user to create the profile for.
        """
        await self.db_pool.simple_upsert(
            table="profiles",
            keyvalues={"full_user_id": user_id.to_string()},
            values={},
            desc="create_profile",
        )

    async def get_profileinfo(self, user_id: UserID) -> ProfileInfo:
        """
        Fetch the display name, avatar URL and avatar blurhash of a user.

        Users without a profile row get an empty profile.

        Args:
            user_id: The user ID to fetch the profile for.

        Returns:
            The user's profile.
        """
        profile = await self.db_pool.simple_select_one(
            table="profiles",
            keyvalues={"full_user_id": user_id.to_string()},
            retcols=("displayname", "avatar_url", "blurhash"),
            allow_none=True,
            desc="get_profileinfo",
        )
        if profile is None:
            # no match
            return ProfileInfo(None, None, None)

        return ProfileInfo(
            displayname=profile[0], avatar_url=profile[1], blurhash=profile[2]
        )

    async def get_profile_displayname(self, user_id: UserID) -> Optional[str]:
        """
        Fetch the display name of a user.

        Args:
            user_id: The user to get the display name for.

        Returns:
            The user's display name, or None if none is set.
        """
        return await self._get_profile_column(user_id, "displayname")

    async def get_profile_avatar_url(self, user_id: UserID) -> Optional[str]:
        """
        Fetch the avatar URL of a user.

        Args:
            user_id: The user to get the avatar URL for.

        Returns:
            The user's avatar URL, or None if none is set.
        """
        return await self._get_profile_column(user_id, "avatar_url")

    async def get_profile_blurhash(self, user_id: UserID) -> Optional[str]:
        """
        Fetch the MSC2448 blurhash of a user's avatar.

        Args:
            user_id: The user to get the blurhash for.

        Returns:
            The user's avatar blurhash, or None if none is set.
        """
        return await self._get_profile_column(user_id, "blurhash")

    async def _get_profile_column(self, user_id: UserID, column: str) -> Optional[str]:
        return await self.db_pool.simple_select_one_onecol(
            table="profiles",
            keyvalues={"full_user_id": user_id.to_string()},
            retcol=column,
            allow_none=True,
            desc="get_profile_" + column,
        )

    async def set_profile_displayname(
        self, user_id: UserID, new_displayname: Optional[str]
    ) -> None:
        """
        Set the display name of a user.

        Args:
            user_id: The user's ID.
            new_displayname: The new display name. If this is None, the user's display
                name is removed.
        """
        await self._set_profile_column(user_id, "displayname", new_displayname)

    async def set_profile_avatar_url(
        self, user_id: UserID, new_avatar_url: Optional[str]
    ) -> None:
        """
        Set the avatar of a user.

        Args:
            user_id: The user's ID.
            new_avatar_url: The new avatar URL. If this is None, the user's avatar is
                removed.
        """
        await self._set_profile_column(user_id, "avatar_url", new_avatar_url)

    async def set_profile_blurhash(
        self, user_id: UserID, new_blurhash: Optional[str]
    ) -> None:
        """
        Set the blurhash of a user's avatar. The avatar URL is left alone.

        Args:
            user_id: The user's ID.
            new_blurhash: The new blurhash. If this is None, the blurhash is
                removed.
        """
        await self._set_profile_column(user_id, "blurhash", new_blurhash)

    async def _set_profile_column(
        self, user_id: UserID, column: str, value: Optional[str]
    ) -> None:
        # Only the named column is written, so concurrent updates to other
        # fields of the same profile are never lost.
        await self.db_pool.simple_upsert(
            table="profiles",
            keyvalues={"full_user_id": user_id.to_string()},
            values={column: value},
            desc="set_profile_" + column,
        )
