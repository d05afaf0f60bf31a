#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2019 The Matrix.org Foundation C.I.C.
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
from typing import List, Optional, Tuple

import attr

from blurhome.api.constants import Membership
from blurhome.api.errors import StoreError
from blurhome.storage._base import SQLBaseStore

logger = logging.getLogger(__name__)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class RoomInfo:
    room_id: str
    creator: str
    join_rule: str
    is_direct: bool


class RoomStore(SQLBaseStore):
    async def store_room(
        self,
        room_id: str,
        room_creator_user_id: str,
        join_rule: str,
        is_direct: bool = False,
    ) -> None:
        """Stores a room.

        Args:
            room_id: The desired room ID.
            room_creator_user_id: The user ID of the room creator.
            join_rule: The initial join rule of the room.
            is_direct: whether the room was created as a direct chat.
        Raises:
            StoreError if the room could not be stored.
        """
        try:
            await self.db_pool.simple_insert(
                "rooms",
                {
                    "room_id": room_id,
                    "creator": room_creator_user_id,
                    "join_rule": join_rule,
                    "is_direct": 1 if is_direct else 0,
                    "created_ts": self._clock.time_msec(),
                },
                desc="store_room",
            )
        except sqlite3.IntegrityError:
            raise StoreError(500, "Problem creating room.")

    async def get_room(self, room_id: str) -> Optional[RoomInfo]:
        """Retrieve a room.

        Args:
            room_id: The ID of the room to retrieve.
        Returns:
            The room's details, or None if the room is unknown.
        """
        row = await self.db_pool.simple_select_one(
            table="rooms",
            keyvalues={"room_id": room_id},
            retcols=("creator", "join_rule", "is_direct"),
            allow_none=True,
            desc="get_room",
        )
        if row is None:
            return None
        return RoomInfo(
            room_id=room_id, creator=row[0], join_rule=row[1], is_direct=bool(row[2])
        )

    async def get_local_current_membership_for_user_in_room(
        self, user_id: str, room_id: str
    ) -> Tuple[Optional[str], Optional[str]]:
        """Retrieve the current local membership state and event ID for a user in a room.

        Args:
            user_id: The ID of the user.
            room_id: The ID of the room.

        Returns:
            A tuple of (membership_type, event_id). Both will be None if a
                room_id/user_id pair is not found.
        """
        row = await self.db_pool.simple_select_one(
            "local_current_membership",
            {"room_id": room_id, "user_id": user_id},
            ("membership", "event_id"),
            allow_none=True,
            desc="get_local_current_membership_for_user_in_room",
        )
        if not row:
            return None, None

        return row[0], row[1]

    async def get_users_in_room(self, room_id: str) -> List[str]:
        """Returns a list of users in the room."""
        rows = await self.db_pool.simple_select_list(
            "local_current_membership",
            keyvalues={"room_id": room_id, "membership": Membership.JOIN},
            retcols=("user_id",),
            desc="get_users_in_room",
        )
        return sorted(row[0] for row in rows)
