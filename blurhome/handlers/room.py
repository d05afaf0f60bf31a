#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2019-2021 The Matrix.org Foundation C.I.C.
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

"""Contains functions for performing actions on rooms."""

import logging
from typing import TYPE_CHECKING, List, Optional

from blurhome.api.constants import (
    EventTypes,
    JoinRules,
    Membership,
    PresetName,
    ProfileFields,
)
from blurhome.api.errors import AuthError, Codes, MatrixError, NotFoundError
from blurhome.types import JsonDict, Requester, RoomID, UserID
from blurhome.util.async_helpers import Linearizer
from blurhome.util.stringutils import random_string

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

DEFAULT_ROOM_VERSION = "10"

_PRESET_JOIN_RULES = {
    PresetName.PRIVATE_CHAT: JoinRules.INVITE,
    PresetName.TRUSTED_PRIVATE_CHAT: JoinRules.INVITE,
    PresetName.PUBLIC_CHAT: JoinRules.PUBLIC,
}


class RoomCreationHandler:
    def __init__(self, hs: "HomeServer"):
        self.store = hs.get_datastores().main
        self.hs = hs
        self.clock = hs.get_clock()
        self.event_creation_handler = hs.get_event_creation_handler()
        self.room_member_handler = hs.get_room_member_handler()

    async def create_room(self, requester: Requester, config: JsonDict) -> str:
        """Creates a new room.

        Args:
            requester: The user who requested the room creation.
            config: A dict of configuration options. This will be the body of
                a /createRoom request; see
                https://spec.matrix.org/latest/client-server-api/#post_matrixclientv3createroom

        Returns:
            The new room ID.

        Raises:
            MatrixError if the room ID couldn't be stored, or something went
            horribly wrong.
        """
        user_id = requester.user.to_string()

        preset = config.get("preset", PresetName.PRIVATE_CHAT)
        join_rule = _PRESET_JOIN_RULES.get(preset)
        if join_rule is None:
            raise MatrixError(400, "Invalid preset", Codes.BAD_JSON)

        invite_list = config.get("invite", [])
        if not isinstance(invite_list, list):
            raise MatrixError(400, "'invite' must be a list", Codes.BAD_JSON)
        for i in invite_list:
            if not isinstance(i, str) or not UserID.is_valid(i):
                raise MatrixError(
                    400, "Invalid user_id: %r" % (i,), Codes.INVALID_PARAM
                )

        is_direct = config.get("is_direct", False)
        if not isinstance(is_direct, bool):
            raise MatrixError(400, "'is_direct' must be a boolean", Codes.BAD_JSON)

        name = config.get("name")
        if name is not None and not isinstance(name, str):
            raise MatrixError(400, "'name' must be a string", Codes.BAD_JSON)

        room_id = RoomID(random_string(18), self.hs.hostname).to_string()
        await self.store.store_room(
            room_id=room_id,
            room_creator_user_id=user_id,
            join_rule=join_rule,
            is_direct=is_direct,
        )

        await self._send_state(
            requester,
            room_id,
            EventTypes.Create,
            {"creator": user_id, "room_version": DEFAULT_ROOM_VERSION},
        )

        # The creator joins unconditionally.
        await self.room_member_handler.update_membership(
            requester, requester.user, room_id, Membership.JOIN, is_creator=True
        )

        await self._send_state(
            requester, room_id, EventTypes.JoinRules, {"join_rule": join_rule}
        )

        if name is not None:
            await self._send_state(requester, room_id, EventTypes.Name, {"name": name})

        for invitee in invite_list:
            content: JsonDict = {}
            if is_direct:
                content["is_direct"] = True

            await self.room_member_handler.update_membership(
                requester,
                UserID.from_string(invitee),
                room_id,
                Membership.INVITE,
                content=content,
            )

        logger.info("Created room %s for %s", room_id, user_id)
        return room_id

    async def _send_state(
        self, requester: Requester, room_id: str, event_type: str, content: JsonDict
    ) -> None:
        await self.event_creation_handler.create_and_send_event(
            requester,
            {
                "type": event_type,
                "room_id": room_id,
                "state_key": "",
                "content": content,
            },
        )


class RoomMemberHandler:
    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.store = hs.get_datastores().main
        self.auth = hs.get_auth()
        self.event_creation_handler = hs.get_event_creation_handler()

        self.member_linearizer: Linearizer = Linearizer(name="member")

    async def update_membership(
        self,
        requester: Requester,
        target: UserID,
        room_id: str,
        action: str,
        txn_id: Optional[str] = None,
        content: Optional[JsonDict] = None,
        is_creator: bool = False,
    ) -> str:
        """Update a user's membership in a room.

        Args:
            requester: The user who is performing the update.
            target: The user whose membership is being updated.
            room_id: The room ID whose membership is being updated.
            action: The membership change, one of "join", "invite" or "leave".
            txn_id: The transaction ID, if given.
            content: Extra content to put in the membership event.
            is_creator: Whether this is the room creator joining a new room.

        Returns:
            The event ID of the membership event.

        Raises:
            NotFoundError if the room is unknown.
            AuthError if the membership change is not allowed.
        """
        async with self.member_linearizer.queue((room_id, target.to_string())):
            return await self._update_membership(
                requester,
                target,
                room_id,
                action,
                txn_id=txn_id,
                content=dict(content or {}),
                is_creator=is_creator,
            )

    async def _update_membership(
        self,
        requester: Requester,
        target: UserID,
        room_id: str,
        action: str,
        txn_id: Optional[str],
        content: JsonDict,
        is_creator: bool,
    ) -> str:
        room = await self.store.get_room(room_id)
        if room is None:
            raise NotFoundError("Unknown room")

        target_id = target.to_string()
        (
            current_membership,
            current_event_id,
        ) = await self.store.get_local_current_membership_for_user_in_room(
            target_id, room_id
        )

        if action == Membership.JOIN:
            if target != requester.user:
                raise AuthError(403, "Cannot force another user to join.")

            if current_membership == Membership.JOIN and current_event_id is not None:
                return current_event_id

            if not is_creator and not (
                current_membership == Membership.INVITE
                or room.join_rule == JoinRules.PUBLIC
            ):
                raise AuthError(403, "You are not invited to this room.")

            content.update(await self._get_profile_for_membership(target))

        elif action == Membership.INVITE:
            await self.auth.check_user_in_room(room_id, requester)

            if not self.hs.is_mine(target):
                raise MatrixError(
                    400,
                    "Inviting users on other servers is not supported",
                )

            if await self.store.get_user_by_id(target_id) is None:
                raise NotFoundError("Unknown user %s" % (target_id,))

            if current_membership == Membership.JOIN:
                raise AuthError(403, "%s is already in the room." % (target_id,))

        elif action == Membership.LEAVE:
            if target != requester.user:
                raise AuthError(403, "Cannot make another user leave.")

            if current_membership not in (Membership.JOIN, Membership.INVITE):
                raise AuthError(403, "User %s not in room %s" % (target_id, room_id))

        else:
            raise MatrixError(400, "Unknown membership %r" % (action,))

        content["membership"] = action
        event = await self.event_creation_handler.create_and_send_event(
            requester,
            {
                "type": EventTypes.Member,
                "room_id": room_id,
                "state_key": target_id,
                "content": content,
            },
            txn_id=txn_id,
        )

        return event.event_id

    async def _get_profile_for_membership(self, target: UserID) -> JsonDict:
        profile = await self.store.get_profileinfo(target)
        ret: JsonDict = {}
        if profile.displayname is not None:
            ret[ProfileFields.DISPLAYNAME] = profile.displayname
        if profile.avatar_url is not None:
            ret[ProfileFields.AVATAR_URL] = profile.avatar_url
        return ret

    async def get_joined_members(self, requester: Requester, room_id: str) -> List[str]:
        """Get the user ids of the users joined to a room. The requester must
        be joined themselves."""
        await self.auth.check_user_in_room(room_id, requester)
        return await self.store.get_users_in_room(room_id)
