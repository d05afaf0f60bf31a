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

"""This module contains REST servlets to do with rooms: /rooms/<paths>"""

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Optional, Tuple

from blurhome.api.constants import Direction, Membership
from blurhome.api.errors import Codes, MatrixError
from blurhome.events import serialize_event
from blurhome.handlers.message import PaginationConfig, StreamToken
from blurhome.http.server import HttpServer
from blurhome.http.servlet import (
    RestServlet,
    assert_params_in_dict,
    parse_integer,
    parse_json_object_from_request,
    parse_string,
)
from blurhome.http.site import BlurhomeRequest
from blurhome.rest.client._base import client_patterns
from blurhome.types import JsonDict, RoomID, UserID

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


def _validate_room_id(room_id: str) -> None:
    if not RoomID.is_valid(room_id):
        raise MatrixError(
            HTTPStatus.BAD_REQUEST,
            "%r is not a valid room ID" % (room_id,),
            Codes.INVALID_PARAM,
        )


class RoomCreateRestServlet(RestServlet):
    PATTERNS = client_patterns("/createRoom", v1=True)

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self._room_creation_handler = hs.get_room_creation_handler()
        self.auth = hs.get_auth()

    async def on_POST(self, request: BlurhomeRequest) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)

        room_id = await self._room_creation_handler.create_room(
            requester, parse_json_object_from_request(request, allow_empty_body=True)
        )

        return 200, {"room_id": room_id}


class JoinRoomAliasServlet(RestServlet):
    PATTERNS = client_patterns("/join/(?P<room_identifier>[^/]*)", v1=True)

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.room_member_handler = hs.get_room_member_handler()
        self.auth = hs.get_auth()

    async def on_POST(
        self,
        request: BlurhomeRequest,
        room_identifier: str,
    ) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)

        # Room aliases are not supported, only room IDs.
        _validate_room_id(room_identifier)

        await self.room_member_handler.update_membership(
            requester=requester,
            target=requester.user,
            room_id=room_identifier,
            action=Membership.JOIN,
        )

        return 200, {"room_id": room_identifier}


class RoomMembershipRestServlet(RestServlet):
    PATTERNS = client_patterns(
        "/rooms/(?P<room_id>[^/]*)/(?P<membership_action>join|invite|leave)", v1=True
    )

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.room_member_handler = hs.get_room_member_handler()
        self.auth = hs.get_auth()

    async def on_POST(
        self,
        request: BlurhomeRequest,
        room_id: str,
        membership_action: str,
    ) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)
        _validate_room_id(room_id)

        content = parse_json_object_from_request(request, allow_empty_body=True)

        if membership_action == Membership.INVITE:
            assert_params_in_dict(content, ["user_id"])
            if not isinstance(content["user_id"], str) or not UserID.is_valid(
                content["user_id"]
            ):
                raise MatrixError(
                    HTTPStatus.BAD_REQUEST, "Invalid user id", Codes.INVALID_PARAM
                )
            target = UserID.from_string(content["user_id"])
        else:
            target = requester.user

        event_content = None
        if "reason" in content:
            event_content = {"reason": content["reason"]}

        await self.room_member_handler.update_membership(
            requester=requester,
            target=target,
            room_id=room_id,
            action=membership_action,
            content=event_content,
        )

        return_value: JsonDict = {}
        if membership_action == Membership.JOIN:
            return_value["room_id"] = room_id

        return 200, return_value


class RoomSendEventRestServlet(RestServlet):
    PATTERNS = client_patterns(
        "/rooms/(?P<room_id>[^/]*)/send/(?P<event_type>[^/]*)(/(?P<txn_id>[^/]*))?",
        v1=True,
    )

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.event_creation_handler = hs.get_event_creation_handler()
        self.auth = hs.get_auth()

    async def _do(
        self,
        request: BlurhomeRequest,
        room_id: str,
        event_type: str,
        txn_id: Optional[str],
    ) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)
        _validate_room_id(room_id)

        # The content is stored and served back exactly as given.
        content = parse_json_object_from_request(request)

        event_dict: JsonDict = {
            "type": event_type,
            "content": content,
            "room_id": room_id,
            "sender": requester.user.to_string(),
        }

        event = await self.event_creation_handler.create_and_send_nonmember_event(
            requester, event_dict, txn_id=txn_id
        )

        return 200, {"event_id": event.event_id}

    async def on_POST(
        self,
        request: BlurhomeRequest,
        room_id: str,
        event_type: str,
        txn_id: Optional[str] = None,
    ) -> Tuple[int, JsonDict]:
        return await self._do(request, room_id, event_type, None)

    async def on_PUT(
        self,
        request: BlurhomeRequest,
        room_id: str,
        event_type: str,
        txn_id: Optional[str] = None,
    ) -> Tuple[int, JsonDict]:
        if not txn_id:
            raise MatrixError(
                HTTPStatus.BAD_REQUEST,
                "A transaction ID is required",
                Codes.MISSING_PARAM,
            )
        return await self._do(request, room_id, event_type, txn_id)


class RoomMessageListRestServlet(RestServlet):
    PATTERNS = client_patterns("/rooms/(?P<room_id>[^/]*)/messages", v1=True)

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.message_handler = hs.get_message_handler()
        self.auth = hs.get_auth()

    async def on_GET(
        self, request: BlurhomeRequest, room_id: str
    ) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)
        _validate_room_id(room_id)

        from_str = parse_string(request, "from")
        from_token = StreamToken.from_string(from_str) if from_str else None
        direction = parse_string(
            request,
            "dir",
            default=Direction.BACKWARDS,
            allowed_values=[Direction.BACKWARDS, Direction.FORWARDS],
        )
        limit = parse_integer(request, "limit", default=10)

        pagination_config = PaginationConfig(
            from_token=from_token, direction=direction, limit=limit
        )

        msgs = await self.message_handler.get_messages(
            requester=requester,
            room_id=room_id,
            pagin_config=pagination_config,
        )

        return 200, msgs


class RoomEventServlet(RestServlet):
    PATTERNS = client_patterns(
        "/rooms/(?P<room_id>[^/]*)/event/(?P<event_id>[^/]*)", v1=True
    )

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.clock = hs.get_clock()
        self._message_handler = hs.get_message_handler()
        self.auth = hs.get_auth()

    async def on_GET(
        self, request: BlurhomeRequest, room_id: str, event_id: str
    ) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)
        _validate_room_id(room_id)

        event = await self._message_handler.get_event(requester, room_id, event_id)

        return 200, serialize_event(event, self.clock.time_msec())


class JoinedRoomMemberListRestServlet(RestServlet):
    PATTERNS = client_patterns("/rooms/(?P<room_id>[^/]*)/joined_members", v1=True)

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.room_member_handler = hs.get_room_member_handler()
        self.auth = hs.get_auth()

    async def on_GET(
        self, request: BlurhomeRequest, room_id: str
    ) -> Tuple[int, JsonDict]:
        requester = await self.auth.get_user_by_req(request)
        _validate_room_id(room_id)

        users = await self.room_member_handler.get_joined_members(requester, room_id)

        return 200, {"joined": {user_id: {} for user_id in users}}


def register_servlets(hs: "HomeServer", http_server: HttpServer) -> None:
    RoomCreateRestServlet(hs).register(http_server)
    JoinRoomAliasServlet(hs).register(http_server)
    RoomMembershipRestServlet(hs).register(http_server)
    RoomSendEventRestServlet(hs).register(http_server)
    RoomMessageListRestServlet(hs).register(http_server)
    RoomEventServlet(hs).register(http_server)
    JoinedRoomMemberListRestServlet(hs).register(http_server)
