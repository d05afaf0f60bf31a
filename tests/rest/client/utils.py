#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2018-2021 The Matrix.org Foundation C.I.C.
# Copyright 2017 Vector Creations Ltd
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

import json
from http import HTTPStatus
from typing import Any, Dict, Optional, Union

import attr

from twisted.web.resource import Resource

from blurhome.api.constants import GENERATE_BLURHASH_PARAM, Membership
from blurhome.server import HomeServer
from blurhome.types import JsonDict

from tests.server import FakeChannel, FakeSite, ThreadedMemoryReactorClock, make_request


@attr.s(auto_attribs=True)
class RestHelper:
    """Contains extra helper functions to quickly and clearly perform a given
    REST action, which isn't the focus of the test.
    """

    hs: HomeServer
    reactor: ThreadedMemoryReactorClock
    site: Union[FakeSite, Resource]
    auth_user_id: Optional[str] = None

    def create_room_as(
        self,
        room_creator: Optional[str] = None,
        is_public: Optional[bool] = False,
        tok: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
        extra_content: Optional[Dict] = None,
    ) -> str:
        """
        Create a room.

        Args:
            room_creator: The user ID to create the room with.
            is_public: If True, the `preset` is set to public_chat, otherwise
                private_chat.
            tok: The access token to use in the request.
            expect_code: The expected HTTP response code.
            extra_content: Extra keys to include in the body of the /createRoom
                request.

        Returns:
            The ID of the newly created room, or an empty string if the room
            was not created.
        """
        temp_id = self.auth_user_id
        self.auth_user_id = room_creator
        content = extra_content or {}
        content["preset"] = "public_chat" if is_public else "private_chat"

        channel = make_request(
            self.reactor,
            self.site,
            "POST",
            "/_matrix/client/r0/createRoom",
            content,
            access_token=tok,
        )

        assert channel.code == expect_code, "Expected: %d, got: %d, resp: %r" % (
            expect_code,
            channel.code,
            channel.result["body"],
        )

        self.auth_user_id = temp_id

        if expect_code == HTTPStatus.OK:
            return channel.json_body["room_id"]
        else:
            return ""

    def invite(
        self,
        room: str,
        src: Optional[str] = None,
        targ: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
        tok: Optional[str] = None,
    ) -> JsonDict:
        return self.change_membership(
            room=room,
            src=src,
            targ=targ,
            tok=tok,
            membership=Membership.INVITE,
            expect_code=expect_code,
        )

    def join(
        self,
        room: str,
        user: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
        tok: Optional[str] = None,
    ) -> JsonDict:
        return self.change_membership(
            room=room,
            src=user,
            targ=user,
            tok=tok,
            membership=Membership.JOIN,
            expect_code=expect_code,
        )

    def leave(
        self,
        room: str,
        user: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
        tok: Optional[str] = None,
    ) -> JsonDict:
        return self.change_membership(
            room=room,
            src=user,
            targ=user,
            tok=tok,
            membership=Membership.LEAVE,
            expect_code=expect_code,
        )

    def change_membership(
        self,
        room: str,
        src: Optional[str],
        targ: Optional[str],
        membership: str,
        extra_data: Optional[dict] = None,
        tok: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
        expect_errcode: Optional[str] = None,
    ) -> JsonDict:
        """
        Send a membership state event into a room.

        Args:
            room: The ID of the room to send to
            src: The mxid of the event sender
            targ: The mxid of the event's target. Only used for invites.
            membership: The type of membership event
            extra_data: Extra information to include in the content of the event
            tok: The user access token to use
            expect_code: The expected HTTP response code
            expect_errcode: The expected Matrix error code

        Returns:
            The JSON body of the response.
        """
        temp_id = self.auth_user_id
        self.auth_user_id = src

        path = f"/_matrix/client/r0/rooms/{room}/{membership}"

        data: JsonDict = dict(extra_data or {})
        if membership == Membership.INVITE:
            data["user_id"] = targ

        channel = make_request(
            self.reactor,
            self.site,
            "POST",
            path,
            data,
            access_token=tok,
        )
        assert channel.code == expect_code, (
            "Expected: %d, got: %d, resp: %r"
            % (expect_code, channel.code, channel.result["body"])
        )

        if expect_errcode:
            assert str(channel.json_body["errcode"]) == expect_errcode, (
                "Expected: %r, got: %r, resp: %r"
                % (expect_errcode, channel.json_body["errcode"], channel.result["body"])
            )

        self.auth_user_id = temp_id
        return channel.json_body

    def send(
        self,
        room_id: str,
        body: Optional[str] = None,
        txn_id: Optional[str] = None,
        tok: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
    ) -> JsonDict:
        if body is None:
            body = "body_text_here"

        content = {"msgtype": "m.text", "body": body}

        return self.send_event(
            room_id, "m.room.message", content, txn_id, tok, expect_code
        )

    def send_event(
        self,
        room_id: str,
        type: str,
        content: Optional[dict] = None,
        txn_id: Optional[str] = None,
        tok: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
    ) -> JsonDict:
        if txn_id is None:
            txn_id = "m%s" % (str(self.reactor.seconds()).replace(".", "_"),)
            self._txn_counter = getattr(self, "_txn_counter", 0) + 1
            txn_id += "_%d" % (self._txn_counter,)

        path = "/_matrix/client/r0/rooms/%s/send/%s/%s" % (room_id, type, txn_id)

        channel = make_request(
            self.reactor,
            self.site,
            "PUT",
            path,
            content or {},
            access_token=tok,
        )

        assert channel.code == expect_code, "Expected: %d, got: %d, resp: %r" % (
            expect_code,
            channel.code,
            channel.result["body"],
        )

        return channel.json_body

    def get_event(
        self,
        room_id: str,
        event_id: str,
        tok: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
    ) -> JsonDict:
        """Request a specific event from the server.

        Args:
            room_id: the room in which the event was sent.
            event_id: the event's ID.
            tok: the token to request the event with.
            expect_code: the expected HTTP status for the response.

        Returns:
            The event as a dict.
        """
        path = "/_matrix/client/r0/rooms/%s/event/%s" % (room_id, event_id)

        channel = make_request(
            self.reactor,
            self.site,
            "GET",
            path,
            access_token=tok,
        )

        assert channel.code == expect_code, "Expected: %d, got %d, resp: %r" % (
            expect_code,
            channel.code,
            channel.result["body"],
        )

        return channel.json_body

    def get_messages(
        self,
        room_id: str,
        tok: Optional[str] = None,
        direction: str = "b",
        limit: int = 10,
        from_token: Optional[str] = None,
        expect_code: int = HTTPStatus.OK,
    ) -> JsonDict:
        """Page through the timeline of a room."""
        path = "/_matrix/client/r0/rooms/%s/messages?dir=%s&limit=%d" % (
            room_id,
            direction,
            limit,
        )
        if from_token is not None:
            path += "&from=%s" % (from_token,)

        channel = make_request(
            self.reactor,
            self.site,
            "GET",
            path,
            access_token=tok,
        )

        assert channel.code == expect_code, "Expected: %d, got %d, resp: %r" % (
            expect_code,
            channel.code,
            channel.result["body"],
        )

        return channel.json_body

    def upload_media(
        self,
        image_data: bytes,
        tok: str,
        filename: str = "test.png",
        content_type: bytes = b"image/png",
        generate_blurhash: Optional[bool] = None,
        expect_code: int = HTTPStatus.OK,
    ) -> JsonDict:
        """Upload a piece of test media to the media repo

        Args:
            image_data: The image data to upload
            tok: The user token to use during the upload
            filename: The filename of the media to be uploaded
            content_type: The content type of the media
            generate_blurhash: The value of the blurhash opt-in query
                parameter, or None to leave it out.
            expect_code: The return code to expect from attempting to upload the media
        """
        path = "/_matrix/media/r0/upload?filename=%s" % (filename,)
        if generate_blurhash is not None:
            path += "&%s=%s" % (
                GENERATE_BLURHASH_PARAM,
                "true" if generate_blurhash else "false",
            )

        channel = make_request(
            self.reactor,
            self.site,
            "POST",
            path,
            content=image_data,
            access_token=tok,
            content_type=content_type,
        )

        assert channel.code == expect_code, (
            "Expected: %d, got: %d, resp: %r"
            % (expect_code, channel.code, channel.result["body"])
        )

        return channel.json_body


def decode_json_body(channel: FakeChannel) -> Any:
    """Decode a channel's body, whatever its Content-Type."""
    return json.loads(channel.result["body"])
