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
# [This file includes modifications made by New Vector Limited]
#
#

"""This module contains REST servlets to do with profile: /profile/<paths>"""

from http import HTTPStatus
from typing import TYPE_CHECKING, Optional, Tuple

from blurhome.api.constants import ProfileFields
from blurhome.api.errors import Codes, MatrixError
from blurhome.http.server import HttpServer
from blurhome.http.servlet import RestServlet, parse_json_object_from_request
from blurhome.http.site import BlurhomeRequest
from blurhome.rest.client._base import client_patterns
from blurhome.types import JsonDict, Requester, UserID

if TYPE_CHECKING:
    from blurhome.server import HomeServer


def _validate_user_id(user_id: str) -> UserID:
    if not UserID.is_valid(user_id):
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, "Invalid user id", Codes.INVALID_PARAM
        )
    return UserID.from_string(user_id)


def _validate_field_name(field_name: str) -> None:
    if field_name not in ProfileFields.ALL:
        raise MatrixError(
            HTTPStatus.BAD_REQUEST,
            "Unknown profile field %r" % (field_name,),
            Codes.INVALID_PARAM,
        )


class ProfileRestServlet(RestServlet):
    PATTERNS = client_patterns("/profile/(?P<user_id>[^/]*)", v1=True)

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.hs = hs
        self.profile_handler = hs.get_profile_handler()
        self.auth = hs.get_auth()

    async def on_GET(
        self, request: BlurhomeRequest, user_id: str
    ) -> Tuple[int, JsonDict]:
        if self.hs.config.server.require_auth_for_profile_requests:
            await self.auth.get_user_by_req(request)

        _validate_user_id(user_id)

        ret = await self.profile_handler.get_profile(user_id)

        return 200, ret


class ProfileFieldRestServlet(RestServlet):
    PATTERNS = client_patterns(
        "/profile/(?P<user_id>[^/]*)/(?P<field_name>[^/]*)", v1=True
    )

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.hs = hs
        self.profile_handler = hs.get_profile_handler()
        self.auth = hs.get_auth()

    async def on_GET(
        self, request: BlurhomeRequest, user_id: str, field_name: str
    ) -> Tuple[int, JsonDict]:
        if self.hs.config.server.require_auth_for_profile_requests:
            await self.auth.get_user_by_req(request)

        user = _validate_user_id(user_id)
        _validate_field_name(field_name)

        if field_name == ProfileFields.AVATAR_URL:
            # The avatar's blurhash travels with it.
            return 200, await self.profile_handler.get_avatar(user)

        if field_name == ProfileFields.DISPLAYNAME:
            field_value = await self.profile_handler.get_displayname(user)
        else:
            field_value = await self.profile_handler.get_blurhash(user)

        if field_value is None:
            return 200, {}
        return 200, {field_name: field_value}

    async def on_PUT(
        self, request: BlurhomeRequest, user_id: str, field_name: str
    ) -> Tuple[int, JsonDict]:
        user = _validate_user_id(user_id)

        requester = await self.auth.get_user_by_req(request)
        is_admin = await self.auth.is_server_admin(requester)

        _validate_field_name(field_name)

        content = parse_json_object_from_request(request)
        try:
            new_value = content[field_name]
        except KeyError:
            raise MatrixError(
                400, "Missing key '%s'" % (field_name,), errcode=Codes.MISSING_PARAM
            )

        await self._set_field(user, requester, field_name, new_value, is_admin)

        # Clients may set the avatar and its blurhash in a single request.
        if (
            field_name == ProfileFields.AVATAR_URL
            and ProfileFields.BLURHASH in content
        ):
            await self._set_field(
                user,
                requester,
                ProfileFields.BLURHASH,
                content[ProfileFields.BLURHASH],
                is_admin,
            )

        return 200, {}

    async def on_DELETE(
        self, request: BlurhomeRequest, user_id: str, field_name: str
    ) -> Tuple[int, JsonDict]:
        user = _validate_user_id(user_id)

        requester = await self.auth.get_user_by_req(request)
        is_admin = await self.auth.is_server_admin(requester)

        _validate_field_name(field_name)

        await self._set_field(user, requester, field_name, None, is_admin)

        return 200, {}

    async def _set_field(
        self,
        user: UserID,
        requester: Requester,
        field_name: str,
        new_value: Optional[str],
        is_admin: bool,
    ) -> None:
        if field_name == ProfileFields.DISPLAYNAME:
            await self.profile_handler.set_displayname(
                user, requester, new_value, is_admin
            )
        elif field_name == ProfileFields.AVATAR_URL:
            await self.profile_handler.set_avatar_url(
                user, requester, new_value, is_admin
            )
        else:
            await self.profile_handler.set_blurhash(
                user, requester, new_value, is_admin
            )


def register_servlets(hs: "HomeServer", http_server: HttpServer) -> None:
    ProfileFieldRestServlet(hs).register(http_server)
    ProfileRestServlet(hs).register(http_server)
