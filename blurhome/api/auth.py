#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2017 Vector Creations Ltd
# Copyright 2020-2021 The Matrix.org Foundation C.I.C.
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
from typing import TYPE_CHECKING, Optional

from twisted.web.server import Request

from blurhome.api.constants import Membership
from blurhome.api.errors import (
    AuthError,
    Codes,
    InvalidClientTokenError,
    MissingClientTokenError,
)
from blurhome.http.site import BlurhomeRequest
from blurhome.types import Requester, create_requester

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class Auth:
    """
    This class contains functions for authenticating users of our client-server API.
    """

    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.clock = hs.get_clock()
        self.store = hs.get_datastores().main

    async def get_user_by_req(self, request: BlurhomeRequest) -> Requester:
        """Get a registered user's ID.

        Args:
            request: An HTTP request with an access_token query parameter or
                an Authorization: Bearer header.

        Returns:
            Resolves to the requester

        Raises:
            InvalidClientCredentialsError if no user by that token exists or the token
                is invalid.
            AuthError if access is denied for the user in the access token
        """
        access_token = self.get_access_token_from_request(request)

        user_info = await self.store.get_user_by_access_token(access_token)
        if not user_info:
            raise InvalidClientTokenError()

        user = await self.store.get_user_by_id(user_info.user_id)
        if user is None:
            raise InvalidClientTokenError()
        if user.is_deactivated:
            raise AuthError(
                401, "User account has been deactivated", errcode=Codes.USER_DEACTIVATED
            )

        requester = create_requester(user_info.user_id, access_token_id=user_info.token_id)

        request.requester = requester
        return requester

    async def get_user_by_req_if_present(
        self, request: BlurhomeRequest
    ) -> Optional[Requester]:
        """Like `get_user_by_req`, but returns None for requests which carry no
        access token at all.
        """
        if not self.has_access_token(request):
            return None
        return await self.get_user_by_req(request)

    async def is_server_admin(self, requester: Requester) -> bool:
        """Check if the given user is a local server admin.

        Args:
            requester: user to check

        Returns:
            True if the user is an admin
        """
        return await self.store.is_server_admin(requester.user)

    async def check_user_in_room(self, room_id: str, requester: Requester) -> str:
        """Check if the user is currently joined in the room.

        Returns:
            The event ID of the user's join event.

        Raises:
            AuthError if the user is not in the room.
        """
        user_id = requester.user.to_string()
        (
            membership,
            member_event_id,
        ) = await self.store.get_local_current_membership_for_user_in_room(
            user_id, room_id
        )

        if membership == Membership.JOIN and member_event_id is not None:
            return member_event_id

        raise AuthError(403, "User %s not in room %s" % (user_id, room_id))

    @staticmethod
    def has_access_token(request: Request) -> bool:
        """Checks if the request has an access_token.

        Returns:
            False if no access_token was given, True otherwise.
        """
        # This will always be set by the time Twisted calls us.
        assert request.args is not None

        auth_headers = request.requestHeaders.getRawHeaders(b"Authorization")
        query_params = request.args.get(b"access_token")
        return bool(query_params) or bool(auth_headers)

    @staticmethod
    def get_access_token_from_request(request: Request) -> str:
        """Extracts the access_token from the request.

        Args:
            request: The http request.

        Returns:
            The access_token

        Raises:
            MissingClientTokenError: If there isn't a single access_token in the
                request
        """
        # This will always be set by the time Twisted calls us.
        assert request.args is not None

        auth_headers = request.requestHeaders.getRawHeaders(b"Authorization")
        query_params = request.args.get(b"access_token")
        if auth_headers:
            # Try the get the access_token from a "Authorization: Bearer"
            # header
            if query_params is not None:
                raise MissingClientTokenError(
                    "Mixing Authorization headers and access_token query parameters."
                )
            if len(auth_headers) > 1:
                raise MissingClientTokenError("Too many Authorization headers.")
            parts = auth_headers[0].split(b" ")
            if parts[0] == b"Bearer" and len(parts) == 2:
                return parts[1].decode("ascii")
            else:
                raise MissingClientTokenError("Invalid Authorization header.")
        else:
            # Try to get the access_token from the query params.
            if not query_params:
                raise MissingClientTokenError()

            return query_params[0].decode("ascii")
