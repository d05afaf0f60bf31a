#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2021 The Matrix.org Foundation C.I.C.
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

"""Contains functions for registering clients."""

import logging
import re
from typing import TYPE_CHECKING, Optional

from blurhome.api.constants import MAX_USERID_LENGTH
from blurhome.api.errors import Codes, MatrixError
from blurhome.types import UserID

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

# The characters allowed in the localpart of a newly registered user id.
_VALID_LOCALPART_RE = re.compile(r"^[a-z0-9._=\-/]+$")


class RegistrationHandler:
    def __init__(self, hs: "HomeServer"):
        self.store = hs.get_datastores().main
        self.clock = hs.get_clock()
        self.hs = hs
        self._auth_handler = hs.get_auth_handler()
        self._server_name = hs.hostname

    async def check_username(self, localpart: str) -> None:
        if not localpart:
            raise MatrixError(400, "User ID cannot be empty", Codes.INVALID_USERNAME)

        if not _VALID_LOCALPART_RE.match(localpart):
            raise MatrixError(
                400,
                "User ID can only contain characters a-z, 0-9, or '=_-./'",
                Codes.INVALID_USERNAME,
            )

        user = UserID(localpart, self.hs.hostname)
        user_id = user.to_string()

        if len(user_id) > MAX_USERID_LENGTH:
            raise MatrixError(
                400,
                "User ID may not be longer than %s characters" % (MAX_USERID_LENGTH,),
                Codes.INVALID_USERNAME,
            )

        users = await self.store.get_user_by_id(user_id)
        if users:
            raise MatrixError(400, "User ID already taken.", errcode=Codes.USER_IN_USE)

    async def register_user(
        self,
        localpart: str,
        password: Optional[str] = None,
        default_display_name: Optional[str] = None,
        admin: bool = False,
    ) -> str:
        """Registers a new client on the server.

        Args:
            localpart: The local part of the user ID to register.
            password: The password to set, if any.
            default_display_name: if set, the new user's displayname
                will be set to this. Defaults to 'localpart'.
            admin: True if the user should be registered as a server admin.

        Returns:
            user_id

        Raises:
            MatrixError if there was a problem registering.
        """
        localpart = localpart.lower()
        await self.check_username(localpart)

        user_id = UserID(localpart, self.hs.hostname).to_string()

        if default_display_name is None:
            default_display_name = localpart

        password_hash = None
        if password:
            password_hash = await self._auth_handler.hash(password)

        await self.store.register_user(
            user_id=user_id,
            password_hash=password_hash,
            create_profile_with_displayname=default_display_name,
            admin=admin,
        )

        logger.info("Registered new user %s", user_id)
        return user_id
