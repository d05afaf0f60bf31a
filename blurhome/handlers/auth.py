#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2017 Vector Creations Ltd
# Copyright 2019-2020 The Matrix.org Foundation C.I.C.
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
import unicodedata
from typing import TYPE_CHECKING, Optional

import bcrypt

from blurhome.api.errors import AuthError, Codes
from blurhome.logging.context import defer_to_thread
from blurhome.types import UserID
from blurhome.util.stringutils import random_string

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

# Length of the random part of an access token.
ACCESS_TOKEN_LENGTH = 32


class AuthHandler:
    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.store = hs.get_datastores().main
        self.clock = hs.get_clock()
        self._bcrypt_rounds = hs.config.server.bcrypt_rounds

    async def validate_login(self, user_id: str, password: str) -> str:
        """Check a user's password.

        Args:
            user_id: complete @user:id of the user logging in
            password: the password they gave

        Returns:
            The canonical user id.

        Raises:
            AuthError if the user does not exist, is deactivated or the
                password is wrong.
        """
        password_hash = await self.store.user_get_password_hash(user_id)
        if not password_hash:
            logger.warning("Attempted to login as %s but they do not exist", user_id)
            raise AuthError(403, "Invalid username or password")

        if not await self.validate_hash(password, password_hash):
            logger.warning("Failed password login for user %s", user_id)
            raise AuthError(403, "Invalid username or password")

        user_info = await self.store.get_user_by_id(user_id)
        if user_info is not None and user_info.is_deactivated:
            raise AuthError(
                403, "This account has been deactivated", errcode=Codes.USER_DEACTIVATED
            )

        return user_id

    async def create_access_token_for_user(
        self, user_id: str, device_id: Optional[str] = None
    ) -> str:
        """Creates a new access token for the user with the given user ID.

        The user is assumed to have been authenticated by some other
        mechanism (e.g. CAS), and the user_id converted to the canonical case.

        Args:
            user_id: canonical User ID
            device_id: the device ID to associate with the tokens.

        Returns:
            The access token for the user's session.
        """
        access_token = "blr_" + random_string(ACCESS_TOKEN_LENGTH)
        await self.store.add_access_token_to_user(
            user_id=user_id, token=access_token, device_id=device_id
        )
        logger.info("Logging in user %s on device %s", user_id, device_id)
        return access_token

    async def hash(self, password: str) -> str:
        """Computes a secure hash of password.

        Args:
            password: Password to hash.

        Returns:
            Hashed password.
        """

        def _do_hash() -> str:
            # Normalise the Unicode in the password
            pw = unicodedata.normalize("NFKC", password)

            return bcrypt.hashpw(
                pw.encode("utf8"),
                bcrypt.gensalt(self._bcrypt_rounds),
            ).decode("ascii")

        return await defer_to_thread(self.hs.get_reactor(), _do_hash)

    async def validate_hash(self, password: str, stored_hash: str) -> bool:
        """Validates that self.hash(password) == stored_hash.

        Args:
            password: Password to hash.
            stored_hash: Expected hash value.

        Returns:
            Whether self.hash(password) == stored_hash.
        """

        def _do_validate_hash(checked_hash: bytes) -> bool:
            # Normalise the Unicode in the password
            pw = unicodedata.normalize("NFKC", password)

            return bcrypt.checkpw(pw.encode("utf8"), checked_hash)

        if stored_hash:
            if not isinstance(stored_hash, bytes):
                stored_hash = stored_hash.encode("ascii")

            return await defer_to_thread(
                self.hs.get_reactor(), _do_validate_hash, stored_hash
            )
        else:
            return False

    def qualify_user_id(self, user: str) -> str:
        """Turn a localpart or full user id into a full user id on this server."""
        if user.startswith("@"):
            return user
        return UserID(user, self.hs.hostname).to_string()
