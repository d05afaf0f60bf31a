#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
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

from blurhome.api.constants import (
    MAX_AVATAR_URL_LEN,
    MAX_BLURHASH_LEN,
    MAX_DISPLAYNAME_LEN,
    ProfileFields,
)
from blurhome.api.errors import (
    AuthError,
    Codes,
    HttpResponseException,
    MatrixError,
    NotFoundError,
    RequestSendFailed,
)
from blurhome.metrics import SERVER_NAME_LABEL, profile_field_update_counter
from blurhome.types import JsonDict, Requester, UserID
from blurhome.util.async_helpers import Linearizer

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

# Maximum length, in characters, of each settable profile field.
_MAX_FIELD_LENGTHS = {
    ProfileFields.DISPLAYNAME: MAX_DISPLAYNAME_LEN,
    ProfileFields.AVATAR_URL: MAX_AVATAR_URL_LEN,
    ProfileFields.BLURHASH: MAX_BLURHASH_LEN,
}


class ProfileHandler:
    """Handles fetching and updating user profile information."""

    def __init__(self, hs: "HomeServer"):
        self.server_name = hs.hostname
        self.clock = hs.get_clock()
        self.store = hs.get_datastores().main
        self.hs = hs

        self.federation = hs.get_federation_client()
        hs.get_federation_registry().register_query_handler(
            "profile", self.on_profile_query
        )

        # Serialises writes to a single field of a single profile. Different
        # fields of the same profile are updated concurrently.
        self._update_linearizer = Linearizer(name="profile_update")

    async def get_profile(self, user_id: str) -> JsonDict:
        """
        Get a user's profile as a JSON dictionary.

        Args:
            user_id: The user to fetch the profile of.

        Returns:
            A JSON dictionary. For local queries this will include the displayname,
            avatar_url and blurhash fields which are set. For remote queries it
            will contain whichever of those fields the remote server returned.
        """
        target_user = UserID.from_string(user_id)

        if self.hs.is_mine(target_user):
            await self._check_local_user_exists(target_user)

            profileinfo = await self.store.get_profileinfo(target_user)
            return _profile_to_json(
                profileinfo.displayname, profileinfo.avatar_url, profileinfo.blurhash
            )
        else:
            return await self._query_remote_profile(target_user)

    async def get_displayname(self, target_user: UserID) -> Optional[str]:
        """
        Fetch a user's display name from their profile.

        Args:
            target_user: The user to fetch the display name of.

        Returns:
            The user's display name or None if unset.
        """
        if self.hs.is_mine(target_user):
            await self._check_local_user_exists(target_user)
            return await self.store.get_profile_displayname(target_user)

        result = await self._query_remote_profile(
            target_user, ProfileFields.DISPLAYNAME
        )
        return result.get(ProfileFields.DISPLAYNAME)

    async def get_avatar_url(self, target_user: UserID) -> Optional[str]:
        """
        Fetch a user's avatar URL from their profile.

        Args:
            target_user: The user to fetch the avatar URL of.

        Returns:
            The user's avatar URL or None if unset.
        """
        avatar = await self.get_avatar(target_user)
        return avatar.get(ProfileFields.AVATAR_URL)

    async def get_avatar(self, target_user: UserID) -> JsonDict:
        """
        Fetch a user's avatar URL together with its blurhash.

        Args:
            target_user: The user to fetch the avatar of.

        Returns:
            A JSON dictionary with whichever of `avatar_url` and the blurhash
            are set.
        """
        if self.hs.is_mine(target_user):
            await self._check_local_user_exists(target_user)
            profileinfo = await self.store.get_profileinfo(target_user)
            return _profile_to_json(None, profileinfo.avatar_url, profileinfo.blurhash)

        return await self._query_remote_profile(target_user, ProfileFields.AVATAR_URL)

    async def get_blurhash(self, target_user: UserID) -> Optional[str]:
        """
        Fetch the blurhash of a user's avatar.

        Args:
            target_user: The user to fetch the blurhash of.

        Returns:
            The blurhash, or None if unset.
        """
        if self.hs.is_mine(target_user):
            await self._check_local_user_exists(target_user)
            return await self.store.get_profile_blurhash(target_user)

        result = await self._query_remote_profile(target_user, ProfileFields.BLURHASH)
        return result.get(ProfileFields.BLURHASH)

    async def set_displayname(
        self,
        target_user: UserID,
        requester: Requester,
        new_displayname: Optional[str],
        by_admin: bool = False,
    ) -> None:
        """Set the displayname of a user

        Args:
            target_user: the user whose displayname is to be changed.
            requester: The user attempting to make this change.
            new_displayname: The displayname to give this user. "" or None
                removes it.
            by_admin: Whether this change was made by an administrator.
        """
        if isinstance(new_displayname, str):
            new_displayname = new_displayname.strip()

        await self._set_profile_field(
            target_user,
            requester,
            ProfileFields.DISPLAYNAME,
            new_displayname,
            by_admin,
        )

    async def set_avatar_url(
        self,
        target_user: UserID,
        requester: Requester,
        new_avatar_url: Optional[str],
        by_admin: bool = False,
    ) -> None:
        """Set a new avatar URL for a user. The blurhash is left untouched.

        Args:
            target_user: the user whose avatar URL is to be changed.
            requester: The user attempting to make this change.
            new_avatar_url: The avatar URL to give this user. "" or None
                removes it.
            by_admin: Whether this change was made by an administrator.
        """
        await self._set_profile_field(
            target_user,
            requester,
            ProfileFields.AVATAR_URL,
            new_avatar_url,
            by_admin,
        )

    async def set_blurhash(
        self,
        target_user: UserID,
        requester: Requester,
        new_blurhash: Optional[str],
        by_admin: bool = False,
    ) -> None:
        """Set the blurhash of a user's avatar. The avatar URL is left untouched.

        The value is opaque to the server and stored exactly as given.

        Args:
            target_user: the user whose blurhash is to be changed.
            requester: The user attempting to make this change.
            new_blurhash: The blurhash to store. "" or None removes it.
            by_admin: Whether this change was made by an administrator.
        """
        await self._set_profile_field(
            target_user,
            requester,
            ProfileFields.BLURHASH,
            new_blurhash,
            by_admin,
        )

    async def _set_profile_field(
        self,
        target_user: UserID,
        requester: Requester,
        field_name: str,
        new_value: Optional[str],
        by_admin: bool,
    ) -> None:
        if not self.hs.is_mine(target_user):
            raise MatrixError(400, "User is not hosted on this homeserver")

        if not by_admin and target_user != requester.user:
            raise AuthError(403, "Cannot set another user's %s" % (field_name,))

        if new_value is not None and not isinstance(new_value, str):
            raise MatrixError(
                400, "'%s' must be a string" % (field_name,), Codes.INVALID_PARAM
            )

        max_length = _MAX_FIELD_LENGTHS[field_name]
        if new_value is not None and len(new_value) > max_length:
            raise MatrixError(
                400,
                "%s is too long (max %i)" % (field_name, max_length),
                Codes.INVALID_PARAM,
            )

        if new_value == "":
            new_value = None

        async with self._update_linearizer.queue((target_user.to_string(), field_name)):
            if field_name == ProfileFields.DISPLAYNAME:
                await self.store.set_profile_displayname(target_user, new_value)
            elif field_name == ProfileFields.AVATAR_URL:
                await self.store.set_profile_avatar_url(target_user, new_value)
            else:
                await self.store.set_profile_blurhash(target_user, new_value)

        logger.info(
            "%s %s of %s",
            "Cleared" if new_value is None else "Updated",
            field_name,
            target_user,
        )
        profile_field_update_counter.add(
            1, {"field": field_name, SERVER_NAME_LABEL: self.server_name}
        )

    async def on_profile_query(self, args: JsonDict) -> JsonDict:
        """Handles federation profile query requests."""

        if not self.hs.config.federation.allow_profile_lookup_over_federation:
            raise MatrixError(
                403,
                "Profile lookup over federation is disabled on this homeserver",
                Codes.FORBIDDEN,
            )

        if "user_id" not in args:
            raise MatrixError(400, "Missing params: ['user_id']", Codes.MISSING_PARAM)

        user = UserID.from_string(args["user_id"])
        if not self.hs.is_mine(user):
            raise NotFoundError("User is not hosted on this homeserver")

        just_field = args.get("field", None)
        if just_field is not None and just_field not in ProfileFields.ALL:
            raise MatrixError(400, "Unknown profile field", Codes.INVALID_PARAM)

        await self._check_local_user_exists(user)

        profileinfo = await self.store.get_profileinfo(user)

        if just_field == ProfileFields.DISPLAYNAME:
            return _profile_to_json(profileinfo.displayname, None, None)
        elif just_field == ProfileFields.AVATAR_URL:
            return _profile_to_json(None, profileinfo.avatar_url, profileinfo.blurhash)
        elif just_field == ProfileFields.BLURHASH:
            return _profile_to_json(None, None, profileinfo.blurhash)

        return _profile_to_json(
            profileinfo.displayname, profileinfo.avatar_url, profileinfo.blurhash
        )

    async def _check_local_user_exists(self, target_user: UserID) -> None:
        """Checks that a local user is registered.

        Raises:
            NotFoundError if there is no such user.
        """
        if await self.store.get_user_by_id(target_user.to_string()) is None:
            raise NotFoundError("Profile was not found")

    async def _query_remote_profile(
        self, target_user: UserID, field: Optional[str] = None
    ) -> JsonDict:
        args = {"user_id": target_user.to_string()}
        if field is not None:
            args["field"] = field

        try:
            result = await self.federation.make_query(
                destination=target_user.domain,
                query_type="profile",
                args=args,
            )
        except RequestSendFailed as e:
            raise MatrixError(502, "Failed to fetch profile") from e
        except HttpResponseException as e:
            if e.code < 500 and e.code != 404:
                # Other codes are not allowed in c2s API
                logger.info(
                    "Server replied with wrong response: %s %s", e.code, e.msg
                )

                raise MatrixError(502, "Failed to fetch profile")
            raise e.to_matrix_error()

        # Only relay the fields we know about.
        return {
            key: value
            for key, value in result.items()
            if key in ProfileFields.ALL and isinstance(value, str)
        }


def _profile_to_json(
    displayname: Optional[str], avatar_url: Optional[str], blurhash: Optional[str]
) -> JsonDict:
    ret: JsonDict = {}
    if displayname is not None:
        ret[ProfileFields.DISPLAYNAME] = displayname
    if avatar_url is not None:
        ret[ProfileFields.AVATAR_URL] = avatar_url
    if blurhash is not None:
        ret[ProfileFields.BLURHASH] = blurhash
    return ret
