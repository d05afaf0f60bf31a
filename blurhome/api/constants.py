#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
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
#

"""Contains constants for the Matrix client-server and federation APIs."""

from typing import Final

# the max size of a (canonical-json-encoded) event
MAX_PDU_SIZE = 65536

# the maximum length for a user id is 255 characters
MAX_USERID_LENGTH = 255

# Maximum lengths of the profile fields, in characters.
MAX_DISPLAYNAME_LEN = 256
MAX_AVATAR_URL_LEN = 1000
MAX_BLURHASH_LEN = 1000

# MSC2448: the unstable identifier for a blurhash, used as a key in upload
# responses, profiles and the `info` block of media events.
BLURHASH_FIELD: Final = "xyz.amorgan.blurhash"

# MSC2448: the query parameter a client sets on upload to ask for a blurhash.
GENERATE_BLURHASH_PARAM: Final = "xyz.amorgan.generate_blurhash"


class Membership:
    """Represents the membership states of a user in a room."""

    INVITE: Final = "invite"
    JOIN: Final = "join"
    KNOCK: Final = "knock"
    LEAVE: Final = "leave"
    BAN: Final = "ban"
    LIST: Final = frozenset((INVITE, JOIN, KNOCK, LEAVE, BAN))


class PresetName:
    PRIVATE_CHAT: Final = "private_chat"
    PUBLIC_CHAT: Final = "public_chat"
    TRUSTED_PRIVATE_CHAT: Final = "trusted_private_chat"


class JoinRules:
    PUBLIC: Final = "public"
    INVITE: Final = "invite"


class LoginType:
    PASSWORD: Final = "m.login.password"


class EventTypes:
    Member: Final = "m.room.member"
    Create: Final = "m.room.create"
    JoinRules: Final = "m.room.join_rules"
    Name: Final = "m.room.name"
    Message: Final = "m.room.message"


class ProfileFields:
    DISPLAYNAME: Final = "displayname"
    AVATAR_URL: Final = "avatar_url"
    BLURHASH: Final = BLURHASH_FIELD

    ALL: Final = (DISPLAYNAME, AVATAR_URL, BLURHASH)


class Direction:
    BACKWARDS: Final = "b"
    FORWARDS: Final = "f"
