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

"""Tests REST events for /profile paths."""

from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, patch

from twisted.test.proto_helpers import MemoryReactor

from blurhome.api.constants import BLURHASH_FIELD
from blurhome.api.errors import Codes, HttpResponseException, RequestSendFailed
from blurhome.rest.client import login, profile
from blurhome.server import HomeServer
from blurhome.util import Clock

from tests import unittest

BLURHASH = "LEHV6nWB2yk8pyo0adR*.7kCMdnj"
AVATAR_URL = "mxc://test/abcdefg"


class ProfileTestCase(unittest.HomeserverTestCase):
    servlets = [
        login.register_servlets,
        profile.register_servlets,
    ]

    def prepare(self, reactor: MemoryReactor, clock: Clock, hs: HomeServer) -> None:
        self.owner = self.register_user("owner", "pass")
        self.owner_tok = self.login("owner", "pass")
        self.other = self.register_user("other", "pass", displayname="Bob")
        self.other_tok = self.login("other", "pass")

        self.store = hs.get_datastores().main

    def test_get_displayname(self) -> None:
        res = self._get_displayname()
        self.assertEqual(res, "owner")

    def test_set_displayname(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/displayname" % (self.owner,),
            content={"displayname": "  test  "},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 200, channel.result)

        res = self._get_displayname()
        self.assertEqual(res, "test")

    def test_set_displayname_too_long(self) -> None:
        """Attempts to set a stupid displayname should get a 400"""
        channel = self.make_request(
            "PUT",
            "/profile/%s/displayname" % (self.owner,),
            content={"displayname": "test" * 100},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 400, channel.result)

        res = self._get_displayname()
        self.assertEqual(res, "owner")

    def test_set_avatar_url_and_blurhash(self) -> None:
        """The avatar and its blurhash can be set in one request."""
        channel = self.make_request(
            "PUT",
            "/profile/%s/avatar_url" % (self.owner,),
            content={"avatar_url": AVATAR_URL, BLURHASH_FIELD: BLURHASH},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 200, channel.result)

        self.assertEqual(
            self._get_field("avatar_url"),
            {"avatar_url": AVATAR_URL, BLURHASH_FIELD: BLURHASH},
        )
        self.assertEqual(self._get_field(BLURHASH_FIELD), {BLURHASH_FIELD: BLURHASH})

    def test_fields_are_independent(self) -> None:
        """Changing the avatar leaves the blurhash alone, and vice versa."""
        self._put_field(BLURHASH_FIELD, BLURHASH)
        self._put_field("avatar_url", AVATAR_URL)
        self._put_field("avatar_url", "mxc://test/new")

        self.assertEqual(
            self._get_profile(self.owner),
            {
                "displayname": "owner",
                "avatar_url": "mxc://test/new",
                BLURHASH_FIELD: BLURHASH,
            },
        )

        self._put_field(BLURHASH_FIELD, "L00000fQfQfQfQfQfQfQfQfQfQfQ")
        self.assertEqual(self._get_field("avatar_url")["avatar_url"], "mxc://test/new")

    def test_blurhash_stored_verbatim(self) -> None:
        """The server does not validate the blurhash it is given."""
        self._put_field(BLURHASH_FIELD, "not a real blurhash!")
        self.assertEqual(
            self._get_field(BLURHASH_FIELD), {BLURHASH_FIELD: "not a real blurhash!"}
        )

    def test_clear_blurhash(self) -> None:
        self._put_field("avatar_url", AVATAR_URL)
        self._put_field(BLURHASH_FIELD, BLURHASH)

        channel = self.make_request(
            "DELETE",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 200, channel.result)

        self.assertEqual(self._get_field(BLURHASH_FIELD), {})
        self.assertEqual(self._get_field("avatar_url"), {"avatar_url": AVATAR_URL})

    def test_empty_string_clears(self) -> None:
        self._put_field(BLURHASH_FIELD, BLURHASH)
        self._put_field(BLURHASH_FIELD, "")
        self.assertNotIn(BLURHASH_FIELD, self._get_profile(self.owner))

    def test_blurhash_must_be_string(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            content={BLURHASH_FIELD: 42},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 400, channel.result)
        self.assertEqual(channel.json_body["errcode"], Codes.INVALID_PARAM)

    def test_blurhash_too_long(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            content={BLURHASH_FIELD: "a" * 1001},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 400, channel.result)

    def test_missing_key(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            content={"something": "else"},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 400, channel.result)
        self.assertEqual(channel.json_body["errcode"], Codes.MISSING_PARAM)

    def test_unknown_field(self) -> None:
        channel = self.make_request(
            "GET", "/profile/%s/shoe_size" % (self.owner,)
        )
        self.assertEqual(channel.code, 400, channel.result)
        self.assertEqual(channel.json_body["errcode"], Codes.INVALID_PARAM)

    def test_other_user_can_read(self) -> None:
        self._put_field("avatar_url", AVATAR_URL)
        self._put_field(BLURHASH_FIELD, BLURHASH)

        channel = self.make_request(
            "GET", "/profile/%s" % (self.owner,), access_token=self.other_tok
        )
        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(channel.json_body[BLURHASH_FIELD], BLURHASH)

    def test_cannot_set_other_users_blurhash(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            content={BLURHASH_FIELD: BLURHASH},
            access_token=self.other_tok,
        )
        self.assertEqual(channel.code, 403, channel.result)
        self.assertEqual(self._get_field(BLURHASH_FIELD), {})

    def test_admin_can_set_other_users_blurhash(self) -> None:
        self.register_user("admin", "pass", admin=True)
        admin_tok = self.login("admin", "pass")

        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            content={BLURHASH_FIELD: BLURHASH},
            access_token=admin_tok,
        )
        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(self._get_field(BLURHASH_FIELD), {BLURHASH_FIELD: BLURHASH})

    def test_set_requires_auth(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, BLURHASH_FIELD),
            content={BLURHASH_FIELD: BLURHASH},
        )
        self.assertEqual(channel.code, 401, channel.result)

    def test_unknown_user(self) -> None:
        channel = self.make_request("GET", "/profile/@nobody:test")
        self.assertEqual(channel.code, 404, channel.result)

        channel = self.make_request(
            "GET", "/profile/@nobody:test/%s" % (BLURHASH_FIELD,)
        )
        self.assertEqual(channel.code, 404, channel.result)

    def test_invalid_user_id(self) -> None:
        channel = self.make_request("GET", "/profile/notauserid")
        self.assertEqual(channel.code, 400, channel.result)

    def test_cannot_set_remote_profile(self) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/@someone:other.example.com/%s" % (BLURHASH_FIELD,),
            content={BLURHASH_FIELD: BLURHASH},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 400, channel.result)

    @unittest.override_config({"require_auth_for_profile_requests": True})
    def test_require_auth(self) -> None:
        channel = self.make_request("GET", "/profile/%s" % (self.owner,))
        self.assertEqual(channel.code, 401, channel.result)

        channel = self.make_request(
            "GET", "/profile/%s" % (self.owner,), access_token=self.other_tok
        )
        self.assertEqual(channel.code, 200, channel.result)

    def _get_displayname(self, name: Optional[str] = None) -> Optional[str]:
        channel = self.make_request(
            "GET", "/profile/%s/displayname" % (name or self.owner,)
        )
        self.assertEqual(channel.code, 200, channel.result)
        return channel.json_body.get("displayname")

    def _get_field(self, field_name: str) -> Dict[str, Any]:
        channel = self.make_request(
            "GET", "/profile/%s/%s" % (self.owner, field_name)
        )
        self.assertEqual(channel.code, 200, channel.result)
        return channel.json_body

    def _get_profile(self, user_id: str) -> Dict[str, Any]:
        channel = self.make_request("GET", "/profile/%s" % (user_id,))
        self.assertEqual(channel.code, 200, channel.result)
        return channel.json_body

    def _put_field(self, field_name: str, value: str) -> None:
        channel = self.make_request(
            "PUT",
            "/profile/%s/%s" % (self.owner, field_name),
            content={field_name: value},
            access_token=self.owner_tok,
        )
        self.assertEqual(channel.code, 200, channel.result)


class RemoteProfileTestCase(unittest.HomeserverTestCase):
    """Reads of profiles on other servers are relayed over federation."""

    servlets = [
        login.register_servlets,
        profile.register_servlets,
    ]

    remote_user = "@alice:other.example.com"

    def prepare(self, reactor: MemoryReactor, clock: Clock, hs: HomeServer) -> None:
        self.federation_client = hs.get_federation_client()

    def test_remote_profile(self) -> None:
        mock_query = AsyncMock(
            return_value={
                "displayname": "Alice",
                "avatar_url": AVATAR_URL,
                BLURHASH_FIELD: BLURHASH,
                "com.example.unknown": "dropped",
                "displayname_extra": {"not": "a string"},
            }
        )
        with patch.object(self.federation_client, "make_query", mock_query):
            channel = self.make_request("GET", "/profile/%s" % (self.remote_user,))

        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(
            channel.json_body,
            {
                "displayname": "Alice",
                "avatar_url": AVATAR_URL,
                BLURHASH_FIELD: BLURHASH,
            },
        )
        mock_query.assert_called_once_with(
            destination="other.example.com",
            query_type="profile",
            args={"user_id": self.remote_user},
        )

    def test_remote_blurhash_field(self) -> None:
        mock_query = AsyncMock(return_value={BLURHASH_FIELD: BLURHASH})
        with patch.object(self.federation_client, "make_query", mock_query):
            channel = self.make_request(
                "GET", "/profile/%s/%s" % (self.remote_user, BLURHASH_FIELD)
            )

        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(channel.json_body, {BLURHASH_FIELD: BLURHASH})
        mock_query.assert_called_once_with(
            destination="other.example.com",
            query_type="profile",
            args={"user_id": self.remote_user, "field": BLURHASH_FIELD},
        )

    def test_remote_avatar_carries_blurhash(self) -> None:
        mock_query = AsyncMock(
            return_value={"avatar_url": AVATAR_URL, BLURHASH_FIELD: BLURHASH}
        )
        with patch.object(self.federation_client, "make_query", mock_query):
            channel = self.make_request(
                "GET", "/profile/%s/avatar_url" % (self.remote_user,)
            )

        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(
            channel.json_body, {"avatar_url": AVATAR_URL, BLURHASH_FIELD: BLURHASH}
        )

    def test_remote_not_found(self) -> None:
        mock_query = AsyncMock(
            side_effect=HttpResponseException(
                404,
                "Not Found",
                b'{"errcode": "M_NOT_FOUND", "error": "Profile was not found"}',
            )
        )
        with patch.object(self.federation_client, "make_query", mock_query):
            channel = self.make_request("GET", "/profile/%s" % (self.remote_user,))

        self.assertEqual(channel.code, 404, channel.result)
        self.assertEqual(channel.json_body["errcode"], Codes.NOT_FOUND)

    def test_remote_forbidden(self) -> None:
        """Other client errors from the remote server become a 502."""
        mock_query = AsyncMock(
            side_effect=HttpResponseException(403, "Forbidden", b"{}")
        )
        with patch.object(self.federation_client, "make_query", mock_query):
            channel = self.make_request("GET", "/profile/%s" % (self.remote_user,))

        self.assertEqual(channel.code, 502, channel.result)

    def test_remote_unreachable(self) -> None:
        mock_query = AsyncMock(
            side_effect=RequestSendFailed(ConnectionError("boom"), can_retry=True)
        )
        with patch.object(self.federation_client, "make_query", mock_query):
            channel = self.make_request("GET", "/profile/%s" % (self.remote_user,))

        self.assertEqual(channel.code, 502, channel.result)
