#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
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
# [This file includes modifications made by New Vector Limited]
#
#

from twisted.test.proto_helpers import MemoryReactor

from blurhome.api.errors import Codes
from blurhome.rest.client import login, room
from blurhome.server import HomeServer
from blurhome.util import Clock

from tests import unittest

LOGIN_URL = b"/_matrix/client/r0/login"


class LoginRestServletTestCase(unittest.HomeserverTestCase):
    servlets = [
        login.register_servlets,
        room.register_servlets,
    ]

    def prepare(self, reactor: MemoryReactor, clock: Clock, hs: HomeServer) -> None:
        self.user_id = self.register_user("kermit", "monkey")

    def test_get_flows(self) -> None:
        channel = self.make_request("GET", LOGIN_URL)
        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(channel.json_body, {"flows": [{"type": "m.login.password"}]})

    def test_login_with_localpart(self) -> None:
        channel = self.make_request(
            "POST",
            LOGIN_URL,
            {"type": "m.login.password", "user": "kermit", "password": "monkey"},
        )
        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(channel.json_body["user_id"], self.user_id)
        self.assertEqual(channel.json_body["home_server"], "test")
        self.assertTrue(channel.json_body["access_token"].startswith("blr_"))

    def test_login_with_identifier(self) -> None:
        channel = self.make_request(
            "POST",
            LOGIN_URL,
            {
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": self.user_id},
                "password": "monkey",
                "device_id": "FROG",
            },
        )
        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(channel.json_body["device_id"], "FROG")

    def test_token_is_usable(self) -> None:
        tok = self.login("kermit", "monkey")
        self.helper.create_room_as(self.user_id, tok=tok)

    def test_wrong_password(self) -> None:
        channel = self.make_request(
            "POST",
            LOGIN_URL,
            {"type": "m.login.password", "user": "kermit", "password": "piggy"},
        )
        self.assertEqual(channel.code, 403, channel.result)
        self.assertEqual(channel.json_body["errcode"], Codes.FORBIDDEN)

    def test_unknown_user(self) -> None:
        channel = self.make_request(
            "POST",
            LOGIN_URL,
            {"type": "m.login.password", "user": "gonzo", "password": "monkey"},
        )
        self.assertEqual(channel.code, 403, channel.result)

    def test_unknown_login_type(self) -> None:
        channel = self.make_request(
            "POST", LOGIN_URL, {"type": "m.login.token", "token": "abc"}
        )
        self.assertEqual(channel.code, 400, channel.result)

    def test_missing_password(self) -> None:
        channel = self.make_request(
            "POST", LOGIN_URL, {"type": "m.login.password", "user": "kermit"}
        )
        self.assertEqual(channel.code, 400, channel.result)
        self.assertEqual(channel.json_body["errcode"], Codes.MISSING_PARAM)
