#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2015-2016 OpenMarket Ltd
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
from typing import TYPE_CHECKING, Tuple

from blurhome.api.errors import Codes, MatrixError
from blurhome.http.server import HttpServer
from blurhome.http.servlet import (
    RestServlet,
    assert_params_in_dict,
    parse_json_object_from_request,
)
from blurhome.http.site import BlurhomeRequest
from blurhome.rest.client._base import client_patterns
from blurhome.types import JsonDict
from blurhome.util.stringutils import random_string

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class RegisterRestServlet(RestServlet):
    """Registers a user with a username and password.

    Interactive authentication is not supported; when registration is enabled
    anyone may create an account.
    """

    PATTERNS = client_patterns("/register")

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.hs = hs
        self.auth_handler = hs.get_auth_handler()
        self.registration_handler = hs.get_registration_handler()
        self._enable_registration = hs.config.server.enable_registration

    async def on_POST(self, request: BlurhomeRequest) -> Tuple[int, JsonDict]:
        if not self._enable_registration:
            raise MatrixError(
                403, "Registration has been disabled", errcode=Codes.FORBIDDEN
            )

        body = parse_json_object_from_request(request)
        assert_params_in_dict(body, ["username", "password"])

        desired_username = body["username"]
        password = body["password"]
        if not isinstance(desired_username, str) or not isinstance(password, str):
            raise MatrixError(400, "Invalid username or password", Codes.INVALID_PARAM)

        user_id = await self.registration_handler.register_user(
            localpart=desired_username, password=password
        )

        result: JsonDict = {"user_id": user_id, "home_server": self.hs.hostname}
        if not body.get("inhibit_login", False):
            device_id = body.get("device_id")
            if not isinstance(device_id, str):
                device_id = random_string(10).upper()
            result["device_id"] = device_id
            result["access_token"] = (
                await self.auth_handler.create_access_token_for_user(
                    user_id, device_id=device_id
                )
            )

        return 200, result


def register_servlets(hs: "HomeServer", http_server: HttpServer) -> None:
    RegisterRestServlet(hs).register(http_server)
