#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2021 The Matrix.org Foundation C.I.C.
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

from blurhome.api.constants import LoginType
from blurhome.api.errors import Codes, MatrixError
from blurhome.http.server import HttpServer
from blurhome.http.servlet import (
    RestServlet,
    assert_params_in_dict,
    parse_json_object_from_request,
)
from blurhome.http.site import BlurhomeRequest
from blurhome.rest.client._base import client_patterns
from blurhome.types import JsonDict, UserID
from blurhome.util.stringutils import random_string

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class LoginRestServlet(RestServlet):
    PATTERNS = client_patterns("/login", v1=True)

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        self.hs = hs
        self.auth_handler = hs.get_auth_handler()

    def on_GET(self, request: BlurhomeRequest) -> Tuple[int, JsonDict]:
        return 200, {"flows": [{"type": LoginType.PASSWORD}]}

    async def on_POST(self, request: BlurhomeRequest) -> Tuple[int, JsonDict]:
        login_submission = parse_json_object_from_request(request)

        if login_submission.get("type") != LoginType.PASSWORD:
            raise MatrixError(400, "Unknown login type", Codes.UNKNOWN)

        assert_params_in_dict(login_submission, ["password"])
        password = login_submission["password"]
        if not isinstance(password, str):
            raise MatrixError(400, "Invalid password", Codes.INVALID_PARAM)

        user = _get_user_from_submission(login_submission)
        user_id = self.auth_handler.qualify_user_id(user)
        if not UserID.is_valid(user_id):
            raise MatrixError(400, "Invalid username", Codes.INVALID_PARAM)

        canonical_user_id = await self.auth_handler.validate_login(user_id, password)

        device_id = login_submission.get("device_id")
        if not isinstance(device_id, str):
            device_id = random_string(10).upper()

        access_token = await self.auth_handler.create_access_token_for_user(
            canonical_user_id, device_id=device_id
        )

        return 200, {
            "user_id": canonical_user_id,
            "access_token": access_token,
            "home_server": self.hs.hostname,
            "device_id": device_id,
        }


def _get_user_from_submission(submission: JsonDict) -> str:
    """Pull the user being logged in out of a login request body.

    Both the `identifier` form and the deprecated top-level `user` field are
    accepted.
    """
    identifier = submission.get("identifier")
    if isinstance(identifier, dict):
        if identifier.get("type") != "m.id.user":
            raise MatrixError(400, "Unknown login identifier type", Codes.UNKNOWN)
        user = identifier.get("user")
    else:
        user = submission.get("user")

    if not isinstance(user, str) or not user:
        raise MatrixError(400, "User identifier is missing 'user' key")
    return user


def register_servlets(hs: "HomeServer", http_server: HttpServer) -> None:
    LoginRestServlet(hs).register(http_server)
