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

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Tuple

from matrix_common.types.mxc_uri import MXCUri

from blurhome.http.server import HttpServer
from blurhome.http.servlet import (
    RestServlet,
    assert_params_in_dict,
    parse_json_object_from_request,
)
from blurhome.http.site import BlurhomeRequest
from blurhome.rest.admin._base import admin_patterns, assert_requester_is_admin
from blurhome.types import JsonDict
from blurhome.util.stringutils import parse_and_validate_server_name

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class MediaInfoRestServlet(RestServlet):
    """An admin API to inspect the metadata of a piece of local media.

    Example:
        GET /_blurhome/admin/v1/media/example.com/AQwafuaFswefuhsfAFAgsw
        200 OK
        {
            "media_id": "AQwafuaFswefuhsfAFAgsw",
            "media_type": "image/png",
            "media_length": 67,
            "upload_name": "pixel.png",
            "created_ts": 1700000000000,
            "user_id": "@alice:example.com",
            "sha256": "...",
            "blurhash": "00Fh:S",
            "blurhash_components": {"x": 1, "y": 1}
        }
    """

    PATTERNS = admin_patterns("/media/(?P<server_name>[^/]*)/(?P<media_id>[^/]*)$")

    def __init__(self, hs: "HomeServer"):
        self.auth = hs.get_auth()
        self.media_handler = hs.get_media_handler()

    async def on_GET(
        self, request: BlurhomeRequest, server_name: str, media_id: str
    ) -> Tuple[int, JsonDict]:
        await assert_requester_is_admin(self.auth, request)
        parse_and_validate_server_name(server_name)

        info = await self.media_handler.get_media_info_json(
            MXCUri(server_name, media_id)
        )
        return HTTPStatus.OK, info


class DecodeBlurhashRestServlet(RestServlet):
    """An admin API to read the component counts out of a blurhash.

    Example:
        POST /_blurhome/admin/v1/blurhash/decode
        {"blurhash": "LEHV6nWB2yk8pyo0adR*.7kCMdnj"}

        200 OK
        {"x_components": 4, "y_components": 3}
    """

    PATTERNS = admin_patterns("/blurhash/decode$")

    def __init__(self, hs: "HomeServer"):
        self.auth = hs.get_auth()
        self.media_handler = hs.get_media_handler()

    async def on_POST(self, request: BlurhomeRequest) -> Tuple[int, JsonDict]:
        await assert_requester_is_admin(self.auth, request)

        body = parse_json_object_from_request(request)
        assert_params_in_dict(body, ["blurhash"])

        return HTTPStatus.OK, self.media_handler.decode_blurhash(body["blurhash"])


def register_servlets_for_media(hs: "HomeServer", http_server: HttpServer) -> None:
    MediaInfoRestServlet(hs).register(http_server)
    DecodeBlurhashRestServlet(hs).register(http_server)
