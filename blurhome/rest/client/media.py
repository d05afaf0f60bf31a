#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2020 The Matrix.org Foundation C.I.C.
# Copyright 2015, 2016 OpenMarket Ltd
# Copyright (C) 2024 New Vector, Ltd
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

import logging
import re
from typing import IO, TYPE_CHECKING, Dict, List, Optional, Tuple

from blurhome.api.constants import BLURHASH_FIELD, GENERATE_BLURHASH_PARAM
from blurhome.api.errors import Codes, MatrixError
from blurhome.http.server import (
    HttpServer,
    respond_with_json,
    set_corp_headers,
    set_cors_headers,
)
from blurhome.http.servlet import RestServlet, parse_boolean
from blurhome.http.site import BlurhomeRequest
from blurhome.media._base import respond_404
from blurhome.media.media_repository import MediaRepository
from blurhome.types import JsonDict
from blurhome.util.stringutils import parse_and_validate_server_name

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class MediaConfigResource(RestServlet):
    PATTERNS = [re.compile(r"^/_matrix/client/v1/media/config$")]

    # Whether the caller must present an access token.
    REQUIRE_AUTH = True

    def __init__(self, hs: "HomeServer"):
        super().__init__()
        config = hs.config
        self.clock = hs.get_clock()
        self.auth = hs.get_auth()
        self.limits_dict = {"m.upload.size": config.media.max_upload_size}

    async def on_GET(self, request: BlurhomeRequest) -> None:
        if self.REQUIRE_AUTH:
            await self.auth.get_user_by_req(request)
        respond_with_json(request, 200, self.limits_dict, send_cors=True)


class LegacyMediaConfigResource(MediaConfigResource):
    PATTERNS = [re.compile(r"^/_matrix/media/(r0|v3|v1)/config$")]
    REQUIRE_AUTH = False


class DownloadResource(RestServlet):
    PATTERNS = [
        re.compile(
            "^/_matrix/client/v1/media/download/(?P<server_name>[^/]*)/(?P<media_id>[^/]*)(/(?P<file_name>[^/]*))?$"
        )
    ]

    REQUIRE_AUTH = True

    def __init__(self, hs: "HomeServer", media_repo: "MediaRepository"):
        super().__init__()
        self.media_repo = media_repo
        self._is_mine_server_name = hs.is_mine_server_name
        self.auth = hs.get_auth()

    async def on_GET(
        self,
        request: BlurhomeRequest,
        server_name: str,
        media_id: str,
        file_name: Optional[str] = None,
    ) -> None:
        # Validate the server name, raising if invalid
        parse_and_validate_server_name(server_name)

        if self.REQUIRE_AUTH:
            await self.auth.get_user_by_req(request)

        set_cors_headers(request)
        set_corp_headers(request)
        request.setHeader(
            b"Content-Security-Policy",
            b"sandbox;"
            b" default-src 'none';"
            b" script-src 'none';"
            b" plugin-types application/pdf;"
            b" style-src 'unsafe-inline';"
            b" media-src 'self';"
            b" object-src 'self';",
        )
        # Limited non-standard form of CSP for IE11
        request.setHeader(b"X-Content-Security-Policy", b"sandbox;")
        request.setHeader(b"Referrer-Policy", b"no-referrer")

        if self._is_mine_server_name(server_name):
            await self.media_repo.get_local_media(request, media_id, file_name)
        else:
            # Remote media is never fetched.
            respond_404(request)


class LegacyDownloadResource(DownloadResource):
    PATTERNS = [
        re.compile(
            "^/_matrix/media/(r0|v3|v1)/download/(?P<server_name>[^/]*)/(?P<media_id>[^/]*)(/(?P<file_name>[^/]*))?$"
        )
    ]

    REQUIRE_AUTH = False


class UploadServlet(RestServlet):
    """Stores an uploaded file and, when asked for with the
    `xyz.amorgan.generate_blurhash` query parameter, its blurhash.

    Example:
        POST /_matrix/media/v3/upload?xyz.amorgan.generate_blurhash=true
        200 OK
        {
            "content_uri": "mxc://example.com/AQwafuaFswefuhsfAFAgsw",
            "xyz.amorgan.blurhash": "LEHV6nWB2yk8pyo0adR*.7kCMdnj"
        }
    """

    PATTERNS = [re.compile("^/_matrix/media/(r0|v3|v1)/upload$")]

    def __init__(self, hs: "HomeServer", media_repo: "MediaRepository"):
        super().__init__()

        self.media_repo = media_repo
        self.auth = hs.get_auth()
        self.max_upload_size = hs.config.media.max_upload_size

    def _get_file_metadata(
        self, request: BlurhomeRequest
    ) -> Tuple[int, Optional[str], str]:
        raw_content_length = request.getHeader("Content-Length")
        if raw_content_length is None:
            raise MatrixError(msg="Request must specify a Content-Length", code=400)
        try:
            content_length = int(raw_content_length)
        except ValueError:
            raise MatrixError(msg="Content-Length value is invalid", code=400)
        if content_length > self.max_upload_size:
            raise MatrixError(
                msg="Upload request body is too large",
                code=413,
                errcode=Codes.TOO_LARGE,
            )

        args: Dict[bytes, List[bytes]] = request.args  # type: ignore
        upload_name_bytes = args.get(b"filename", [b""])[0]
        if upload_name_bytes:
            try:
                upload_name: Optional[str] = upload_name_bytes.decode("utf8")
            except UnicodeDecodeError:
                raise MatrixError(
                    msg="Invalid UTF-8 filename parameter: %r" % (upload_name_bytes,),
                    code=400,
                )

        # If the name is falsey (e.g. an empty byte string) ensure it is None.
        else:
            upload_name = None

        headers = request.requestHeaders

        if headers.hasHeader(b"Content-Type"):
            content_type_headers = headers.getRawHeaders(b"Content-Type")
            assert content_type_headers  # for mypy
            media_type = content_type_headers[0].decode("ascii")
        else:
            media_type = "application/octet-stream"

        return content_length, upload_name, media_type

    async def on_POST(self, request: BlurhomeRequest) -> None:
        requester = await self.auth.get_user_by_req(request)
        content_length, upload_name, media_type = self._get_file_metadata(request)
        generate_blurhash = parse_boolean(
            request, GENERATE_BLURHASH_PARAM, default=False
        )

        content: IO = request.content  # type: ignore
        content_uri, blurhash = await self.media_repo.create_content(
            media_type,
            upload_name,
            content,
            content_length,
            requester.user,
            generate_blurhash=generate_blurhash,
        )

        logger.info("Uploaded content with URI '%s'", content_uri)

        response: JsonDict = {"content_uri": str(content_uri)}
        if blurhash is not None:
            response[BLURHASH_FIELD] = blurhash

        respond_with_json(request, 200, response, send_cors=True)


def register_servlets(hs: "HomeServer", http_server: HttpServer) -> None:
    media_repo = hs.get_media_repository()
    MediaConfigResource(hs).register(http_server)
    DownloadResource(hs, media_repo).register(http_server)


def register_legacy_servlets(hs: "HomeServer", http_server: HttpServer) -> None:
    """Registers the `/_matrix/media` endpoints."""
    media_repo = hs.get_media_repository()
    UploadServlet(hs, media_repo).register(http_server)
    LegacyMediaConfigResource(hs).register(http_server)
    LegacyDownloadResource(hs, media_repo).register(http_server)
