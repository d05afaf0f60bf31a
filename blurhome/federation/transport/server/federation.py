#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
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
import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from blurhome.api.errors import Codes, MatrixError
from blurhome.federation.transport.server._base import (
    Authenticator,
    BaseFederationServlet,
)
from blurhome.types import JsonDict

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class BaseFederationServerServlet(BaseFederationServlet):
    """Abstract base class for federation servlet classes which provides a federation server handler.

    See BaseFederationServlet for more information.
    """

    def __init__(
        self,
        hs: "HomeServer",
        authenticator: Authenticator,
        server_name: str,
    ):
        super().__init__(hs, authenticator, server_name)
        self.handler = hs.get_federation_server()


class FederationQueryServlet(BaseFederationServerServlet):
    PATH = "/query/(?P<query_type>[^/]*)"

    # This is when we receive a server-server Query
    async def on_GET(
        self,
        origin: str,
        content: Optional[JsonDict],
        query: Mapping[bytes, Sequence[bytes]],
        query_type: str,
    ) -> Tuple[int, JsonDict]:
        try:
            args: Dict[str, str] = {
                k.decode("utf8"): v[0].decode("utf-8") for k, v in query.items()
            }
        except UnicodeDecodeError:
            raise MatrixError(
                HTTPStatus.BAD_REQUEST,
                "Query parameters must be valid UTF-8",
                errcode=Codes.INVALID_PARAM,
            )
        return await self.handler.on_query_request(query_type, origin, args)


FEDERATION_SERVLET_CLASSES: List[Type[BaseFederationServerServlet]] = [
    FederationQueryServlet,
]
