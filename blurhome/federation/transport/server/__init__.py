#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2021 The Matrix.org Foundation C.I.C.
# Copyright 2020 Sorunome
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
from typing import TYPE_CHECKING

from blurhome.federation.transport.server._base import Authenticator
from blurhome.federation.transport.server.federation import (
    FEDERATION_SERVLET_CLASSES,
)
from blurhome.http.server import HttpServer, JsonResource

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class TransportLayerServer(JsonResource):
    """Handles incoming federation HTTP requests"""

    def __init__(self, hs: "HomeServer"):
        """Initialize the TransportLayerServer

        Will by default register all servlets.

        Args:
            hs: homeserver
        """
        self.hs = hs
        self.clock = hs.get_clock()

        super().__init__(hs, canonical_json=False)

        self.authenticator = Authenticator(hs)

        self.register_servlets()

    def register_servlets(self) -> None:
        """Register all servlets associated with this resource"""
        register_servlets(
            self.hs,
            resource=self,
            authenticator=self.authenticator,
        )


def register_servlets(
    hs: "HomeServer",
    resource: HttpServer,
    authenticator: Authenticator,
) -> None:
    """Initialize and register servlet classes.

    Will by default register all servlets.

    Args:
        hs: homeserver
        resource: resource class to register to
        authenticator: authenticator to use
    """
    for servletclass in FEDERATION_SERVLET_CLASSES:
        servletclass(
            hs=hs,
            authenticator=authenticator,
            server_name=hs.hostname,
        ).register(resource)
