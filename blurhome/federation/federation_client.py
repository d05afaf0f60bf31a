#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2015-2022 The Matrix.org Foundation C.I.C.
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
from typing import TYPE_CHECKING, Any, Dict

from blurhome.federation.transport.client import TransportLayerClient
from blurhome.metrics import SERVER_NAME_LABEL, meter
from blurhome.types import JsonDict

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

sent_queries_counter = meter.create_counter(
    "blurhome_federation_client_sent_queries",
    description="Number of federation queries sent, labelled by `type`",
)


class FederationClient:
    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.server_name = hs.hostname
        self.transport_layer = TransportLayerClient(hs)

    async def make_query(
        self,
        destination: str,
        query_type: str,
        args: Dict[str, Any],
    ) -> JsonDict:
        """Sends a federation Query to a remote homeserver of the given type
        and arguments.

        Args:
            destination: Domain name of the remote homeserver
            query_type: Category of the query type; should match the
                handler name used in register_query_handler().
            args: Mapping of strings to strings containing the details
                of the query request.

        Returns:
            The JSON object from the response

        Raises:
            FederationDeniedError: if `destination` is not on our federation
                whitelist.
            HttpResponseException: if the remote server returned an error.
            RequestSendFailed: if we could not reach the remote server.
        """
        sent_queries_counter.add(
            1, {"type": query_type, SERVER_NAME_LABEL: self.server_name}
        )

        return await self.transport_layer.make_query(destination, query_type, args)
