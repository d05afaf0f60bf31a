#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2019-2021 Matrix.org Federation C.I.C
# Copyright 2015, 2016 OpenMarket Ltd
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
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Tuple

from blurhome.api.errors import NotFoundError
from blurhome.metrics import SERVER_NAME_LABEL, federation_received_queries_counter
from blurhome.types import JsonDict

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

QueryHandler = Callable[[dict], Awaitable[JsonDict]]


class FederationServer:
    def __init__(self, hs: "HomeServer"):
        self.server_name = hs.hostname
        self.registry = hs.get_federation_registry()
        self._metrics_domains = hs.config.federation.federation_metrics_domains

    async def on_query_request(
        self, query_type: str, origin: str, args: Dict[str, str]
    ) -> Tuple[int, JsonDict]:
        if origin not in self._metrics_domains:
            origin = "other"
        federation_received_queries_counter.add(
            1,
            {"type": query_type, "origin": origin, SERVER_NAME_LABEL: self.server_name},
        )

        resp = await self.registry.on_query(query_type, args)
        return 200, resp


class FederationHandlerRegistry:
    """Allows classes to register themselves as handlers for a given query
    type arriving over federation.
    """

    def __init__(self, hs: "HomeServer"):
        self.query_handlers: Dict[str, QueryHandler] = {}

    def register_query_handler(self, query_type: str, handler: QueryHandler) -> None:
        """Sets the handler callable that will be used to handle an incoming
        federation query of the given type.

        Args:
            query_type: Category name of the query, which should match
                the string used by make_query.
            handler: Invoked to handle
                incoming queries of this type. The return will be yielded
                on and the result used as the response to the query request.
        """
        if query_type in self.query_handlers:
            raise KeyError("Already have a Query handler for %s" % (query_type,))

        logger.info("Registering federation query handler for %r", query_type)

        self.query_handlers[query_type] = handler

    async def on_query(self, query_type: str, args: dict) -> JsonDict:
        handler = self.query_handlers.get(query_type)
        if handler:
            return await handler(args)

        logger.warning("No handler registered for query type %s", query_type)
        raise NotFoundError("No handler for Query type '%s'" % (query_type,))
