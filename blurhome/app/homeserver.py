#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2019 The Matrix.org Foundation C.I.C.
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
#

import logging
import sys
from typing import Dict, List

from twisted.web.resource import Resource
from twisted.web.server import Site

from blurhome.api.urls import (
    ADMIN_PREFIX,
    CLIENT_API_PREFIX,
    FEDERATION_PREFIX,
    LEGACY_MEDIA_PREFIX,
    SERVER_KEY_PREFIX,
)
from blurhome.config._base import ConfigError, format_config_error
from blurhome.config.homeserver import HomeServerConfig
from blurhome.config.logger import setup_logging
from blurhome.config.server import ListenerConfig
from blurhome.federation.transport.server import TransportLayerServer
from blurhome.http.server import OptionsResource
from blurhome.http.site import BlurhomeSite
from blurhome.metrics import METRICS_PREFIX, MetricsResource, register_threadpool
from blurhome.rest import ClientRestResource, MediaRestResource
from blurhome.rest.admin import AdminRestResource
from blurhome.rest.key.v2 import KeyResource
from blurhome.server import HomeServer

logger = logging.getLogger("blurhome.app.homeserver")


class BlurhomeHomeServer(HomeServer):
    def _listener_http(self, listener_config: ListenerConfig) -> None:
        port = listener_config.port
        assert listener_config.http_options is not None
        site_tag = listener_config.get_site_tag()

        resources: Dict[str, Resource] = {}
        for res in listener_config.http_options.resources:
            for name in res.names:
                resources.update(self._configure_named_resource(name))

        root_resource = create_resource_tree(resources, OptionsResource())

        site = BlurhomeSite(
            "blurhome.access.http.%s" % (site_tag,),
            site_tag,
            listener_config,
            root_resource,
            self.version_string,
            max_request_body_size=self.config.server.max_request_body_size,
            reactor=self.get_reactor(),
            our_server_name=self.hostname,
        )

        for address in listener_config.bind_addresses:
            self.get_reactor().listenTCP(  # type: ignore[attr-defined]
                port, site, interface=address
            )

        logger.info("Blurhome now listening on TCP port %d", port)

    def _configure_named_resource(self, name: str) -> Dict[str, Resource]:
        """Build a resource map for a named resource

        Args:
            name: named resource: one of "client", "federation", etc

        Returns:
            map from path to HTTP resource
        """
        resources: Dict[str, Resource] = {}
        if name == "client":
            client_resource: Resource = ClientRestResource(self)

            resources.update(
                {
                    CLIENT_API_PREFIX: client_resource,
                    ADMIN_PREFIX: AdminRestResource(self),
                }
            )

        if name == "media":
            resources[LEGACY_MEDIA_PREFIX] = MediaRestResource(self)

        if name == "federation":
            resources[FEDERATION_PREFIX] = TransportLayerServer(self)

        if name in ["keys", "federation"]:
            resources[SERVER_KEY_PREFIX] = KeyResource(self)

        if name == "metrics" and self.config.metrics.enable_metrics:
            resources[METRICS_PREFIX] = MetricsResource()

        return resources

    def start_listening(self) -> None:
        for listener in self.config.server.listeners:
            if listener.type == "http":
                self._listener_http(listener)
            elif listener.type == "metrics":
                if not self.config.metrics.enable_metrics:
                    logger.warning(
                        "Metrics listener configured, but enable_metrics is not True!"
                    )
                else:
                    for address in listener.bind_addresses:
                        self.get_reactor().listenTCP(  # type: ignore[attr-defined]
                            listener.port,
                            _metrics_site(),
                            interface=address,
                        )
                    logger.info("Metrics now reporting on port %d", listener.port)


def _metrics_site() -> Site:
    root = create_resource_tree({METRICS_PREFIX: MetricsResource()}, Resource())
    return Site(root)


def create_resource_tree(
    desired_tree: Dict[str, Resource], root_resource: Resource
) -> Resource:
    """Create the resource tree for this homeserver.

    This is unduly complicated because Twisted does not support putting
    child resources more than 1 level deep at a time.

    Args:
        desired_tree: Dict from desired paths to desired resources.
        root_resource: The root resource to add the tree to.
    Returns:
        The ``root_resource`` with a tree of child resources added to it.
    """

    # ideally we'd just use getChild and putChild but getChild doesn't work
    # unless you give it a Request object IN ADDITION to the name :/ So
    # instead, we'll store a copy of this mapping so we can actually add
    # extra resources to existing nodes. See self._resource_id for the key.
    resource_mappings: Dict[str, Resource] = {}
    for full_path_str, res in desired_tree.items():
        # twisted requires all resources to be bytes
        full_path = full_path_str.encode("utf-8")

        logger.info("Attaching %s to path %s", res, full_path)
        last_resource = root_resource
        for path_seg in full_path.split(b"/")[1:-1]:
            if path_seg not in last_resource.listNames():
                # resource doesn't exist, so make a "dummy resource"
                child_resource: Resource = OptionsResource()
                last_resource.putChild(path_seg, child_resource)
                res_id = _resource_id(last_resource, path_seg)
                resource_mappings[res_id] = child_resource
                last_resource = child_resource
            else:
                res_id = _resource_id(last_resource, path_seg)
                last_resource = resource_mappings[res_id]

        # ===========================
        # now attach the actual desired resource
        last_path_seg = full_path.split(b"/")[-1]

        # if there is already a resource here, thieve its children and
        # replace it
        res_id = _resource_id(last_resource, last_path_seg)
        if res_id in resource_mappings:
            # there is a dummy resource at this path already, which needs
            # to be replaced with the desired resource.
            existing_dummy_resource = resource_mappings[res_id]
            for child_name in existing_dummy_resource.listNames():
                child_res_id = _resource_id(existing_dummy_resource, child_name)
                child_resource = resource_mappings[child_res_id]
                # steal the children
                res.putChild(child_name, child_resource)

        # finally, insert the desired resource in the right place
        last_resource.putChild(last_path_seg, res)
        res_id = _resource_id(last_resource, last_path_seg)
        resource_mappings[res_id] = res

    return root_resource


def _resource_id(resource: Resource, path_seg: bytes) -> str:
    """Construct an arbitrary resource ID so you can retrieve the mapping
    later.

    If you want to represent resource A putChild resource B with path C,
    the mapping should looks like _resource_id(A,C) = B.

    Args:
        resource: The *parent* Resource
        path_seg: The name of the child Resource to be attached.
    Returns:
        A unique string which can be a key to the child Resource.
    """
    return "%s-%r" % (resource, path_seg)


def setup(config_options: List[str]) -> BlurhomeHomeServer:
    """
    Args:
        config_options: The options passed to Blurhome. Usually `sys.argv[1:]`.

    Returns:
        A homeserver instance.
    """
    try:
        config = HomeServerConfig.load_config(
            "Blurhome Homeserver", config_options
        )
    except ConfigError as ce:
        sys.stderr.write("\n")
        for f in format_config_error(ce):
            sys.stderr.write(f)
        sys.stderr.write("\n")
        sys.exit(1)

    setup_logging(config)

    hs = BlurhomeHomeServer(
        config.server.server_name,
        config=config,
        version_string="Blurhome",
    )

    logger.info("Setting up server")

    try:
        hs.setup()
    except Exception as e:
        logger.exception("Failed to set up the homeserver: %s", e)
        sys.exit(1)

    return hs


def run(hs: HomeServer) -> None:
    reactor = hs.get_reactor()

    register_threadpool(
        name="default",
        server_name=hs.hostname,
        threadpool=reactor.getThreadPool(),  # type: ignore[attr-defined]
    )

    reactor.run()  # type: ignore[attr-defined]


def main() -> None:
    hs = setup(sys.argv[1:])

    assert isinstance(hs, BlurhomeHomeServer)
    hs.start_listening()

    run(hs)


if __name__ == "__main__":
    main()
