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
from typing import Any, List, Optional

import attr

from blurhome.config._base import Config, ConfigError
from blurhome.config._util import validate_config
from blurhome.types import JsonDict
from blurhome.util.stringutils import parse_and_validate_server_name

logger = logging.getLogger(__name__)

DEFAULT_BIND_ADDRESSES = ["::", "0.0.0.0"]

KNOWN_RESOURCES = {
    "client",
    "federation",
    "keys",
    "media",
    "metrics",
}

KNOWN_LISTENER_TYPES = {
    "http",
    "metrics",
}

_LISTENERS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["port"],
        "properties": {
            "port": {"type": "integer", "minimum": 0, "maximum": 65535},
            "bind_addresses": {"type": "array", "items": {"type": "string"}},
            "type": {"type": "string", "enum": sorted(KNOWN_LISTENER_TYPES)},
            "x_forwarded": {"type": "boolean"},
            "resources": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["names"],
                    "properties": {
                        "names": {
                            "type": "array",
                            "items": {"type": "string", "enum": sorted(KNOWN_RESOURCES)},
                        },
                    },
                },
            },
        },
    },
}


@attr.s(slots=True, frozen=True)
class HttpResourceConfig:
    names: List[str] = attr.ib(
        factory=list,
        validator=attr.validators.deep_iterable(attr.validators.in_(KNOWN_RESOURCES)),
    )


@attr.s(slots=True, frozen=True, auto_attribs=True)
class HttpListenerConfig:
    """Object describing the http-specific parts of the config of a listener"""

    x_forwarded: bool = False
    resources: List[HttpResourceConfig] = attr.Factory(list)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class ListenerConfig:
    """Object describing the configuration of a single listener."""

    port: int = attr.ib(validator=attr.validators.instance_of(int))
    bind_addresses: List[str] = attr.ib()
    type: str = attr.ib(validator=attr.validators.in_(KNOWN_LISTENER_TYPES))

    # http_options is only populated if type=http
    http_options: Optional[HttpListenerConfig] = None

    def get_site_tag(self) -> str:
        """The tag used to identify requests on this listener in the logs."""
        return str(self.port)


def parse_listener_def(num: int, listener: Any) -> ListenerConfig:
    """parse a listener config from the config file"""
    listener_type = listener.get("type", "http")

    port = listener["port"]

    bind_addresses = listener.get("bind_addresses", [])
    bind_address = listener.get("bind_address")
    # if bind_address was specified, add it to the list of addresses
    if bind_address:
        bind_addresses.append(bind_address)

    # if we still have an empty list of addresses, use the default list
    if not bind_addresses:
        if listener_type == "metrics":
            # the metrics listener doesn't support IPv6
            bind_addresses.append("0.0.0.0")
        else:
            bind_addresses.extend(DEFAULT_BIND_ADDRESSES)

    http_config = None
    if listener_type == "http":
        try:
            resources = [
                HttpResourceConfig(**res) for res in listener.get("resources", [])
            ]
        except ValueError as e:
            raise ConfigError("Unknown listener resource") from e

        http_config = HttpListenerConfig(
            x_forwarded=listener.get("x_forwarded", False),
            resources=resources,
        )

    return ListenerConfig(port, bind_addresses, listener_type, http_config)


class ServerConfig(Config):
    section = "server"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        self.server_name = config["server_name"]

        try:
            parse_and_validate_server_name(self.server_name)
        except ValueError as e:
            raise ConfigError(str(e), ("server_name",))

        public_baseurl = config.get("public_baseurl")
        if public_baseurl is None:
            public_baseurl = f"https://{self.server_name}/"
            logger.info("Using default public_baseurl %s", public_baseurl)
        elif public_baseurl[-1] != "/":
            public_baseurl += "/"
        self.public_baseurl: str = public_baseurl

        # Whether to require authentication to retrieve profile data (avatars,
        # display names and blurhashes) of other users through the client API.
        self.require_auth_for_profile_requests = config.get(
            "require_auth_for_profile_requests", False
        )

        self.enable_registration = bool(config.get("enable_registration", False))

        self.bcrypt_rounds = config.get("bcrypt_rounds", 12)
        if not isinstance(self.bcrypt_rounds, int) or not 4 <= self.bcrypt_rounds <= 31:
            raise ConfigError(
                "bcrypt_rounds must be an integer between 4 and 31",
                ("bcrypt_rounds",),
            )

        self.max_request_body_size = self.parse_size(
            config.get("max_request_body_size", "200K")
        )

        listeners = config.get("listeners", [])
        validate_config(_LISTENERS_SCHEMA, listeners, ("listeners",))
        self.listeners = [parse_listener_def(i, x) for i, x in enumerate(listeners)]

