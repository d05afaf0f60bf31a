#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2017 New Vector Ltd
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
from typing import TYPE_CHECKING, Dict, Optional, Tuple

import attr
from signedjson.key import (
    decode_verify_key_bytes,
    encode_verify_key_base64,
    get_verify_key,
    is_signing_algorithm_supported,
)
from signedjson.sign import SignatureVerifyException, signature_ids, verify_signed_json
from signedjson.types import VerifyKey
from unpaddedbase64 import decode_base64

from blurhome.api.errors import (
    AuthError,
    Codes,
    FederationDeniedError,
    HttpResponseException,
    RequestSendFailed,
)
from blurhome.types import JsonDict
from blurhome.util.async_helpers import Linearizer

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

# Keys we were given in config, or which belong to us, never expire.
_NEVER_EXPIRES = 2**63 - 1


@attr.s(slots=True, frozen=True, auto_attribs=True)
class FetchKeyResult:
    verify_key: VerifyKey  # the key itself
    valid_until_ts: int  # how long we can use this key for


class KeyLookupError(ValueError):
    pass


class Keyring:
    """Handles verifying signed JSON objects and fetching the keys needed to do
    so.

    Keys come from three places, checked in order: our own signing keys, the
    keys configured in `federation_verify_keys`, and keys fetched from the
    server's `/_matrix/key/v2/server` endpoint, which are cached until their
    `valid_until_ts`.
    """

    def __init__(self, hs: "HomeServer"):
        self.clock = hs.get_clock()
        self.server_name = hs.hostname
        self.hs = hs

        self._local_keys: Dict[str, FetchKeyResult] = {}
        for signing_key in hs.config.key.signing_key:
            key_id = "%s:%s" % (signing_key.alg, signing_key.version)
            self._local_keys[key_id] = FetchKeyResult(
                get_verify_key(signing_key), _NEVER_EXPIRES
            )

        self._static_keys = hs.config.key.federation_verify_keys

        # (server_name, key_id) -> FetchKeyResult
        self._fetched_keys: Dict[Tuple[str, str], FetchKeyResult] = {}

        # Only one fetch per remote server at a time.
        self._fetch_linearizer = Linearizer(name="keyring_fetch")

    async def verify_json_for_server(
        self,
        server_name: str,
        json_object: JsonDict,
        validity_time: int,
    ) -> None:
        """Verify that a JSON object has been signed by a given server

        Completes if the the object was correctly signed, otherwise raises.

        Args:
            server_name: name of the server which must have signed this object
            json_object: object to be checked
            validity_time: timestamp at which we require the signing key to
                be valid. (0 implies we don't care)

        Raises:
            AuthError: 401 if no known key of `server_name` produced a valid
                signature.
        """
        key_ids = signature_ids(json_object, server_name)
        if not key_ids:
            raise AuthError(
                401,
                "Not signed by %s" % (server_name,),
                Codes.UNAUTHORIZED,
            )

        for key_id in key_ids:
            key = await self._get_server_verify_key(server_name, key_id, validity_time)
            if key is None:
                continue

            try:
                verify_signed_json(json_object, server_name, key.verify_key)
            except SignatureVerifyException as e:
                logger.debug(
                    "Error verifying signature for %s with key %s: %s",
                    server_name,
                    key_id,
                    e,
                )
                raise AuthError(
                    401,
                    "Invalid signature for server %s with key %s: %s"
                    % (server_name, key_id, e),
                    Codes.UNAUTHORIZED,
                )
            return

        raise AuthError(
            401,
            "Failed to find any key to satisfy signature of %s" % (server_name,),
            Codes.UNAUTHORIZED,
        )

    async def _get_server_verify_key(
        self, server_name: str, key_id: str, minimum_valid_until_ts: int
    ) -> Optional[FetchKeyResult]:
        if server_name == self.server_name:
            return self._local_keys.get(key_id)

        static_key = self._static_keys.get(server_name, {}).get(key_id)
        if static_key is not None:
            return FetchKeyResult(static_key, _NEVER_EXPIRES)

        cached = self._fetched_keys.get((server_name, key_id))
        if cached is not None and cached.valid_until_ts >= minimum_valid_until_ts:
            return cached

        async with self._fetch_linearizer.queue(server_name):
            # Someone else may have fetched the keys while we were waiting.
            cached = self._fetched_keys.get((server_name, key_id))
            if cached is not None and cached.valid_until_ts >= minimum_valid_until_ts:
                return cached

            try:
                await self._fetch_keys_from_server(server_name)
            except (
                KeyLookupError,
                RequestSendFailed,
                HttpResponseException,
                FederationDeniedError,
            ) as e:
                logger.warning(
                    "Error fetching server keys for %s: %s", server_name, e
                )
                return None

        cached = self._fetched_keys.get((server_name, key_id))
        if cached is not None and cached.valid_until_ts >= minimum_valid_until_ts:
            return cached
        return None

    async def _fetch_keys_from_server(self, server_name: str) -> None:
        logger.info("Requesting keys from %s", server_name)

        response = await self.hs.get_federation_http_client().get_json(
            destination=server_name,
            path="/_matrix/key/v2/server",
        )

        keys = process_v2_response(
            server_name, response, time_added_ms=self.clock.time_msec()
        )
        for key_id, key in keys.items():
            self._fetched_keys[(server_name, key_id)] = key


def process_v2_response(
    from_server: str, response_json: JsonDict, time_added_ms: int
) -> Dict[str, FetchKeyResult]:
    """Parse a 'Server Keys' structure from the result of a /key request

    The response must be signed by one of its own `verify_keys`, and must be
    for the server we asked.

    Args:
        from_server: the name of the server we fetched the keys from.
        response_json: the json-decoded Server Keys response object
        time_added_ms: the current time, used to spot already-expired responses

    Returns:
        Map from key_id to result object

    Raises:
        KeyLookupError if the response is malformed or not correctly
            self-signed.
    """
    try:
        server_name = response_json["server_name"]
        if server_name != from_server:
            raise KeyLookupError(
                "Expected a response for server %r not %r"
                % (from_server, server_name)
            )

        ts_valid_until_ms = response_json["valid_until_ts"]
        if not isinstance(ts_valid_until_ms, int):
            raise KeyLookupError("valid_until_ts is not an integer")
        if ts_valid_until_ms < time_added_ms:
            logger.warning(
                "Key response for %s has already expired (valid until %d)",
                server_name,
                ts_valid_until_ms,
            )

        verify_keys: Dict[str, FetchKeyResult] = {}
        for key_id, key_data in response_json["verify_keys"].items():
            if is_signing_algorithm_supported(key_id):
                key_bytes = decode_base64(key_data["key"])
                verify_key = decode_verify_key_bytes(key_id, key_bytes)
                verify_keys[key_id] = FetchKeyResult(
                    verify_key=verify_key, valid_until_ts=ts_valid_until_ms
                )

        verified = False
        for key_id in response_json["signatures"].get(server_name, {}):
            key = verify_keys.get(key_id)
            if not key:
                continue

            verify_signed_json(response_json, server_name, key.verify_key)
            verified = True
            break
    except KeyLookupError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise KeyLookupError("Malformed key response from %s: %s" % (from_server, e))
    except SignatureVerifyException as e:
        raise KeyLookupError(
            "Key response from %s has a bad self-signature: %s" % (from_server, e)
        )

    if not verified:
        raise KeyLookupError(
            "Key response for %s is not signed by the origin server" % (server_name,)
        )

    logger.debug(
        "Got keys %s from %s",
        [
            "%s=%s" % (key_id, encode_verify_key_base64(key.verify_key))
            for key_id, key in verify_keys.items()
        ],
        server_name,
    )
    return verify_keys
