#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
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
#
import logging
from typing import TYPE_CHECKING

from matrix_common.types.mxc_uri import MXCUri

from blurhome.api.errors import Codes, MatrixError, NotFoundError
from blurhome.media.blurhash import MalformedBlurhashError, decode_components
from blurhome.storage.databases.main.media_repository import LocalMedia
from blurhome.types import JsonDict

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class MediaHandler:
    def __init__(self, hs: "HomeServer"):
        self.server_name = hs.hostname
        self.store = hs.get_datastores().main
        self.hs = hs
        self._is_mine_server_name = hs.is_mine_server_name

    async def get_media_info(self, mxc_uri: MXCUri) -> LocalMedia:
        """Get information about a media item.

        Args:
            mxc_uri: The MXC URI of the media item.

        Returns:
            The media information.

        Raises:
            NotFoundError if the media is unknown or was uploaded to another
                server.
        """
        if not self._is_mine_server_name(mxc_uri.server_name):
            raise NotFoundError("Media not found")

        media_info = await self.store.get_local_media(mxc_uri.media_id)
        if not media_info:
            raise NotFoundError("Media not found")
        return media_info

    async def get_media_info_json(self, mxc_uri: MXCUri) -> JsonDict:
        """Get information about a media item, as returned by the admin API.

        When the media has a blurhash, its component counts are decoded and
        included as `blurhash_components`.
        """
        media_info = await self.get_media_info(mxc_uri)

        ret: JsonDict = {
            "media_id": media_info.media_id,
            "media_type": media_info.media_type,
            "media_length": media_info.media_length,
            "upload_name": media_info.upload_name,
            "created_ts": media_info.created_ts,
            "user_id": media_info.user_id,
            "sha256": media_info.sha256,
            "blurhash": media_info.blurhash,
        }

        if media_info.blurhash is not None:
            try:
                x, y = decode_components(media_info.blurhash)
            except MalformedBlurhashError as e:
                # Only hashes we computed ourselves are stored here.
                logger.warning(
                    "Stored blurhash for media %s is malformed: %s",
                    media_info.media_id,
                    e,
                )
            else:
                ret["blurhash_components"] = {"x": x, "y": y}

        return ret

    @staticmethod
    def decode_blurhash(blurhash: object) -> JsonDict:
        """Decode the component counts of a client-supplied blurhash.

        Raises:
            MatrixError if the blurhash is malformed.
        """
        try:
            x, y = decode_components(blurhash)  # type: ignore[arg-type]
        except MalformedBlurhashError as e:
            raise MatrixError(400, str(e), Codes.INVALID_PARAM)
        return {"x_components": x, "y_components": y}
