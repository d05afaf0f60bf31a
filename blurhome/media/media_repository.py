#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2018-2021 The Matrix.org Foundation C.I.C.
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
from typing import IO, TYPE_CHECKING, Optional, Tuple

from matrix_common.types.mxc_uri import MXCUri

from blurhome.api.errors import NotFoundError
from blurhome.http.site import BlurhomeRequest
from blurhome.logging.context import defer_to_thread
from blurhome.media._base import FileInfo, respond_404, respond_with_responder
from blurhome.media.blurhash import BlurhashGenerator, ImageDecodeError
from blurhome.media.filepath import MediaFilePaths
from blurhome.media.media_storage import MediaStorage, SHA256TransparentIOReader
from blurhome.metrics import (
    SERVER_NAME_LABEL,
    blurhash_generation_timer,
    blurhash_outcome_counter,
    media_upload_counter,
)
from blurhome.storage.databases.main.media_repository import LocalMedia
from blurhome.types import UserID
from blurhome.util.stringutils import random_string

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class MediaRepository:
    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.clock = hs.get_clock()
        self.server_name = hs.hostname
        self.store = hs.get_datastores().main
        self._is_mine_server_name = hs.is_mine_server_name

        self.max_upload_size = hs.config.media.max_upload_size
        self.max_image_pixels = hs.config.media.max_image_pixels

        self.primary_base_path: str = hs.config.media.media_store_path
        self.filepaths: MediaFilePaths = MediaFilePaths(self.primary_base_path)
        self.media_storage = MediaStorage(hs, self.primary_base_path, self.filepaths)

        blurhash_config = hs.config.media.blurhash
        self.blurhash_generator: Optional[BlurhashGenerator] = None
        if blurhash_config.enabled:
            self.blurhash_generator = BlurhashGenerator(
                x_components=blurhash_config.x_components,
                y_components=blurhash_config.y_components,
                max_image_pixels=self.max_image_pixels,
                cache_size=blurhash_config.cache_size,
            )

    async def create_content(
        self,
        media_type: str,
        upload_name: Optional[str],
        content: IO,
        content_length: int,
        auth_user: UserID,
        generate_blurhash: bool = False,
    ) -> Tuple[MXCUri, Optional[str]]:
        """Store uploaded content for a local user and return its MXC URI.

        Args:
            media_type: The content type of the file.
            upload_name: The name of the file, if provided.
            content: A file like object that is the content to store
            content_length: The length of the content
            auth_user: The user_id of the uploader
            generate_blurhash: Whether the uploader asked for a blurhash of the
                content to be computed.

        Returns:
            The mxc url of the stored content, and its blurhash if one was
            requested and could be computed.
        """
        media_id = random_string(24)

        file_info = FileInfo(server_name=None, file_id=media_id)
        sha256reader = SHA256TransparentIOReader(content)
        # This implements all of IO as it has a passthrough
        fname = await self.media_storage.store_file(sha256reader.wrap(), file_info)
        sha256 = sha256reader.hexdigest()

        logger.info("Stored local media in file %r", fname)

        blurhash = None
        if generate_blurhash:
            blurhash = await self._generate_blurhash(media_id, file_info, sha256)

        await self.store.store_local_media(
            media_id=media_id,
            media_type=media_type,
            time_now_ms=self.clock.time_msec(),
            upload_name=upload_name,
            media_length=content_length,
            user_id=auth_user,
            sha256=sha256,
            blurhash=blurhash,
        )

        media_upload_counter.add(1, {SERVER_NAME_LABEL: self.server_name})

        return MXCUri(self.server_name, media_id), blurhash

    async def _generate_blurhash(
        self, media_id: str, file_info: FileInfo, sha256: str
    ) -> Optional[str]:
        """Compute the blurhash of a freshly stored upload.

        Failures are logged and counted but never raised: the upload goes
        ahead without a hash.
        """
        generator = self.blurhash_generator
        if generator is None:
            logger.debug(
                "Not generating blurhash for %s: blurhash generation is disabled",
                media_id,
            )
            self._record_blurhash_outcome("skipped")
            return None

        start = self.clock.time()
        try:
            data = await self.media_storage.read_file(file_info)
            blurhash = await defer_to_thread(
                self.hs.get_reactor(), generator.generate, data, sha256
            )
        except ImageDecodeError as e:
            logger.info("Unable to generate a blurhash for media %s: %s", media_id, e)
            self._record_blurhash_outcome("failed")
            return None
        except (OSError, ValueError) as e:
            logger.info(
                "Failed to generate a blurhash for media %s: %s %s",
                media_id,
                type(e).__name__,
                e,
            )
            self._record_blurhash_outcome("failed")
            return None

        blurhash_generation_timer.record(
            self.clock.time() - start, {SERVER_NAME_LABEL: self.server_name}
        )
        self._record_blurhash_outcome("generated")
        logger.debug("Generated blurhash %s for media %s", blurhash, media_id)

        return blurhash

    def _record_blurhash_outcome(self, outcome: str) -> None:
        blurhash_outcome_counter.add(
            1, {"outcome": outcome, SERVER_NAME_LABEL: self.server_name}
        )

    async def get_local_media_info(self, media_id: str) -> LocalMedia:
        """Gets the info dictionary for given local media ID.

        Raises:
            NotFoundError if the media is not known.
        """
        media_info = await self.store.get_local_media(media_id)
        if not media_info:
            raise NotFoundError("Unknown media")
        return media_info

    async def get_local_media(
        self, request: BlurhomeRequest, media_id: str, name: Optional[str]
    ) -> None:
        """Responds to requests for local media, if exists, or returns 404.

        Args:
            request: The incoming request.
            media_id: The media ID of the content. (This is the same as
                the file_id for local content.)
            name: Optional name that, if specified, will be used as
                the filename in the Content-Disposition header of the response.
        """
        media_info = await self.store.get_local_media(media_id)
        if not media_info:
            respond_404(request)
            return

        media_type = media_info.media_type
        media_length = media_info.media_length
        upload_name = name if name else media_info.upload_name

        file_info = FileInfo(server_name=None, file_id=media_id)
        responder = await self.media_storage.fetch_media(file_info)
        await respond_with_responder(
            request, responder, media_type, media_length, upload_name
        )
