#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2020-2021 The Matrix.org Foundation C.I.C.
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
from typing import Optional

import attr

from blurhome.storage._base import SQLBaseStore
from blurhome.types import UserID


@attr.s(slots=True, frozen=True, auto_attribs=True)
class LocalMedia:
    media_id: str
    media_type: str
    media_length: int
    upload_name: Optional[str]
    created_ts: int
    user_id: Optional[str]
    sha256: Optional[str]
    # MSC2448: only present if requested at upload time and computed successfully.
    blurhash: Optional[str]


_LOCAL_MEDIA_COLUMNS = (
    "media_id",
    "media_type",
    "media_length",
    "upload_name",
    "created_ts",
    "user_id",
    "sha256",
    "blurhash",
)


class MediaRepositoryStore(SQLBaseStore):
    async def get_local_media(self, media_id: str) -> Optional[LocalMedia]:
        """Get the metadata for a local piece of media

        Returns:
            None if the media_id doesn't exist.
        """
        row = await self.db_pool.simple_select_one(
            "local_media_repository",
            {"media_id": media_id},
            _LOCAL_MEDIA_COLUMNS[1:],
            allow_none=True,
            desc="get_local_media",
        )
        if row is None:
            return None
        return LocalMedia(media_id, *row)

    async def store_local_media(
        self,
        media_id: str,
        media_type: str,
        time_now_ms: int,
        upload_name: Optional[str],
        media_length: int,
        user_id: UserID,
        sha256: Optional[str] = None,
        blurhash: Optional[str] = None,
    ) -> None:
        """Record a newly uploaded piece of media.

        The row is written exactly once, so the blurhash (if any) must already
        be known.
        """
        await self.db_pool.simple_insert(
            "local_media_repository",
            {
                "media_id": media_id,
                "media_type": media_type,
                "created_ts": time_now_ms,
                "upload_name": upload_name,
                "media_length": media_length,
                "user_id": user_id.to_string(),
                "sha256": sha256,
                "blurhash": blurhash,
            },
            desc="store_local_media",
        )

