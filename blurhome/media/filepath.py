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
import os
import re

# The media ID is used directly in file paths, so it must not contain
# anything that could be interpreted as a path component.
NEW_FORMAT_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _validate_path_component(name: str) -> str:
    """Checks that the given string can be safely used as a path component

    Args:
        name: The path component to check

    Returns:
        The path component if valid.

    Raises:
        ValueError: If `name` cannot be safely used as a path component.
    """
    if name in ("", os.curdir, os.pardir) or "/" in name or "\\" in name:
        raise ValueError(f"Invalid path component: {name!r}")

    return name


class MediaFilePaths:
    """Describes where files are stored on disk.

    The `*_rel` variants return a path relative to the base media store path.
    """

    def __init__(self, primary_base_path: str):
        self.base_path = primary_base_path

    def local_media_filepath_rel(self, media_id: str) -> str:
        if not NEW_FORMAT_ID_RE.match(media_id) or len(media_id) < 5:
            raise ValueError(f"Invalid media id: {media_id!r}")

        return os.path.join(
            "local_content",
            _validate_path_component(media_id[0:2]),
            _validate_path_component(media_id[2:4]),
            _validate_path_component(media_id[4:]),
        )

    def local_media_filepath(self, media_id: str) -> str:
        return os.path.join(self.base_path, self.local_media_filepath_rel(media_id))
