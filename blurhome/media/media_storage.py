#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2018-2021 The Matrix.org Foundation C.I.C.
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
import hashlib
import logging
import os
import shutil
from typing import IO, TYPE_CHECKING, Any, BinaryIO, Optional

from blurhome.logging.context import defer_to_thread
from blurhome.media._base import FileInfo, FileResponder, Responder
from blurhome.media.filepath import MediaFilePaths

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class MediaStorage:
    """Responsible for storing/fetching files from the local media store.

    Args:
        hs
        local_media_directory: Base path where we store media on disk
        filepaths
    """

    def __init__(
        self,
        hs: "HomeServer",
        local_media_directory: str,
        filepaths: MediaFilePaths,
    ):
        self.hs = hs
        self.reactor = hs.get_reactor()
        self.local_media_directory = local_media_directory
        self.filepaths = filepaths

    def _file_info_to_path(self, file_info: FileInfo) -> str:
        """Converts file_info into a relative path.

        The path is suitable for storing files under a directory, e.g. used to
        store files on local FS under the base media repository directory.
        """
        if file_info.server_name is not None:
            raise ValueError("Only local media is kept in the media store")
        return self.filepaths.local_media_filepath_rel(file_info.file_id)

    async def store_file(self, source: IO, file_info: FileInfo) -> str:
        """Write `source` to the on disk media store.

        Args:
            source: A file like object that should be written
            file_info: Info about the file to store

        Returns:
            the file path written to in the primary media store
        """
        path = self._file_info_to_path(file_info)
        fname = os.path.join(self.local_media_directory, path)

        await defer_to_thread(self.reactor, _write_file_synchronously, source, fname)

        return fname

    async def fetch_media(self, file_info: FileInfo) -> Optional[Responder]:
        """Attempts to fetch media described by file_info from the local media
        store.

        Returns:
            Returns a Responder if the file was found, otherwise None.
        """
        path = self._file_info_to_path(file_info)
        local_path = os.path.join(self.local_media_directory, path)
        if os.path.exists(local_path):
            logger.debug("responding with local file %s", local_path)
            return FileResponder(open(local_path, "rb"))
        logger.debug("local file %s did not exist", local_path)
        return None

    async def read_file(self, file_info: FileInfo) -> bytes:
        """Read the whole of a stored file, on the reactor thread pool."""
        path = self._file_info_to_path(file_info)
        local_path = os.path.join(self.local_media_directory, path)
        return await defer_to_thread(self.reactor, _read_file_synchronously, local_path)


def _write_file_synchronously(source: IO, dest_path: str) -> None:
    """Write `source` to the path `dest_path`, creating any missing parent
    directories.

    Args:
        source: A file like object that should be written
        dest_path: The path of the file to write to
    """
    dirname = os.path.dirname(dest_path)
    os.makedirs(dirname, exist_ok=True)

    source.seek(0)  # Ensure we read from the start of the file
    with open(dest_path, "wb") as dest:
        shutil.copyfileobj(source, dest)


def _read_file_synchronously(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class SHA256TransparentIOReader:
    """Will generate a SHA256 hash from a source stream transparently.

    Args:
        source: Source IO stream.
    """

    def __init__(self, source: BinaryIO):
        self._hash = hashlib.sha256()
        self._source = source

    def read(self, n: int = -1) -> bytes:
        """Wrapper for source.read() that feeds the hash.

        Args:
            n: the number of bytes to read.
        """
        bytes = self._source.read(n)
        self._hash.update(bytes)
        return bytes

    def hexdigest(self) -> str:
        """The digest of the data read from the source stream.

        Returns:
            The digest of the hash.
        """
        return self._hash.hexdigest()

    def wrap(self) -> IO:
        # This class implements a subset the IO interface and passes through everything else via __getattr__
        return self  # type: ignore[return-value]

    # Passthrough any other calls
    def __getattr__(self, attr_name: str) -> Any:
        return getattr(self._source, attr_name)


