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
import hashlib
from io import BytesIO
from unittest.mock import patch

from twisted.test.proto_helpers import MemoryReactor

from blurhome.api.errors import NotFoundError
from blurhome.media.blurhash import decode_components
from blurhome.media.filepath import MediaFilePaths
from blurhome.server import HomeServer
from blurhome.types import UserID
from blurhome.util import Clock

from tests import unittest
from tests.test_utils import make_png


class MediaRepositoryTestCase(unittest.HomeserverTestCase):
    def prepare(self, reactor: MemoryReactor, clock: Clock, hs: HomeServer) -> None:
        self.media_repo = hs.get_media_repository()
        self.store = hs.get_datastores().main
        self.user = UserID.from_string("@kermit:test")

    def _create(self, data: bytes, generate_blurhash: bool) -> tuple:
        return self.get_success(
            self.media_repo.create_content(
                "image/png",
                "kermit.png",
                BytesIO(data),
                len(data),
                self.user,
                generate_blurhash=generate_blurhash,
            )
        )

    def test_create_content(self) -> None:
        data = make_png(12, 12)
        mxc, blurhash = self._create(data, generate_blurhash=True)

        self.assertEqual(mxc.server_name, "test")
        assert blurhash is not None
        self.assertEqual(decode_components(blurhash), (4, 3))

        # The file is written to the media store
        with open(self.media_repo.filepaths.local_media_filepath(mxc.media_id), "rb") as f:
            self.assertEqual(f.read(), data)

        media_info = self.get_success(self.store.get_local_media(mxc.media_id))
        assert media_info is not None
        self.assertEqual(media_info.sha256, hashlib.sha256(data).hexdigest())
        self.assertEqual(media_info.blurhash, blurhash)
        self.assertEqual(media_info.user_id, "@kermit:test")

    def test_blurhash_only_on_request(self) -> None:
        assert self.media_repo.blurhash_generator is not None
        with patch.object(
            self.media_repo.blurhash_generator, "generate"
        ) as mock_generate:
            _, blurhash = self._create(make_png(4, 4), generate_blurhash=False)

        mock_generate.assert_not_called()
        self.assertIsNone(blurhash)

    def test_generation_failure_keeps_upload(self) -> None:
        mxc, blurhash = self._create(b"\x89PNG not really", generate_blurhash=True)

        self.assertIsNone(blurhash)
        media_info = self.get_success(self.store.get_local_media(mxc.media_id))
        assert media_info is not None
        self.assertIsNone(media_info.blurhash)

    @unittest.override_config({"blurhash": {"enabled": False}})
    def test_disabled(self) -> None:
        self.assertIsNone(self.media_repo.blurhash_generator)

        _, blurhash = self._create(make_png(4, 4), generate_blurhash=True)
        self.assertIsNone(blurhash)

    @unittest.override_config({"blurhash": {"cache_size": 0}})
    def test_no_cache(self) -> None:
        data = make_png(4, 4)
        _, first = self._create(data, generate_blurhash=True)
        _, second = self._create(data, generate_blurhash=True)
        self.assertEqual(first, second)

    def test_get_local_media_info_unknown(self) -> None:
        self.get_failure(
            self.media_repo.get_local_media_info("doesnotexist"), NotFoundError
        )


class MediaFilePathsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()

        self.filepaths = MediaFilePaths("/media_store")

    def test_local_media_filepath(self) -> None:
        """Test local media paths"""
        self.assertEqual(
            self.filepaths.local_media_filepath_rel("GerZNDnDZVjsOtardLuwfIBg"),
            "local_content/Ge/rZ/NDnDZVjsOtardLuwfIBg",
        )
        self.assertEqual(
            self.filepaths.local_media_filepath("GerZNDnDZVjsOtardLuwfIBg"),
            "/media_store/local_content/Ge/rZ/NDnDZVjsOtardLuwfIBg",
        )

    def test_invalid_media_ids(self) -> None:
        for media_id in ("../etc/passwd", "GerZ/NDnD", "abc", "", "GerZNDnD.."):
            with self.assertRaises(ValueError, msg=media_id):
                self.filepaths.local_media_filepath_rel(media_id)
