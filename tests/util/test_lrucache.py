#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
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
# [This file includes modifications made by New Vector Limited]
#
#

from blurhome.util.caches.lrucache import LruCache

from tests import unittest


class LruCacheTestCase(unittest.TestCase):
    def test_get_set(self) -> None:
        cache: LruCache[str, str] = LruCache(1)
        cache.set("key", "value")
        self.assertEqual(cache.get("key"), "value")
        self.assertIn("key", cache)

    def test_get_default(self) -> None:
        cache: LruCache[str, str] = LruCache(1)
        self.assertIsNone(cache.get("key"))
        self.assertEqual(cache.get("key", "default"), "default")

    def test_eviction(self) -> None:
        cache: LruCache[int, int] = LruCache(2)
        cache.set(1, 1)
        cache.set(2, 2)

        self.assertEqual(cache.get(1), 1)
        self.assertEqual(cache.get(2), 2)

        cache.set(3, 3)

        self.assertEqual(cache.get(1), None)
        self.assertEqual(cache.get(2), 2)
        self.assertEqual(cache.get(3), 3)

    def test_get_refreshes_entry(self) -> None:
        """Reading an entry protects it from eviction."""
        cache: LruCache[int, int] = LruCache(2)
        cache.set(1, 1)
        cache.set(2, 2)
        cache.get(1)
        cache.set(3, 3)

        self.assertEqual(cache.get(1), 1)
        self.assertIsNone(cache.get(2))

    def test_clear(self) -> None:
        cache: LruCache[str, int] = LruCache(2)
        cache.set("key", 1)
        cache.set("key2", 2)
        cache.clear()
        self.assertEqual(len(cache), 0)

    def test_bad_size(self) -> None:
        with self.assertRaises(ValueError):
            LruCache(0)
