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

import threading
from collections import OrderedDict
from typing import Generic, Optional, TypeVar, Union, overload

KT = TypeVar("KT")
VT = TypeVar("VT")
T = TypeVar("T")


class LruCache(Generic[KT, VT]):
    """
    Least-recently-used cache, safe to share between the reactor and the
    thread pool.

    Args:
        max_size: the maximum number of entries the cache can hold.
        cache_name: the name of this cache, for logging.
    """

    def __init__(self, max_size: int, cache_name: Optional[str] = None):
        if max_size < 1:
            raise ValueError("max_size must be a positive integer")

        self.max_size = max_size
        self.cache_name = cache_name
        self._cache: "OrderedDict[KT, VT]" = OrderedDict()
        self._lock = threading.Lock()

    @overload
    def get(self, key: KT) -> Optional[VT]: ...

    @overload
    def get(self, key: KT, default: T) -> Union[VT, T]: ...

    def get(self, key: KT, default: Optional[T] = None) -> Union[None, VT, T]:
        with self._lock:
            try:
                value = self._cache[key]
            except KeyError:
                return default
            self._cache.move_to_end(key)
            return value

    def set(self, key: KT, value: VT) -> None:
        with self._lock:
            self._cache[key] = value
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: KT) -> bool:
        with self._lock:
            return key in self._cache
