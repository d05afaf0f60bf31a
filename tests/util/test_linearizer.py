#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2016 OpenMarket Ltd
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

from typing import Hashable, Tuple

from twisted.internet import defer
from twisted.internet.defer import CancelledError, Deferred

from blurhome.util.async_helpers import Linearizer

from tests import unittest


class LinearizerTestCase(unittest.TestCase):
    def _start_task(
        self, linearizer: Linearizer, key: Hashable
    ) -> Tuple["Deferred[None]", "Deferred[None]", "Deferred[None]"]:
        """Starts a task which acquires the linearizer lock, blocks, then completes.

        Returns:
            A tuple containing:
             * A cancellable `Deferred` for the entire task.
             * A `Deferred` that resolves once the task acquires the lock.
             * A `Deferred` that blocks the task and releases the lock when
               resolved.
        """
        acquired_d: "Deferred[None]" = Deferred()
        unblock_d: "Deferred[None]" = Deferred()

        async def task() -> None:
            async with linearizer.queue(key):
                acquired_d.callback(None)
                await unblock_d

        d = defer.ensureDeferred(task())
        return d, acquired_d, unblock_d

    def test_linearizer(self) -> None:
        """Tests that a task is queued up behind an earlier task."""
        linearizer = Linearizer()

        key = object()

        _, acquired_d1, unblock1 = self._start_task(linearizer, key)
        self.assertTrue(acquired_d1.called)

        _, acquired_d2, unblock2 = self._start_task(linearizer, key)
        self.assertTrue(linearizer.is_queued(key))
        self.assertFalse(acquired_d2.called)

        # Once the first task is done, the second task can continue.
        unblock1.callback(None)
        self.assertTrue(acquired_d2.called)

        unblock2.callback(None)
        self.assertFalse(linearizer.is_queued(key))

    def test_different_keys(self) -> None:
        """Tasks on different keys run concurrently."""
        linearizer = Linearizer()

        _, acquired_d1, unblock1 = self._start_task(linearizer, "a")
        _, acquired_d2, unblock2 = self._start_task(linearizer, "b")

        self.assertTrue(acquired_d1.called)
        self.assertTrue(acquired_d2.called)

        unblock1.callback(None)
        unblock2.callback(None)
        self.assertEqual(linearizer.key_to_defer, {})

    def test_multiple_entries(self) -> None:
        """Tests a `Linearizer` with a concurrency above 1."""
        limiter = Linearizer(max_count=3)

        key = object()

        _, acquired_d1, unblock1 = self._start_task(limiter, key)
        self.assertTrue(acquired_d1.called)

        _, acquired_d2, unblock2 = self._start_task(limiter, key)
        self.assertTrue(acquired_d2.called)

        _, acquired_d3, unblock3 = self._start_task(limiter, key)
        self.assertTrue(acquired_d3.called)

        # These next two tasks have to wait.
        _, acquired_d4, unblock4 = self._start_task(limiter, key)
        self.assertFalse(acquired_d4.called)

        _, acquired_d5, unblock5 = self._start_task(limiter, key)
        self.assertFalse(acquired_d5.called)

        # Once the first task completes, the fourth task can continue.
        unblock1.callback(None)
        self.assertTrue(acquired_d4.called)
        self.assertFalse(acquired_d5.called)

        # Once the third task completes, the fifth task can continue.
        unblock3.callback(None)
        self.assertTrue(acquired_d5.called)

        # Make all tasks finish.
        unblock2.callback(None)
        unblock4.callback(None)
        unblock5.callback(None)

        # The next task shouldn't have to wait.
        _, acquired_d6, unblock6 = self._start_task(limiter, key)
        self.assertTrue(acquired_d6.called)
        unblock6.callback(None)

    def test_cancellation(self) -> None:
        """Tests cancellation while waiting for a `Linearizer`."""
        linearizer = Linearizer()

        key = object()

        d1, acquired_d1, unblock1 = self._start_task(linearizer, key)
        self.assertTrue(acquired_d1.called)

        # Create a second task, waiting for the first task.
        d2, acquired_d2, _ = self._start_task(linearizer, key)
        self.assertFalse(acquired_d2.called)

        # Create a third task, waiting for the second task.
        d3, acquired_d3, unblock3 = self._start_task(linearizer, key)
        self.assertFalse(acquired_d3.called)

        # Cancel the waiting second task.
        d2.cancel()

        unblock1.callback(None)
        self.successResultOf(d1)

        # The cancelled task must not have acquired the lock.
        self.assertTrue(d2.called)
        self.failureResultOf(d2, CancelledError)
        self.assertFalse(acquired_d2.called)

        # The third task should continue running.
        self.assertTrue(
            acquired_d3.called,
            "Third task did not get the lock after the second task was cancelled",
        )
        unblock3.callback(None)
        self.successResultOf(d3)

    def test_bad_max_count(self) -> None:
        with self.assertRaises(ValueError):
            Linearizer(max_count=0)
