#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2020 The Matrix.org Foundation C.I.C.
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

from blurhome.util.stringutils import parse_and_validate_server_name, random_string

from tests import unittest


class StringUtilsTestCase(unittest.TestCase):
    def test_random_string(self) -> None:
        value = random_string(24)
        self.assertEqual(len(value), 24)
        self.assertTrue(value.isalpha())
        self.assertNotEqual(value, random_string(24))

    def test_parse_and_validate_server_name(self) -> None:
        """Tests that server names are validated correctly."""
        self.assertEqual(parse_and_validate_server_name("test"), ("test", None))
        self.assertEqual(
            parse_and_validate_server_name("matrix.org:8448"), ("matrix.org", 8448)
        )
        self.assertEqual(parse_and_validate_server_name("[::1]"), ("[::1]", None))
        self.assertEqual(
            parse_and_validate_server_name("[::1]:8448"), ("[::1]", 8448)
        )
        self.assertEqual(
            parse_and_validate_server_name("1.2.3.4"), ("1.2.3.4", None)
        )

        for bad in (
            "",
            "test:",
            "test:port",
            "[::1",
            "[:zz]",
            "foo bar",
            "test\n",
            "[::1]x",
        ):
            with self.assertRaises(ValueError, msg=bad):
                parse_and_validate_server_name(bad)
