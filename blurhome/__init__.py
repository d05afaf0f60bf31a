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

"""This is a Matrix homeserver implementing MSC2448 blurhashes for media,
messages and profiles.
"""

import sys
from importlib import metadata

# Check that we're not running on an unsupported Python version.
if sys.version_info < (3, 9):
    print("Blurhome requires Python 3.9 or above.")
    sys.exit(1)

try:
    __version__ = metadata.version("blurhome")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0+unknown"
