#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2019 New Vector Ltd
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

"""
Utilities for running the unit tests
"""

from binascii import unhexlify
from io import BytesIO

from PIL import Image

# A 1x1 transparent PNG image.
# Resolution: 1x1, MIME type: image/png, Extension: png, Size: 67 B
SMALL_PNG = unhexlify(
    b"89504e470d0a1a0a0000000d4948445200000001000000010806"
    b"0000001f15c4890000000a49444154789c63000100000500010d"
    b"0a2db40000000049454e44ae426082"
)


def make_png(width: int, height: int) -> bytes:
    """Build a PNG with a horizontal red to blue gradient, so that its blurhash
    has more than a single colour in it."""
    image = Image.new("RGB", (width, height))
    for x in range(width):
        shade = int(255 * x / max(width - 1, 1))
        for y in range(height):
            image.putpixel((x, y), (255 - shade, (y * 37) % 256, shade))

    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
