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

"""Computing and inspecting MSC2448 blurhashes.

The encoder itself comes from the `blurhash` package; this module wraps it with
the checks and limits the media repository needs, and knows how to read the
component counts back out of a hash without decoding it.
"""

import hashlib
import logging
from io import BytesIO
from typing import Optional, Tuple

import blurhash
from PIL import Image, UnidentifiedImageError

from blurhome.util.caches.lrucache import LruCache

logger = logging.getLogger(__name__)

MIN_COMPONENTS = 1
MAX_COMPONENTS = 9

# The alphabet used by blurhash's base83 encoding, in digit order.
BASE83_ALPHABET = (
    "0123456789"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "#$%*+,-.:;=?@[]^_{|}~"
)
_BASE83_VALUES = {char: value for value, char in enumerate(BASE83_ALPHABET)}

# size flag (1) + quantised max AC value (1) + DC value (4)
_MIN_BLURHASH_LENGTH = 6


class BlurhashError(Exception):
    """Base class for errors raised by this module."""


class MalformedBlurhashError(BlurhashError, ValueError):
    """The given string is not a well-formed blurhash."""


class ImageDecodeError(BlurhashError):
    """The image data could not be decoded into a raster."""


class UnsupportedImageFormatError(ImageDecodeError):
    """The image data is not in a format we know how to read."""


def _check_components(x_components: int, y_components: int) -> None:
    for name, value in (("x_components", x_components), ("y_components", y_components)):
        if (
            not isinstance(value, int)
            or isinstance(value, bool)
            or not MIN_COMPONENTS <= value <= MAX_COMPONENTS
        ):
            raise ValueError(
                "%s must be an integer between %d and %d, not %r"
                % (name, MIN_COMPONENTS, MAX_COMPONENTS, value)
            )


def encode(image: Image.Image, x_components: int, y_components: int) -> str:
    """Compute the blurhash of an image.

    The result only depends on the RGB pixel values of the image and the
    component counts, so the same image always produces the same hash.

    Args:
        image: The image to hash. It is neither modified nor closed.
        x_components: number of horizontal components, between 1 and 9.
        y_components: number of vertical components, between 1 and 9.

    Returns:
        The blurhash string.

    Raises:
        ValueError: if the component counts are out of range, or the image has
            no pixels.
    """
    _check_components(x_components, y_components)

    width, height = image.size
    if width < 1 or height < 1:
        raise ValueError("Cannot compute a blurhash of a %dx%d image" % (width, height))

    # `blurhash.encode` closes the image it is handed, so give it a copy.
    rgb_image = image.convert("RGB")
    try:
        return blurhash.encode(rgb_image, x_components, y_components)
    finally:
        rgb_image.close()


def decode_components(blurhash_str: str) -> Tuple[int, int]:
    """Read the number of components a blurhash was encoded with.

    Args:
        blurhash_str: The hash to inspect.

    Returns:
        A tuple of (x_components, y_components).

    Raises:
        MalformedBlurhashError: if the string is not a valid blurhash.
    """
    if not isinstance(blurhash_str, str):
        raise MalformedBlurhashError(
            "Blurhash must be a string, not %s" % (type(blurhash_str).__name__,)
        )

    if len(blurhash_str) < _MIN_BLURHASH_LENGTH:
        raise MalformedBlurhashError(
            "Blurhash must be at least %d characters long" % (_MIN_BLURHASH_LENGTH,)
        )

    for char in blurhash_str:
        if char not in _BASE83_VALUES:
            raise MalformedBlurhashError("Invalid character %r in blurhash" % (char,))

    size_flag = _BASE83_VALUES[blurhash_str[0]]
    if size_flag >= MAX_COMPONENTS * MAX_COMPONENTS:
        raise MalformedBlurhashError("Invalid size flag in blurhash")

    y_components = size_flag // MAX_COMPONENTS + 1
    x_components = size_flag % MAX_COMPONENTS + 1

    expected_length = 4 + 2 * x_components * y_components
    if len(blurhash_str) != expected_length:
        raise MalformedBlurhashError(
            "Blurhash with %dx%d components should be %d characters long, not %d"
            % (x_components, y_components, expected_length, len(blurhash_str))
        )

    return x_components, y_components


def decode_image(data: bytes, max_image_pixels: Optional[int] = None) -> Image.Image:
    """Decode image data into a fully loaded Pillow image.

    Args:
        data: The encoded image, in any format Pillow can read.
        max_image_pixels: If set, refuse images with more pixels than this.

    Returns:
        The loaded image. The caller is responsible for closing it.

    Raises:
        UnsupportedImageFormatError: if Pillow does not recognise the data.
        ImageDecodeError: if the data is corrupt or the image is too large.
    """
    try:
        image = Image.open(BytesIO(data))
    except UnidentifiedImageError as e:
        raise UnsupportedImageFormatError("Unrecognised image format") from e
    except Image.DecompressionBombError as e:
        raise ImageDecodeError("Image is too large to decode: %s" % (e,)) from e
    except (OSError, SyntaxError, ValueError) as e:
        raise ImageDecodeError("Error opening image: %s" % (e,)) from e

    width, height = image.size
    if max_image_pixels is not None and width * height > max_image_pixels:
        image.close()
        raise ImageDecodeError(
            "Image with %d pixels exceeds the limit of %d"
            % (width * height, max_image_pixels)
        )

    try:
        image.load()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        image.close()
        raise ImageDecodeError("Error decoding image: %s" % (e,)) from e

    return image


class BlurhashGenerator:
    """Computes blurhashes for uploaded media with the server's settings.

    Args:
        x_components: number of horizontal components to encode.
        y_components: number of vertical components to encode.
        max_image_pixels: images with more pixels are refused outright.
        cache_size: number of hashes to remember, keyed by the SHA-256 of the
            image data and the component counts. 0 disables the cache.
    """

    def __init__(
        self,
        x_components: int,
        y_components: int,
        max_image_pixels: Optional[int] = None,
        cache_size: int = 0,
    ):
        _check_components(x_components, y_components)

        self.x_components = x_components
        self.y_components = y_components
        self.max_image_pixels = max_image_pixels

        self._cache: Optional[LruCache[Tuple[str, int, int], str]] = None
        if cache_size > 0:
            self._cache = LruCache(cache_size, cache_name="blurhash")

    def generate(self, data: bytes, sha256: Optional[str] = None) -> str:
        """Compute the blurhash of the given image data.

        This does CPU-bound work and should be run on a thread pool.

        Args:
            data: The encoded image.
            sha256: hex digest of `data`, if the caller already knows it.

        Returns:
            The blurhash string.

        Raises:
            UnsupportedImageFormatError: if Pillow does not recognise the data.
            ImageDecodeError: if the image cannot be decoded.
        """
        cache_key = None
        if self._cache is not None:
            if sha256 is None:
                sha256 = hashlib.sha256(data).hexdigest()
            cache_key = (sha256, self.x_components, self.y_components)
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Using cached blurhash for %s", sha256)
                return cached

        image = decode_image(data, self.max_image_pixels)
        try:
            result = encode(image, self.x_components, self.y_components)
        finally:
            image.close()

        if cache_key is not None:
            assert self._cache is not None
            self._cache.set(cache_key, result)

        return result
