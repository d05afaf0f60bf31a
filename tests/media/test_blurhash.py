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

from parameterized import parameterized
from PIL import Image

from blurhome.media import blurhash as blurhash_module
from blurhome.media.blurhash import (
    BlurhashGenerator,
    ImageDecodeError,
    MalformedBlurhashError,
    UnsupportedImageFormatError,
    decode_components,
    decode_image,
    encode,
)

from tests import unittest
from tests.test_utils import SMALL_PNG, make_png


class EncodeTestCase(unittest.TestCase):
    def test_components_round_trip(self) -> None:
        """The component counts can be read back out of an encoded hash."""
        image = Image.open(BytesIO(make_png(32, 24)))
        for x, y in ((1, 1), (4, 3), (9, 9), (2, 7)):
            result = encode(image, x, y)
            self.assertEqual(len(result), 4 + 2 * x * y)
            self.assertEqual(decode_components(result), (x, y))

    def test_deterministic(self) -> None:
        data = make_png(20, 20)
        first = encode(Image.open(BytesIO(data)), 4, 3)
        second = encode(Image.open(BytesIO(data)), 4, 3)
        self.assertEqual(first, second)

    def test_different_images_differ(self) -> None:
        red = Image.new("RGB", (8, 8), (255, 0, 0))
        blue = Image.new("RGB", (8, 8), (0, 0, 255))
        self.assertNotEqual(encode(red, 4, 3), encode(blue, 4, 3))

    @parameterized.expand([(0, 3), (10, 3), (4, 0), (4, 10), (True, 3)])
    def test_components_out_of_range(self, x: int, y: int) -> None:
        image = Image.new("RGB", (4, 4))
        with self.assertRaises(ValueError):
            encode(image, x, y)

    def test_does_not_close_caller_image(self) -> None:
        image = Image.new("RGB", (4, 4), (10, 20, 30))
        encode(image, 4, 3)
        # Still usable afterwards.
        self.assertEqual(image.getpixel((0, 0)), (10, 20, 30))

    def test_alpha_images(self) -> None:
        """Images with transparency are hashed on their RGB values."""
        image = decode_image(SMALL_PNG)
        result = encode(image, 4, 3)
        self.assertEqual(decode_components(result), (4, 3))


class DecodeComponentsTestCase(unittest.TestCase):
    def test_known_hash(self) -> None:
        self.assertEqual(decode_components("LEHV6nWB2yk8pyo0adR*.7kCMdnj"), (4, 3))

    @parameterized.expand(
        [
            ("empty", ""),
            ("too_short", "LEHV6"),
            ("bad_character", "LEHV6nWB2yk8pyo0adR*.7kCMdné"),
            ("space", "LEHV6nWB2yk8pyo0adR*.7kC dnj"),
            ("wrong_length", "LEHV6nWB2yk8pyo0adR*.7kCMdnjX"),
            # '~' is the last digit of the alphabet: a size flag of 82.
            ("size_flag", "~EHV6nWB2yk8pyo0adR*.7kCMdnj"),
        ]
    )
    def test_malformed(self, _name: str, value: str) -> None:
        with self.assertRaises(MalformedBlurhashError):
            decode_components(value)

    def test_not_a_string(self) -> None:
        with self.assertRaises(MalformedBlurhashError):
            decode_components(1234567)  # type: ignore[arg-type]

    def test_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            decode_components("!!!!!!")


class DecodeImageTestCase(unittest.TestCase):
    def test_not_an_image(self) -> None:
        with self.assertRaises(UnsupportedImageFormatError):
            decode_image(b"this is not an image at all")

    def test_truncated(self) -> None:
        data = make_png(64, 64)
        with self.assertRaises(ImageDecodeError):
            decode_image(data[: len(data) // 2])

    def test_too_many_pixels(self) -> None:
        with self.assertRaises(ImageDecodeError):
            decode_image(make_png(20, 20), max_image_pixels=100)

    def test_loads(self) -> None:
        image = decode_image(make_png(3, 5))
        self.assertEqual(image.size, (3, 5))


class BlurhashGeneratorTestCase(unittest.TestCase):
    def test_generate_matches_encode(self) -> None:
        data = make_png(16, 16)
        generator = BlurhashGenerator(4, 3)
        expected = encode(Image.open(BytesIO(data)), 4, 3)
        self.assertEqual(generator.generate(data), expected)

    def test_encodes_full_image(self) -> None:
        """The whole decoded image is hashed, whatever its size."""
        data = make_png(1300, 1000)
        generator = BlurhashGenerator(3, 3)

        with patch.object(
            blurhash_module, "encode", wraps=blurhash_module.encode
        ) as mock_encode:
            result = generator.generate(data)

        self.assertEqual(mock_encode.call_args[0][0].size, (1300, 1000))
        self.assertEqual(result, encode(Image.open(BytesIO(data)), 3, 3))

    def test_refuses_huge_images(self) -> None:
        generator = BlurhashGenerator(4, 3, max_image_pixels=200)
        with self.assertRaises(ImageDecodeError):
            generator.generate(make_png(20, 20))

    def test_cache(self) -> None:
        data = make_png(16, 16)
        sha256 = hashlib.sha256(data).hexdigest()
        generator = BlurhashGenerator(4, 3, cache_size=4)

        first = generator.generate(data, sha256)

        with patch.object(blurhash_module, "decode_image") as mock_decode:
            second = generator.generate(data, sha256)
            mock_decode.assert_not_called()

        self.assertEqual(first, second)

    def test_cache_keyed_on_components(self) -> None:
        data = make_png(16, 16)
        small = BlurhashGenerator(1, 1, cache_size=4)
        large = BlurhashGenerator(5, 5, cache_size=4)

        self.assertEqual(decode_components(small.generate(data)), (1, 1))
        self.assertEqual(decode_components(large.generate(data)), (5, 5))

    def test_no_cache(self) -> None:
        data = make_png(8, 8)
        generator = BlurhashGenerator(4, 3)
        generator.generate(data)

        with patch.object(
            blurhash_module, "decode_image", wraps=blurhash_module.decode_image
        ) as mock_decode:
            generator.generate(data)
            mock_decode.assert_called_once()

    def test_bad_components(self) -> None:
        with self.assertRaises(ValueError):
            BlurhashGenerator(0, 3)
