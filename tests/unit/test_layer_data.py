import gzip
import struct
import zlib
from base64 import b64encode
from unittest import TestCase

from pygame import Rect

from tiled_importer.errors import LayerDecodeFailed
from tiled_importer.layer_data import TileGrid, decode_layer, decode_payload, encode_payload
from tiled_importer.model import Chunk, LayerData, TileLayer
from tiled_importer.report import ImportReport


GIDS = [1, 2, 0, 2147483650, 0, 7]


def packed(gids: list[int]) -> bytes:
    return struct.pack("<%dL" % len(gids), *gids)


def csv_block(gids: list[int]) -> str:
    return ",".join(str(gid) for gid in gids)


class TestDecodePayload(TestCase):
    def test_csv(self) -> None:
        self.assertEqual(GIDS, decode_payload("csv", None, "\n1,2,0,\n2147483650,0,7\n", [], 3, 2))

    def test_csv_reencodes_to_same_text(self) -> None:
        text = "\n1,2,0,\n2147483650,0,7\n"

        self.assertEqual(text, encode_payload(decode_payload("csv", None, text, [], 3, 2), 3))

    def test_csv_short_by_one(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("csv", None, "1,2,0,2147483650,0", [], 3, 2, "ground")
        self.assertEqual("csv", cm.exception.stage)
        self.assertEqual("ground", cm.exception.context)

    def test_csv_invalid_token(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("csv", None, "1,2,x,4", [], 2, 2)
        self.assertEqual("csv", cm.exception.stage)

    def test_base64_uncompressed(self) -> None:
        self.assertEqual(GIDS, decode_payload("base64", None, b64encode(packed(GIDS)).decode("ASCII"), [], 3, 2))

    def test_base64_zlib(self) -> None:
        text = "\n   " + b64encode(zlib.compress(packed(GIDS))).decode("ASCII") + "\n  "

        self.assertEqual(GIDS, decode_payload("base64", "zlib", text, [], 3, 2))

    def test_base64_gzip(self) -> None:
        self.assertEqual(GIDS, decode_payload("base64", "gzip", b64encode(gzip.compress(packed(GIDS))).decode("ASCII"), [], 3, 2))

    def test_encode_payload_is_readable_by_decode(self) -> None:
        for compression in (None, "zlib", "gzip"):
            text = encode_payload(GIDS, 3, "base64", compression)
            self.assertEqual(GIDS, decode_payload("base64", compression, text, [], 3, 2))

    def test_bad_base64(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("base64", None, "abc", [], 1, 1)
        self.assertEqual("base64", cm.exception.stage)

    def test_bad_compressed_data(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("base64", "zlib", b64encode(b"not zlib data").decode("ASCII"), [], 1, 1)
        self.assertEqual("decompress", cm.exception.stage)

    def test_unknown_compression(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("base64", "zstd", b64encode(packed([1])).decode("ASCII"), [], 1, 1)
        self.assertEqual("compression", cm.exception.stage)

    def test_wrong_byte_count(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("base64", None, b64encode(packed([1, 2, 3])).decode("ASCII"), [], 2, 2)
        self.assertEqual("bytes", cm.exception.stage)

    def test_unknown_encoding(self) -> None:
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload("xml", None, "", [], 1, 1)
        self.assertEqual("encoding", cm.exception.stage)

    def test_inline_tiles(self) -> None:
        self.assertEqual([0, 3, 0, 4], decode_payload(None, None, "", [0, 3, 0, 4], 2, 2))
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_payload(None, None, "", [0, 3, 0], 2, 2)
        self.assertEqual("tiles", cm.exception.stage)


class TestEncodePayload(TestCase):
    def test_csv_layout(self) -> None:
        self.assertEqual("\n1,2,\n3,4\n", encode_payload([1, 2, 3, 4], 2))

    def test_unsupported(self) -> None:
        with self.assertRaises(ValueError):
            encode_payload([1], 1, "csv", "zlib")
        with self.assertRaises(ValueError):
            encode_payload([1], 1, "base64", "zstd")
        with self.assertRaises(ValueError):
            encode_payload([1], 1, "xml")


class TestDecodeLayer(TestCase):
    def test_finite_layer(self) -> None:
        layer = TileLayer(name="ground", width=3, height=2, data=LayerData(encoding="csv", text="1,2,0,\n2147483650,0,7"))
        grid = decode_layer(layer, False)

        self.assertEqual(4, len(grid))
        self.assertEqual(1, grid[(0, 0)])
        self.assertEqual(0, grid[(2, 0)])
        self.assertEqual(2147483650, grid[(0, 1)])
        self.assertEqual([(0, 0, 1), (1, 0, 2), (0, 1, 2147483650), (2, 1, 7)], list(grid.iter_data()))
        self.assertEqual(Rect(0, 0, 3, 2), grid.bounds)

    def test_chunks_are_placed_at_their_origin(self) -> None:
        left = [0] * 256
        left[0] = 1
        right = [0] * 256
        right[17] = 2
        layer = TileLayer(name="infinite", width=32, height=16, data=LayerData(encoding="csv", chunks=[
            Chunk(0, 0, 16, 16, text=csv_block(left)),
            Chunk(16, 0, 16, 16, text=csv_block(right)),
        ]))
        grid = decode_layer(layer, True)

        self.assertEqual({(0, 0): 1, (17, 1): 2}, grid.cells)
        self.assertEqual(Rect(0, 0, 32, 16), grid.bounds)

    def test_negative_chunk_origin(self) -> None:
        gids = [0] * 16
        gids[15] = 9
        layer = TileLayer(name="infinite", data=LayerData(encoding="base64", compression="zlib", chunks=[
            Chunk(-4, -4, 4, 4, text=b64encode(zlib.compress(packed(gids))).decode("ASCII")),
        ]))
        grid = decode_layer(layer, True)

        self.assertEqual({(-1, -1): 9}, grid.cells)

    def test_chunk_encoding_is_ignored_in_favour_of_layer(self) -> None:
        layer = TileLayer(name="infinite", data=LayerData(encoding="csv", chunks=[
            Chunk(0, 0, 2, 1, encoding="base64", text="5,6"),
        ]))

        self.assertEqual({(0, 0): 5, (1, 0): 6}, decode_layer(layer, True).cells)

    def test_overlapping_chunks(self) -> None:
        layer = TileLayer(name="infinite", data=LayerData(encoding="csv", chunks=[
            Chunk(0, 0, 16, 16, text=csv_block([0] * 256)),
            Chunk(8, 0, 16, 16, text=csv_block([0] * 256)),
        ]))

        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_layer(layer, True)
        self.assertEqual("chunk", cm.exception.stage)

    def test_overlapping_chunk_is_left_empty_without_strict(self) -> None:
        layer = TileLayer(name="infinite", data=LayerData(encoding="csv", chunks=[
            Chunk(0, 0, 2, 1, text="1,2"),
            Chunk(1, 0, 2, 1, text="3,4"),
        ]))
        report = ImportReport()
        grid = decode_layer(layer, True, strict=False, report=report)

        self.assertEqual({(0, 0): 1, (1, 0): 2}, grid.cells)
        self.assertEqual(1, len(report.warnings))
        self.assertIn("chunk (1, 0)", report.warnings[0])
        self.assertFalse(report.clean)

    def test_undecodable_chunk_is_left_empty_without_strict(self) -> None:
        layer = TileLayer(name="infinite", data=LayerData(encoding="csv", chunks=[
            Chunk(0, 0, 2, 1, text="1"),
            Chunk(2, 0, 2, 1, text="3,4"),
        ]))
        report = ImportReport()
        grid = decode_layer(layer, True, strict=False, report=report)

        self.assertEqual({(2, 0): 3, (3, 0): 4}, grid.cells)
        self.assertIn("csv", report.warnings[0])

    def test_finite_payload_stays_fatal_without_strict(self) -> None:
        layer = TileLayer(name="ground", width=2, height=1, data=LayerData(encoding="csv", text="1"))

        with self.assertRaises(LayerDecodeFailed):
            decode_layer(layer, False, strict=False, report=ImportReport())

    def test_infinite_layer_without_chunks_is_empty(self) -> None:
        layer = TileLayer(name="nothing", data=LayerData(encoding="csv", text="\n"))

        self.assertEqual(0, len(decode_layer(layer, True)))

    def test_infinite_mismatch(self) -> None:
        finite_layer = TileLayer(name="ground", width=1, height=1, data=LayerData(encoding="csv", text="1"))
        chunked_layer = TileLayer(name="infinite", data=LayerData(encoding="csv", chunks=[Chunk(0, 0, 1, 1, text="1")]))

        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_layer(finite_layer, True)
        self.assertEqual("infinite", cm.exception.stage)
        with self.assertRaises(LayerDecodeFailed) as cm:
            decode_layer(chunked_layer, False)
        self.assertEqual("infinite", cm.exception.stage)

    def test_empty_grid(self) -> None:
        grid = TileGrid()

        self.assertIsNone(grid.bounds)
        self.assertEqual(0, grid[(3, 3)])
