import binascii
import gzip
import logging
import re
import struct
import zlib
from base64 import b64decode, b64encode
from typing import Iterable, Iterator, Optional, Sequence

from pygame import Rect

from tiled_importer.errors import LayerDecodeFailed
from tiled_importer.model import TileLayer
from tiled_importer.report import ImportReport


logger = logging.getLogger(__name__)

CSV_SEPARATOR = re.compile(r"[,\s]+")


def iter_rows(gids: Sequence[int], width: int) -> Iterable[Sequence[int]]:
    return (gids[i: i + width] for i in range(0, len(gids), width))


def _decode_csv(text: str, expected: int, context: Optional[str]) -> list[int]:
    tokens = [token for token in CSV_SEPARATOR.split(text.strip()) if token]
    if len(tokens) != expected:
        raise LayerDecodeFailed("csv", f"expected {expected} values but found {len(tokens)}", context)
    try:
        return [int(token) for token in tokens]
    except ValueError as e:
        raise LayerDecodeFailed("csv", f"invalid value: {e}", context) from e


def _decompress(data: bytes, compression: Optional[str], context: Optional[str]) -> bytes:
    if compression is None:
        return data
    try:
        if compression == "zlib":
            return zlib.decompress(data)
        if compression == "gzip":
            return gzip.decompress(data)
    except (zlib.error, OSError, EOFError) as e:
        raise LayerDecodeFailed("decompress", f"{compression} data could not be decompressed: {e}", context) from e
    raise LayerDecodeFailed("compression", f"unsupported compression '{compression}'", context)


def _decode_base64(text: str, compression: Optional[str], expected: int, context: Optional[str]) -> list[int]:
    try:
        data = b64decode(text.strip())
    except (binascii.Error, ValueError) as e:
        raise LayerDecodeFailed("base64", f"data could not be base64 decoded: {e}", context) from e

    data = _decompress(data, compression, context)

    if len(data) != expected * 4:
        raise LayerDecodeFailed("bytes", f"expected {expected * 4} bytes but found {len(data)}", context)
    return list(struct.unpack("<%dL" % expected, data))


def decode_payload(encoding: Optional[str],
                   compression: Optional[str],
                   text: str,
                   tiles: Sequence[int],
                   width: int,
                   height: int,
                   context: Optional[str] = None) -> list[int]:
    """Decodes one <data> or <chunk> payload into row-major raw GIDs, exactly width * height of them."""
    expected = width * height

    if encoding is None:
        if len(tiles) != expected:
            raise LayerDecodeFailed("tiles", f"expected {expected} tiles but found {len(tiles)}", context)
        return list(tiles)

    if encoding == "csv":
        if compression is not None:
            raise LayerDecodeFailed("compression", f"csv data cannot be compressed with '{compression}'", context)
        return _decode_csv(text, expected, context)

    if encoding == "base64":
        return _decode_base64(text, compression, expected, context)

    raise LayerDecodeFailed("encoding", f"unknown encoding '{encoding}'", context)


def encode_payload(gids: Sequence[int], width: int, encoding: str = "csv", compression: Optional[str] = None) -> str:
    if encoding == "csv":
        if compression is not None:
            raise ValueError(f"csv data cannot be compressed with '{compression}'")
        rows = [",".join(str(gid) for gid in row) for row in iter_rows(gids, width)]
        return "\n" + ",\n".join(rows) + "\n"

    if encoding == "base64":
        data = struct.pack("<%dL" % len(gids), *gids)
        if compression == "gzip":
            data = gzip.compress(data)
        elif compression == "zlib":
            data = zlib.compress(data)
        elif compression is not None:
            raise ValueError(f"Unsupported compression '{compression}'")
        return b64encode(data).decode("ASCII")

    raise ValueError(f"Unsupported encoding '{encoding}'")


class TileGrid:
    """Raw GIDs of one tile layer keyed by (x, y) in layer tile coordinates; empty cells are not stored."""

    def __init__(self) -> None:
        self.cells: dict[tuple[int, int], int] = {}
        self.regions: list[Rect] = []

    def __getitem__(self, position: tuple[int, int]) -> int:
        return self.cells.get(position, 0)

    def __len__(self) -> int:
        return len(self.cells)

    @property
    def bounds(self) -> Optional[Rect]:
        if len(self.regions) == 0:
            return None
        return self.regions[0].unionall(self.regions[1:])

    def place(self, gids: Sequence[int], x: int, y: int, width: int, height: int, context: Optional[str] = None) -> None:
        region = Rect(x, y, width, height)
        if region.collidelist(self.regions) != -1:
            raise LayerDecodeFailed("chunk", f"chunk at ({x}, {y}) overlaps an already placed chunk", context)
        self.regions.append(region)

        for i, gid in enumerate(gids):
            if gid:
                self.cells[(x + i % width, y + i // width)] = gid

    def iter_data(self) -> Iterator[tuple[int, int, int]]:
        """Yields X, Y, GID tuples for each non-empty cell, row by row."""
        for (x, y) in sorted(self.cells, key=lambda p: (p[1], p[0])):
            yield x, y, self.cells[(x, y)]


def decode_layer(layer: TileLayer,
                 infinite: bool,
                 context: Optional[str] = None,
                 strict: bool = True,
                 report: Optional[ImportReport] = None) -> TileGrid:
    """Decodes a whole tile layer. Without strict, a chunk that fails to decode or overlaps
    an earlier one is left empty and recorded in report."""
    data = layer.data
    context = context or layer.name
    if infinite and not data.is_chunked and data.is_empty:
        # Tiled writes a layer of an infinite map with no tiles as a bare <data/>
        logger.debug(f"Layer {context} of infinite map has no chunks")
        return TileGrid()
    if infinite != data.is_chunked:
        raise LayerDecodeFailed("infinite", f"map infinite setting is {infinite} but layer {'has' if data.is_chunked else 'has no'} chunks", context)

    grid = TileGrid()
    if data.chunks is not None:
        for chunk in data.chunks:
            if chunk.encoding is not None and chunk.encoding != data.encoding:
                logger.debug(f"Ignoring chunk encoding '{chunk.encoding}' in favour of layer encoding '{data.encoding}' in {context}")
            chunk_context = f"{context} chunk ({chunk.x}, {chunk.y})"
            try:
                gids = decode_payload(data.encoding, data.compression, chunk.text, chunk.tiles, chunk.width, chunk.height, chunk_context)
                grid.place(gids, chunk.x, chunk.y, chunk.width, chunk.height, chunk_context)
            except LayerDecodeFailed as e:
                if strict:
                    raise
                message = f"Leaving {chunk_context} empty, {e.message}"
                if report is not None:
                    report.warn(message)
                else:
                    logger.warning(message)
    else:
        gids = decode_payload(data.encoding, data.compression, data.text, data.tiles, layer.width, layer.height, context)
        grid.place(gids, 0, 0, layer.width, layer.height, context)
    return grid
