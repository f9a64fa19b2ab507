"""Global tile id decoding.

A raw GID keeps its flip flags in the top bits:

    bit 31  flipped horizontally
    bit 30  flipped vertically
    bit 29  flipped diagonally (x and y swapped)
    bit 28  rotated 120 degrees (hexagonal maps only, masked off and ignored here)

The diagonal flip is applied first, then the horizontal and vertical ones.
"""
import logging
from bisect import bisect_right
from typing import NamedTuple, Optional, Sequence

from tiled_importer.errors import MalformedDocument, UnresolvedTileReference
from tiled_importer.report import ImportReport
from tiled_importer.tilesets import ResolvedTileset, TileRecord


logger = logging.getLogger(__name__)

GID_TRANS_FLIP_HORIZONTALLY = 1 << 31
GID_TRANS_FLIP_VERTICALLY = 1 << 30
GID_TRANS_ROTATE = 1 << 29
GID_TRANS_ROTATE_HEX_120 = 1 << 28
GID_MASK = GID_TRANS_FLIP_HORIZONTALLY | GID_TRANS_FLIP_VERTICALLY | GID_TRANS_ROTATE | GID_TRANS_ROTATE_HEX_120


class TileFlags(NamedTuple):
    flipped_horizontally: bool
    flipped_vertically: bool
    flipped_diagonally: bool

    def to_gid(self, gid: int) -> int:
        return (gid
                | (GID_TRANS_FLIP_HORIZONTALLY if self.flipped_horizontally else 0)
                | (GID_TRANS_FLIP_VERTICALLY if self.flipped_vertically else 0)
                | (GID_TRANS_ROTATE if self.flipped_diagonally else 0))


NO_TRANSFORM_TILE_FLAGS = TileFlags(False, False, False)


def decode_gid(raw_gid: int) -> tuple[int, TileFlags]:
    if raw_gid < GID_TRANS_ROTATE_HEX_120:
        return raw_gid, NO_TRANSFORM_TILE_FLAGS
    return raw_gid & ~GID_MASK, TileFlags(
        flipped_horizontally=raw_gid & GID_TRANS_FLIP_HORIZONTALLY == GID_TRANS_FLIP_HORIZONTALLY,
        flipped_vertically=raw_gid & GID_TRANS_FLIP_VERTICALLY == GID_TRANS_FLIP_VERTICALLY,
        flipped_diagonally=raw_gid & GID_TRANS_ROTATE == GID_TRANS_ROTATE
    )


Affine = tuple[float, float, float, float, float, float]

IDENTITY_AFFINE: Affine = (1, 0, 0, 1, 0, 0)


class TileTransform(NamedTuple):
    """One of the eight symmetries of a square: optional axis swap followed by per-axis scale of +1/-1."""
    swap: bool = False
    scale_x: int = 1
    scale_y: int = 1

    @classmethod
    def from_flags(cls, flags: TileFlags) -> 'TileTransform':
        return cls(
            swap=flags.flipped_diagonally,
            scale_x=-1 if flags.flipped_horizontally else 1,
            scale_y=-1 if flags.flipped_vertically else 1
        )

    @classmethod
    def from_matrix(cls, matrix: tuple[tuple[int, int], tuple[int, int]]) -> 'TileTransform':
        (a, b), (c, d) = matrix
        if a == 0:
            return cls(True, b, c)
        return cls(False, a, d)

    @property
    def flags(self) -> TileFlags:
        return TileFlags(self.scale_x < 0, self.scale_y < 0, self.swap)

    @property
    def matrix(self) -> tuple[tuple[int, int], tuple[int, int]]:
        if self.swap:
            return (0, self.scale_x), (self.scale_y, 0)
        return (self.scale_x, 0), (0, self.scale_y)

    @property
    def determinant(self) -> int:
        (a, b), (c, d) = self.matrix
        return a * d - b * c

    @property
    def is_mirrored(self) -> bool:
        return self.determinant < 0

    @property
    def is_identity(self) -> bool:
        return self == IDENTITY

    def apply(self, x: float, y: float) -> tuple[float, float]:
        if self.swap:
            x, y = y, x
        return x * self.scale_x, y * self.scale_y

    def inverse(self) -> 'TileTransform':
        if self.swap:
            return TileTransform(True, self.scale_y, self.scale_x)
        return self

    def compose(self, first: 'TileTransform') -> 'TileTransform':
        """The transform equivalent to applying ``first`` and then ``self``."""
        (a1, b1), (c1, d1) = self.matrix
        (a2, b2), (c2, d2) = first.matrix
        return TileTransform.from_matrix((
            (a1 * a2 + b1 * c2, a1 * b2 + b1 * d2),
            (c1 * a2 + d1 * c2, c1 * b2 + d1 * d2)
        ))

    def to_affine(self, cell_width: float, cell_height: float) -> Affine:
        """Affine (a, b, c, d, tx, ty) mapping the cell box onto itself: x' = a*x + b*y + tx, y' = c*x + d*y + ty."""
        (a, b), (c, d) = self.matrix
        corners = [(a * x + b * y, c * x + d * y) for x, y in ((0, 0), (cell_width, 0), (0, cell_height), (cell_width, cell_height))]
        tx = -min(x for x, _ in corners)
        ty = -min(y for _, y in corners)
        return a, b, c, d, tx, ty


IDENTITY = TileTransform()


class ResolvedGid(NamedTuple):
    tile: Optional[TileRecord]
    tileset: Optional[ResolvedTileset]
    transform: TileTransform
    affine: Affine = IDENTITY_AFFINE

    @property
    def is_empty(self) -> bool:
        return self.tile is None


NO_TILE = ResolvedGid(None, None, IDENTITY, IDENTITY_AFFINE)


class GidResolver:
    def __init__(self,
                 tilesets: Sequence[ResolvedTileset],
                 cell_width: float,
                 cell_height: float,
                 strict: bool = False,
                 report: Optional[ImportReport] = None) -> None:
        previous_gid = 0
        for tileset in tilesets:
            if tileset.first_gid <= previous_gid:
                raise MalformedDocument(f"Tileset {tileset.name} firstgid {tileset.first_gid} does not follow {previous_gid}")
            previous_gid = tileset.first_gid

        self.tilesets = list(tilesets)
        self.cell_width = cell_width
        self.cell_height = cell_height
        self.strict = strict
        self.report = report if report is not None else ImportReport()
        self._first_gids = [tileset.first_gid for tileset in self.tilesets]
        self._affines: dict[TileTransform, Affine] = {}

    def tileset_for(self, gid: int) -> Optional[ResolvedTileset]:
        index = bisect_right(self._first_gids, gid) - 1
        return self.tilesets[index] if index >= 0 else None

    def resolve(self, raw_gid: int, context: Optional[str] = None) -> ResolvedGid:
        gid, flags = decode_gid(raw_gid)
        if gid == 0:
            return NO_TILE

        tileset = self.tileset_for(gid)
        if tileset is None:
            return self._unresolved(raw_gid, f"GID {gid} is not owned by any tileset", context)

        local_id = gid - tileset.first_gid
        tile = tileset.tile(local_id)
        if tile is None:
            return self._unresolved(raw_gid, f"local id {local_id} is beyond tileset {tileset.name} with {tileset.tile_count} tiles", context)

        transform = TileTransform.from_flags(flags)
        return ResolvedGid(tile, tileset, transform, self.affine_for(transform))

    def affine_for(self, transform: TileTransform) -> Affine:
        affine = self._affines.get(transform)
        if affine is None:
            affine = transform.to_affine(self.cell_width, self.cell_height)
            self._affines[transform] = affine
        return affine

    def _unresolved(self, raw_gid: int, reason: str, context: Optional[str]) -> ResolvedGid:
        if self.strict:
            raise UnresolvedTileReference(raw_gid, f"Could not find tile {raw_gid}: {reason}", context)
        self.report.skip_tile(raw_gid, reason, context)
        return NO_TILE
