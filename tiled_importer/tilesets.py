import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from pygame import Rect
from pygame.math import Vector2

from tiled_importer.errors import MalformedDocument, TilesetLoadFailed
from tiled_importer.model import Image, ObjectLayer, Properties, TileAnimation, TilesetDefinition, TilesetReference
from tiled_importer.parser import parse_tileset


logger = logging.getLogger(__name__)

Loader = Callable[[str], bytes]


def read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def full_path(base_dir: Optional[str], filename: str) -> str:
    filename = filename.replace("\\", "/")
    filename = filename.replace("/", os.path.sep)

    full_filename = os.path.join(base_dir, filename) if base_dir is not None else filename
    return os.path.abspath(os.path.normpath(full_filename))


class TilesetKind(enum.Enum):
    SINGLE_IMAGE = enum.auto()
    IMAGE_COLLECTION = enum.auto()


@dataclass
class TileRecord:
    local_id: int
    image: Optional[Image] = None
    rect: Optional[Rect] = None
    collision: Optional[ObjectLayer] = None
    animation: Optional[TileAnimation] = None
    properties: Properties = field(default_factory=Properties)
    type: str = ""
    probability: float = 1.0

    @property
    def has_collision(self) -> bool:
        return self.collision is not None and len(self.collision.objects) > 0


def compute_tile_count(definition: TilesetDefinition) -> int:
    if not definition.is_single_image:
        # ids of an image collection keep their gaps after tiles are deleted, tilecount does not
        highest = max(definition.tiles) + 1 if definition.tiles else 0
        return max(definition.tilecount, highest)

    if definition.tilecount > 0:
        return definition.tilecount
    if definition.image is None or definition.tilewidth <= 0 or definition.tileheight <= 0:
        return 0
    # n from "image_width = 2 * margin + n * tilewidth + (n - 1) * spacing"
    tiles_across = (definition.image.width + definition.spacing - definition.margin * 2) // (definition.spacing + definition.tilewidth)
    tiles_down = (definition.image.height + definition.spacing - definition.margin * 2) // (definition.spacing + definition.tileheight)
    return max(tiles_across, 0) * max(tiles_down, 0)


def compute_columns(definition: TilesetDefinition) -> int:
    if definition.columns > 0:
        return definition.columns
    if definition.image is None or definition.tilewidth <= 0:
        return 0
    return max((definition.image.width + definition.spacing - definition.margin * 2) // (definition.spacing + definition.tilewidth), 0)


class ResolvedTileset:
    def __init__(self, definition: TilesetDefinition, first_gid: int, source_path: Optional[str] = None, base_dir: Optional[str] = None) -> None:
        self.definition = definition
        self.first_gid = first_gid
        self.source_path = source_path
        self.directory = os.path.dirname(source_path) if source_path is not None else base_dir

        self.name = definition.name
        self.tilewidth = definition.tilewidth
        self.tileheight = definition.tileheight
        self.spacing = definition.spacing
        self.margin = definition.margin
        self.offset: Vector2 = Vector2(definition.offset)
        self.image = definition.image
        self.properties = definition.properties

        self.kind = TilesetKind.SINGLE_IMAGE if definition.is_single_image else TilesetKind.IMAGE_COLLECTION
        self.tile_count = compute_tile_count(definition)
        self.columns = compute_columns(definition) if self.kind == TilesetKind.SINGLE_IMAGE else definition.columns

        self.tiles: list[Optional[TileRecord]] = [self._tile_record(i) for i in range(self.tile_count)]

    def __repr__(self) -> str:
        return f"ResolvedTileset({self.name!r}, first_gid={self.first_gid}, tile_count={self.tile_count})"

    @property
    def last_gid(self) -> int:
        return self.first_gid + self.tile_count - 1

    @property
    def image_path(self) -> Optional[str]:
        return self.resolve_image_path(self.image) if self.image is not None else None

    def resolve_image_path(self, image: Image) -> str:
        return full_path(self.directory, image.source)

    def tile(self, local_id: int) -> Optional[TileRecord]:
        if 0 <= local_id < self.tile_count:
            return self.tiles[local_id]
        return None

    def iter_tiles(self) -> Iterator[TileRecord]:
        return (tile for tile in self.tiles if tile is not None)

    def tile_rect(self, local_id: int) -> Rect:
        if self.columns <= 0:
            raise ValueError(f"Tileset {self.name} has no columns")
        y = local_id // self.columns
        x = local_id - y * self.columns
        return Rect(
            x * (self.tilewidth + self.spacing) + self.margin,
            y * (self.tileheight + self.spacing) + self.margin,
            self.tilewidth, self.tileheight)

    def _tile_record(self, local_id: int) -> Optional[TileRecord]:
        source = self.definition.tiles.get(local_id)
        if self.kind == TilesetKind.IMAGE_COLLECTION:
            if source is None or source.image is None:
                return None
            record = TileRecord(local_id, image=source.image)
        else:
            record = TileRecord(local_id, rect=self.tile_rect(local_id) if self.columns > 0 else None)

        if source is not None:
            record.collision = source.objectgroup
            record.animation = source.animation
            record.properties = source.properties
            record.type = source.type
            record.probability = source.probability
        return record


class TilesetResolver:
    def __init__(self, loader: Loader = read_file) -> None:
        self.loader = loader
        self._definitions: dict[str, TilesetDefinition] = {}
        self._resolved: dict[tuple[str, int], ResolvedTileset] = {}

    def resolve(self, reference: TilesetReference, base_dir: Optional[str]) -> ResolvedTileset:
        if reference.is_external:
            path = full_path(base_dir, reference.source)
            key = (path, reference.first_gid)
            tileset = self._resolved.get(key)
            if tileset is None:
                tileset = ResolvedTileset(self.load_definition(path), reference.first_gid, source_path=path)
                self._check_complete(tileset, path)
                self._resolved[key] = tileset
            return tileset

        if reference.definition is None:
            raise TilesetLoadFailed(f"Tileset at firstgid {reference.first_gid} has neither source nor definition")
        tileset = ResolvedTileset(reference.definition, reference.first_gid, base_dir=base_dir)
        self._check_complete(tileset, f"embedded tileset {tileset.name}")
        return tileset

    def load_definition(self, path: str) -> TilesetDefinition:
        definition = self._definitions.get(path)
        if definition is not None:
            logger.debug(f"Reusing already loaded tileset {path}")
            return definition

        try:
            data = self.loader(path)
        except OSError as e:
            raise TilesetLoadFailed(f"Cannot read tileset: {e}", path) from e
        try:
            definition = parse_tileset(data, path)
        except MalformedDocument as e:
            raise TilesetLoadFailed(f"Invalid tileset: {e.message}", e.context) from e

        self._definitions[path] = definition
        return definition

    @staticmethod
    def _check_complete(tileset: ResolvedTileset, context: str) -> None:
        if tileset.tile_count == 0 or all(tile is None for tile in tileset.tiles):
            raise TilesetLoadFailed("Tileset is incomplete, it has no tiles", context)
