import enum
import os
from collections import namedtuple
from copy import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Iterator, NamedTuple, Optional, Union

from pygame import Color
from pygame.math import Vector2


class FieldState(enum.Enum):
    UNSET = enum.auto()
    DEFAULT = enum.auto()
    EXPLICIT = enum.auto()


class Field(NamedTuple):
    """Attribute value that remembers whether the document actually set it.

    Template merging needs to tell "not in the document" apart from "written as 0",
    so object attributes are never pre-filled with defaults at parse time.
    """
    state: FieldState
    value: Any = None

    @staticmethod
    def unset() -> 'Field':
        return UNSET

    @staticmethod
    def default(value: Any) -> 'Field':
        return Field(FieldState.DEFAULT, value)

    @staticmethod
    def explicit(value: Any) -> 'Field':
        return Field(FieldState.EXPLICIT, value)

    @property
    def is_set(self) -> bool:
        return self.state != FieldState.UNSET

    @property
    def is_explicit(self) -> bool:
        return self.state == FieldState.EXPLICIT

    def value_or(self, default: Any) -> Any:
        return self.value if self.is_set else default


UNSET = Field(FieldState.UNSET)


@dataclass
class Property:
    name: str
    type: str = "string"
    value: Any = None

    @property
    def key(self) -> tuple[str, str]:
        return self.name, self.type


class Properties:
    def __init__(self, items: Optional[Iterable[Property]] = None) -> None:
        self.items: list[Property] = list(items) if items is not None else []

    def __iter__(self) -> Iterator[Property]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Properties) and self.items == other.items

    def __repr__(self) -> str:
        return f"Properties({self.items!r})"

    def __contains__(self, name: str) -> bool:
        return any(p.name == name for p in self.items)

    def __getitem__(self, name: str) -> Any:
        # the last entry wins, so an instance override of another type shadows the template's
        for p in reversed(self.items):
            if p.name == name:
                return p.value
        raise KeyError(f"No property {name}")

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except KeyError:
            return default

    def append(self, prop: Property) -> None:
        self.items.append(prop)

    def as_dict(self) -> dict[str, Any]:
        return {p.name: p.value for p in self.items}

    def copy(self) -> 'Properties':
        return Properties(copy(p) for p in self.items)

    def merged(self, instance: Optional['Properties']) -> 'Properties':
        """Template properties (self) overridden by instance properties with the same (name, type)."""
        combined = self.copy()
        if instance is None:
            return combined

        by_key = {p.key: p for p in combined.items}
        for prop in instance:
            existing = by_key.get(prop.key)
            if existing is not None:
                existing.value = prop.value
            else:
                new_prop = copy(prop)
                combined.append(new_prop)
                by_key[new_prop.key] = new_prop
        return combined


@dataclass
class Image:
    source: str = ""
    width: int = 0
    height: int = 0
    trans: Optional[str] = None


Frame = namedtuple("Frame", ["tileid", "duration"])


class TileAnimation:
    def __init__(self, frames: Optional[Iterable[Frame]] = None) -> None:
        self.frames: list[Frame] = []
        self.total_animation_len = 0
        for frame in frames or ():
            self.add_frame(frame)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TileAnimation) and self.frames == other.frames

    def __repr__(self) -> str:
        return f"TileAnimation({self.frames!r})"

    def add_frame(self, frame: Frame) -> None:
        self.frames.append(frame)
        self.total_animation_len += frame.duration

    def tile_at(self, time_ms: int) -> int:
        if self.total_animation_len <= 0:
            return self.frames[0].tileid
        r = time_ms % self.total_animation_len
        for frame in self.frames:
            r -= frame.duration
            if r < 0:
                return frame.tileid
        return self.frames[-1].tileid


@dataclass
class Grid:
    orientation: str = "orthogonal"
    width: int = 0
    height: int = 0


@dataclass
class TilesetTile:
    id: int
    type: str = ""
    probability: float = 1.0
    image: Optional[Image] = None
    objectgroup: Optional['ObjectLayer'] = None
    animation: Optional[TileAnimation] = None
    properties: Properties = field(default_factory=Properties)

    def has_collision(self) -> bool:
        return self.objectgroup is not None and len(self.objectgroup.objects) > 0


@dataclass
class TilesetDefinition:
    name: str = ""
    tilewidth: int = 0
    tileheight: int = 0
    spacing: int = 0
    margin: int = 0
    tilecount: int = 0
    columns: int = 0
    offset: Vector2 = field(default_factory=Vector2)
    grid: Optional[Grid] = None
    image: Optional[Image] = None
    tiles: dict[int, TilesetTile] = field(default_factory=dict)
    properties: Properties = field(default_factory=Properties)

    @property
    def is_single_image(self) -> bool:
        return self.image is not None or len(self.tiles) == 0


@dataclass
class TilesetReference:
    first_gid: int
    source: Optional[str] = None
    definition: Optional[TilesetDefinition] = None

    @property
    def is_external(self) -> bool:
        return self.source is not None


@dataclass
class Chunk:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0
    # carried over from the file but the owning layer's encoding is what counts
    encoding: Optional[str] = None
    compression: Optional[str] = None
    text: str = ""
    tiles: list[int] = field(default_factory=list)


@dataclass
class LayerData:
    encoding: Optional[str] = None
    compression: Optional[str] = None
    text: str = ""
    tiles: list[int] = field(default_factory=list)
    chunks: Optional[list[Chunk]] = None

    @property
    def is_chunked(self) -> bool:
        return self.chunks is not None

    @property
    def is_empty(self) -> bool:
        return len(self.text.strip()) == 0 and len(self.tiles) == 0 and not self.chunks


class LayerKind(enum.Enum):
    TILE = "layer"
    OBJECT = "objectgroup"
    IMAGE = "imagelayer"
    GROUP = "group"


@dataclass
class BaseLayer:
    KIND: ClassVar[LayerKind]

    id: Optional[int] = None
    name: str = ""
    offset: Vector2 = field(default_factory=Vector2)
    opacity: float = 1.0
    visible: bool = True
    tint: Optional[Color] = None
    properties: Properties = field(default_factory=Properties)

    @property
    def kind(self) -> LayerKind:
        return self.KIND


@dataclass
class Ellipse:
    pass


@dataclass
class Point:
    pass


@dataclass
class Polygon:
    points: list[Vector2] = field(default_factory=list)


@dataclass
class Polyline:
    points: list[Vector2] = field(default_factory=list)


@dataclass
class Text:
    text: str = ""
    fontfamily: str = "sans-serif"
    pixelsize: int = 16
    wrap: bool = False
    color: Color = field(default_factory=lambda: Color(0, 0, 0))
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikeout: bool = False
    kerning: bool = True
    halign: str = "left"
    valign: str = "top"


Shape = Union[Ellipse, Point, Polygon, Polyline, Text]


@dataclass
class MapObject:
    id: Field = UNSET
    name: Optional[str] = None
    type: Optional[str] = None
    x: Field = UNSET
    y: Field = UNSET
    width: Field = UNSET
    height: Field = UNSET
    rotation: Field = UNSET
    gid: Field = UNSET
    visible: Field = UNSET
    template: Optional[str] = None
    properties: Optional[Properties] = None
    shape: Optional[Shape] = None

    @property
    def is_tile_object(self) -> bool:
        return self.gid.value_or(0) != 0


@dataclass
class TileLayer(BaseLayer):
    KIND: ClassVar[LayerKind] = LayerKind.TILE

    width: int = 0
    height: int = 0
    data: LayerData = field(default_factory=LayerData)


@dataclass
class ObjectLayer(BaseLayer):
    KIND: ClassVar[LayerKind] = LayerKind.OBJECT

    color: Optional[Color] = None
    draworder: str = "topdown"
    objects: list[MapObject] = field(default_factory=list)


@dataclass
class ImageLayer(BaseLayer):
    KIND: ClassVar[LayerKind] = LayerKind.IMAGE

    image: Optional[Image] = None
    repeat_x: bool = False
    repeat_y: bool = False


@dataclass
class GroupLayer(BaseLayer):
    KIND: ClassVar[LayerKind] = LayerKind.GROUP

    layers: list[BaseLayer] = field(default_factory=list)


@dataclass
class Template:
    path: str
    object: MapObject
    tileset: Optional[TilesetReference] = None

    @property
    def directory(self) -> str:
        return os.path.dirname(self.path)


@dataclass
class TiledMap:
    version: str = ""
    tiledversion: str = ""
    orientation: str = "orthogonal"
    renderorder: str = "right-down"
    width: int = 0  # width of map in tiles
    height: int = 0  # height of map in tiles
    tilewidth: int = 0  # width of a tile in pixels
    tileheight: int = 0  # height of a tile in pixels
    hexsidelength: int = 0
    staggeraxis: str = "y"
    staggerindex: str = "odd"
    infinite: bool = False
    backgroundcolor: Optional[Color] = None
    nextlayerid: int = 0
    nextobjectid: int = 0
    tilesets: list[TilesetReference] = field(default_factory=list)
    layers: list[BaseLayer] = field(default_factory=list)
    properties: Properties = field(default_factory=Properties)
    filename: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        if self.filename is not None:
            return ".".join(os.path.split(self.filename)[-1].split(".")[:-1])
        return None

    @property
    def pixel_width(self) -> int:
        return self.width * self.tilewidth

    @property
    def pixel_height(self) -> int:
        return self.height * self.tileheight

    def iter_layers(self) -> Iterator[tuple[BaseLayer, int]]:
        """Yields every layer depth-first, with its group nesting depth."""
        stack: list[tuple[BaseLayer, int]] = [(layer, 0) for layer in reversed(self.layers)]
        while stack:
            layer, depth = stack.pop()
            yield layer, depth
            if isinstance(layer, GroupLayer):
                stack.extend((child, depth + 1) for child in reversed(layer.layers))
