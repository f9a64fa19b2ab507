import logging
from collections import defaultdict
from typing import Any, Callable, Optional, Union
from xml.etree import ElementTree
from xml.etree.ElementTree import Element

from pygame import Color
from pygame.math import Vector2

from tiled_importer.errors import MalformedDocument
from tiled_importer.model import (
    BaseLayer, Chunk, Ellipse, Field, Frame, Grid, GroupLayer, Image, ImageLayer, LayerData, MapObject, ObjectLayer,
    Point, Polygon, Polyline, Properties, Property, Shape, Template, Text, TileAnimation, TiledMap, TileLayer,
    TilesetDefinition, TilesetReference, TilesetTile
)


logger = logging.getLogger(__name__)

Document = Union[bytes, str]


def convert_to_bool(value: str) -> bool:
    value = str(value).strip()
    if value:
        value = value.lower()[0]
        if value in ("1", "y", "t", "true"):
            return True
        if value in ("-", "0", "n", "f"):
            return False
    else:
        return False
    raise ValueError(f"cannot parse {value} as bool")


def convert_to_color(value: str) -> Color:
    """Tiled writes colours as #RRGGBB or #AARRGGBB (the hash is optional in old files)."""
    value = value.strip().lstrip("#")
    if len(value) == 6:
        return Color(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))
    if len(value) == 8:
        return Color(int(value[2:4], 16), int(value[4:6], 16), int(value[6:8], 16), int(value[0:2], 16))
    raise ValueError(f"cannot parse {value} as colour")


def convert_to_points(value: str) -> list[Vector2]:
    points = []
    for pair in value.split():
        x, y = pair.split(",")
        points.append(Vector2(float(x), float(y)))
    return points


TYPES: dict[str, Callable[[str], Any]] = defaultdict(lambda: str)
TYPES.update(
    {
        "backgroundcolor": convert_to_color,
        "bold": convert_to_bool,
        "color": convert_to_color,
        "columns": int,
        "duration": int,
        "firstgid": int,
        "gid": int,
        "height": float,
        "hexsidelength": int,
        "id": int,
        "infinite": convert_to_bool,
        "italic": convert_to_bool,
        "kerning": convert_to_bool,
        "margin": int,
        "nextlayerid": int,
        "nextobjectid": int,
        "offsetx": float,
        "offsety": float,
        "opacity": float,
        "pixelsize": int,
        "points": convert_to_points,
        "probability": float,
        "repeatx": convert_to_bool,
        "repeaty": convert_to_bool,
        "rotation": float,
        "spacing": int,
        "strikeout": convert_to_bool,
        "tilecount": int,
        "tileheight": int,
        "tileid": int,
        "tilewidth": int,
        "tintcolor": convert_to_color,
        "underline": convert_to_bool,
        "visible": convert_to_bool,
        "width": float,
        "wrap": convert_to_bool,
        "x": float,
        "y": float,
    }
)

PROPERTY_TYPES: dict[str, Callable[[str], Any]] = {
    "bool": convert_to_bool,
    "color": str,
    "file": str,
    "float": float,
    "int": int,
    "object": int,
    "string": str,
    "enum": str,
}


class Attributes:
    """Typed access to one element's attributes; conversion failures become MalformedDocument."""

    def __init__(self, node: Element, context: str) -> None:
        self.node = node
        self.context = context

    def get(self, key: str, default: Any = None, convert: Optional[Callable[[str], Any]] = None) -> Any:
        value = self.node.get(key)
        if value is None:
            return default
        return self._convert(key, value, convert)

    def required(self, key: str, convert: Optional[Callable[[str], Any]] = None) -> Any:
        value = self.node.get(key)
        if value is None:
            raise MalformedDocument(f"Missing required attribute '{key}' on <{self.node.tag}>", self.context)
        return self._convert(key, value, convert)

    def field(self, key: str, convert: Optional[Callable[[str], Any]] = None) -> Field:
        value = self.node.get(key)
        if value is None:
            return Field.unset()
        return Field.explicit(self._convert(key, value, convert))

    def _convert(self, key: str, value: str, convert: Optional[Callable[[str], Any]]) -> Any:
        try:
            return (convert or TYPES[key])(value)
        except (ValueError, TypeError) as e:
            raise MalformedDocument(f"Attribute '{key}' on <{self.node.tag}> has invalid value '{value}'", self.context) from e


def _child_context(context: str, node: Element) -> str:
    name = node.get("name") or node.get("id")
    return f"{context} > {node.tag}[{name}]" if name else f"{context} > {node.tag}"


def _read_root(data: Document, expected_tag: str, context: str) -> Element:
    try:
        root = ElementTree.fromstring(data)
    except ElementTree.ParseError as e:
        raise MalformedDocument(f"Not a valid XML document: {e}", context) from e
    if root.tag != expected_tag:
        raise MalformedDocument(f"Expected <{expected_tag}> root element but found <{root.tag}>", context)
    return root


def _parse_properties(node: Element, context: str) -> Optional[Properties]:
    properties_node = node.find("properties")
    if properties_node is None:
        return None

    properties = Properties()
    for subnode in properties_node.findall("property"):
        attrs = Attributes(subnode, context)
        name = attrs.required("name", str)
        typ = subnode.get("type", "string")
        if typ == "class":
            value = _parse_properties(subnode, f"{context} > property[{name}]") or Properties()
        else:
            raw = subnode.get("value")
            if raw is None:
                raw = subnode.text or ""
            cls = PROPERTY_TYPES.get(typ, str)
            try:
                value = cls(raw)
            except ValueError as e:
                raise MalformedDocument(f"Property '{name}' of type {typ} has invalid value '{raw}'", context) from e
        properties.append(Property(name, typ, value))
    return properties


def _properties_or_empty(node: Element, context: str) -> Properties:
    properties = _parse_properties(node, context)
    return properties if properties is not None else Properties()


def _parse_image(node: Element, context: str) -> Image:
    attrs = Attributes(node, context)
    return Image(
        source=attrs.get("source", ""),
        width=attrs.get("width", 0, int),
        height=attrs.get("height", 0, int),
        trans=attrs.get("trans")
    )


def _parse_animation(node: Element, context: str) -> TileAnimation:
    animation = TileAnimation()
    for frame_node in node.findall("frame"):
        attrs = Attributes(frame_node, context)
        animation.add_frame(Frame(attrs.required("tileid"), attrs.required("duration")))
    return animation


def _parse_tileset_tile(node: Element, context: str) -> TilesetTile:
    attrs = Attributes(node, context)
    tile = TilesetTile(attrs.required("id", int))
    context = _child_context(context, node)
    tile.type = node.get("type", node.get("class", ""))
    tile.probability = attrs.get("probability", 1.0)
    tile.properties = _properties_or_empty(node, context)

    image_node = node.find("image")
    if image_node is not None:
        tile.image = _parse_image(image_node, context)
    objectgroup_node = node.find("objectgroup")
    if objectgroup_node is not None:
        tile.objectgroup = _parse_object_layer(objectgroup_node, context)
    animation_node = node.find("animation")
    if animation_node is not None:
        tile.animation = _parse_animation(animation_node, context)
    return tile


def _parse_tileset_definition(node: Element, context: str) -> TilesetDefinition:
    attrs = Attributes(node, context)
    definition = TilesetDefinition(
        name=attrs.get("name", ""),
        tilewidth=attrs.get("tilewidth", 0),
        tileheight=attrs.get("tileheight", 0),
        spacing=attrs.get("spacing", 0),
        margin=attrs.get("margin", 0),
        tilecount=attrs.get("tilecount", 0),
        columns=attrs.get("columns", 0),
        properties=_properties_or_empty(node, context)
    )

    for child in node:
        if child.tag == "image":
            definition.image = _parse_image(child, context)
        elif child.tag == "tile":
            tile = _parse_tileset_tile(child, context)
            definition.tiles[tile.id] = tile
        elif child.tag == "tileoffset":
            offset_attrs = Attributes(child, context)
            definition.offset = Vector2(offset_attrs.get("x", 0.0), offset_attrs.get("y", 0.0))
        elif child.tag == "grid":
            grid_attrs = Attributes(child, context)
            definition.grid = Grid(grid_attrs.get("orientation", "orthogonal"), grid_attrs.get("width", 0, int), grid_attrs.get("height", 0, int))
        elif child.tag != "properties":
            logger.debug(f"Ignoring <{child.tag}> in tileset {definition.name}")
    return definition


def _parse_tileset_reference(node: Element, context: str) -> TilesetReference:
    attrs = Attributes(node, context)
    first_gid = attrs.required("firstgid")
    source = node.get("source")
    if source is not None:
        return TilesetReference(first_gid, source=source)
    return TilesetReference(first_gid, definition=_parse_tileset_definition(node, _child_context(context, node)))


def _parse_shape(node: Element, context: str) -> Optional[Shape]:
    for child in node:
        if child.tag == "ellipse":
            return Ellipse()
        if child.tag == "point":
            return Point()
        if child.tag == "polygon":
            return Polygon(Attributes(child, context).get("points", []))
        if child.tag == "polyline":
            return Polyline(Attributes(child, context).get("points", []))
        if child.tag == "text":
            attrs = Attributes(child, context)
            return Text(
                text=child.text or "",
                fontfamily=attrs.get("fontfamily", "sans-serif"),
                pixelsize=attrs.get("pixelsize", 16),
                wrap=attrs.get("wrap", False),
                color=attrs.get("color", Color(0, 0, 0)),
                bold=attrs.get("bold", False),
                italic=attrs.get("italic", False),
                underline=attrs.get("underline", False),
                strikeout=attrs.get("strikeout", False),
                kerning=attrs.get("kerning", True),
                halign=attrs.get("halign", "left"),
                valign=attrs.get("valign", "top")
            )
    return None


def parse_object(node: Element, context: str) -> MapObject:
    context = _child_context(context, node)
    attrs = Attributes(node, context)
    return MapObject(
        id=attrs.field("id"),
        name=node.get("name"),
        type=node.get("type", node.get("class")),
        x=attrs.field("x"),
        y=attrs.field("y"),
        width=attrs.field("width"),
        height=attrs.field("height"),
        rotation=attrs.field("rotation"),
        gid=attrs.field("gid"),
        visible=attrs.field("visible"),
        template=node.get("template"),
        properties=_parse_properties(node, context),
        shape=_parse_shape(node, context)
    )


def _parse_common(layer: BaseLayer, node: Element, context: str) -> None:
    attrs = Attributes(node, context)
    layer.id = attrs.get("id")
    layer.name = attrs.get("name", "")
    layer.offset = Vector2(attrs.get("offsetx", 0.0), attrs.get("offsety", 0.0))
    layer.opacity = attrs.get("opacity", 1.0)
    layer.visible = attrs.get("visible", True)
    layer.tint = attrs.get("tintcolor")
    layer.properties = _properties_or_empty(node, context)


def _parse_inline_tiles(node: Element, context: str) -> list[int]:
    return [Attributes(tile_node, context).get("gid", 0) for tile_node in node.findall("tile")]


def _parse_layer_data(node: Element, context: str) -> LayerData:
    data = LayerData(encoding=node.get("encoding") or None, compression=node.get("compression") or None)
    chunk_nodes = node.findall("chunk")
    if chunk_nodes:
        data.chunks = []
        for chunk_node in chunk_nodes:
            attrs = Attributes(chunk_node, context)
            data.chunks.append(Chunk(
                x=attrs.required("x", int),
                y=attrs.required("y", int),
                width=attrs.required("width", int),
                height=attrs.required("height", int),
                encoding=chunk_node.get("encoding"),
                compression=chunk_node.get("compression"),
                text=chunk_node.text or "",
                tiles=_parse_inline_tiles(chunk_node, context)
            ))
    else:
        data.text = node.text or ""
        data.tiles = _parse_inline_tiles(node, context)
    return data


def _parse_tile_layer(node: Element, context: str) -> TileLayer:
    layer = TileLayer()
    _parse_common(layer, node, context)
    attrs = Attributes(node, context)
    layer.width = attrs.get("width", 0, int)
    layer.height = attrs.get("height", 0, int)
    data_node = node.find("data")
    if data_node is None:
        raise MalformedDocument(f"Tile layer '{layer.name}' has no <data> element", context)
    layer.data = _parse_layer_data(data_node, context)
    return layer


def _parse_object_layer(node: Element, context: str) -> ObjectLayer:
    layer = ObjectLayer()
    _parse_common(layer, node, context)
    attrs = Attributes(node, context)
    layer.color = attrs.get("color")
    layer.draworder = attrs.get("draworder", "topdown")
    layer.objects = [parse_object(object_node, context) for object_node in node.findall("object")]
    return layer


def _parse_image_layer(node: Element, context: str) -> ImageLayer:
    layer = ImageLayer()
    _parse_common(layer, node, context)
    attrs = Attributes(node, context)
    layer.repeat_x = attrs.get("repeatx", False)
    layer.repeat_y = attrs.get("repeaty", False)
    image_node = node.find("image")
    if image_node is not None:
        layer.image = _parse_image(image_node, context)
    return layer


def _parse_group_layer(node: Element, context: str) -> GroupLayer:
    layer = GroupLayer()
    _parse_common(layer, node, context)
    layer.layers = _parse_layers(node, context)
    return layer


LAYER_PARSERS: dict[str, Callable[[Element, str], BaseLayer]] = {
    "layer": _parse_tile_layer,
    "objectgroup": _parse_object_layer,
    "imagelayer": _parse_image_layer,
    "group": _parse_group_layer,
}


def _parse_layers(node: Element, context: str) -> list[BaseLayer]:
    layers = []
    for child in node:
        parse = LAYER_PARSERS.get(child.tag)
        if parse is not None:
            layers.append(parse(child, _child_context(context, child)))
    return layers


def parse_map(data: Document, context: str = "<map>") -> TiledMap:
    root = _read_root(data, "map", context)
    attrs = Attributes(root, context)

    tiled_map = TiledMap(
        version=attrs.get("version", ""),
        tiledversion=attrs.get("tiledversion", ""),
        orientation=attrs.get("orientation", "orthogonal"),
        renderorder=attrs.get("renderorder", "right-down"),
        width=attrs.get("width", 0, int),
        height=attrs.get("height", 0, int),
        tilewidth=attrs.required("tilewidth"),
        tileheight=attrs.required("tileheight"),
        hexsidelength=attrs.get("hexsidelength", 0),
        staggeraxis=attrs.get("staggeraxis", "y").lower(),
        staggerindex=attrs.get("staggerindex", "odd").lower(),
        infinite=attrs.get("infinite", False),
        backgroundcolor=attrs.get("backgroundcolor"),
        nextlayerid=attrs.get("nextlayerid", 0),
        nextobjectid=attrs.get("nextobjectid", 0),
        properties=_properties_or_empty(root, context)
    )

    for child in root:
        if child.tag == "tileset":
            tiled_map.tilesets.append(_parse_tileset_reference(child, context))
        elif child.tag not in LAYER_PARSERS and child.tag != "properties":
            logger.debug(f"Ignoring <{child.tag}> in {context}")
    tiled_map.layers = _parse_layers(root, context)

    previous_gid = 0
    for reference in tiled_map.tilesets:
        if reference.first_gid <= previous_gid:
            raise MalformedDocument(f"Tileset firstgid {reference.first_gid} does not follow {previous_gid}", context)
        previous_gid = reference.first_gid

    return tiled_map


def parse_tileset(data: Document, context: str = "<tileset>") -> TilesetDefinition:
    return _parse_tileset_definition(_read_root(data, "tileset", context), context)


def parse_template(data: Document, path: str, context: Optional[str] = None) -> Template:
    context = context or path
    root = _read_root(data, "template", context)

    tileset: Optional[TilesetReference] = None
    tileset_node = root.find("tileset")
    if tileset_node is not None:
        tileset = _parse_tileset_reference(tileset_node, context)

    object_node = root.find("object")
    if object_node is None:
        raise MalformedDocument("Template has no <object> element", context)
    return Template(path, parse_object(object_node, context), tileset)
