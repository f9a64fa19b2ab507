import logging
from copy import deepcopy
from typing import NamedTuple, Optional

from tiled_importer.errors import MalformedDocument, NestedTemplateUnsupported, TilesetLoadFailed
from tiled_importer.model import Field, MapObject, Properties, Template
from tiled_importer.parser import parse_template
from tiled_importer.tilesets import Loader, ResolvedTileset, TilesetResolver, full_path, read_file


logger = logging.getLogger(__name__)

MERGED_FIELDS = ("id", "x", "y", "width", "height", "rotation", "gid", "visible")

UNSET_DEFAULTS = {
    "id": 0,
    "x": 0.0,
    "y": 0.0,
    "width": 0.0,
    "height": 0.0,
    "rotation": 0.0,
    "gid": 0,
    "visible": True,
}


def merge_properties(template: Optional[Properties], instance: Optional[Properties]) -> Optional[Properties]:
    if template is None and instance is None:
        return None
    if template is None:
        return instance.copy()
    return template.merged(instance)


def apply_template(instance: MapObject, template_object: MapObject) -> MapObject:
    """Instance fields that are set win, everything else comes from the template object."""
    if template_object.template is not None:
        raise NestedTemplateUnsupported(f"Template object references another template '{template_object.template}'", instance.template)

    merged = deepcopy(template_object)
    for name in MERGED_FIELDS:
        value: Field = getattr(instance, name)
        if value.is_set:
            setattr(merged, name, value)
    if instance.name is not None:
        merged.name = instance.name
    if instance.type is not None:
        merged.type = instance.type
    if instance.properties is not None:
        merged.properties = merge_properties(template_object.properties, instance.properties)
    if instance.shape is not None:
        merged.shape = deepcopy(instance.shape)
    return merged


def initialise_unset_values(obj: MapObject) -> MapObject:
    # Only valid after apply_template: before it, a default would hide what the template provides.
    for name, default in UNSET_DEFAULTS.items():
        if not getattr(obj, name).is_set:
            setattr(obj, name, Field.default(default))
    return obj


class LoadedTemplate(NamedTuple):
    template: Template
    tileset: Optional[ResolvedTileset]


class TemplateCache:
    """Templates read during one import, keyed by absolute path. Never shared between imports."""

    def __init__(self, tileset_resolver: TilesetResolver, loader: Loader = read_file) -> None:
        self.tileset_resolver = tileset_resolver
        self.loader = loader
        self._templates: dict[str, LoadedTemplate] = {}

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, path: str) -> bool:
        return path in self._templates

    def load(self, path: str) -> LoadedTemplate:
        loaded = self._templates.get(path)
        if loaded is not None:
            logger.debug(f"Reusing already loaded template {path}")
            return loaded

        try:
            data = self.loader(path)
        except OSError as e:
            raise MalformedDocument(f"Cannot read template: {e}", path) from e

        template = parse_template(data, path)
        tileset = None
        if template.tileset is not None:
            try:
                tileset = self.tileset_resolver.resolve(template.tileset, template.directory)
            except TilesetLoadFailed as e:
                raise TilesetLoadFailed(f"Template tileset could not be loaded: {e.message}", path) from e

        loaded = LoadedTemplate(template, tileset)
        self._templates[path] = loaded
        return loaded

    def resolve(self, obj: MapObject, base_dir: Optional[str]) -> tuple[MapObject, Optional[ResolvedTileset]]:
        """Returns the object with its template applied and, when its gid came from the template, the template's tileset."""
        if obj.template is None:
            return obj, None

        loaded = self.load(full_path(base_dir, obj.template))
        merged = apply_template(obj, loaded.template.object)
        replacement_tileset = loaded.tileset if not obj.gid.is_set else None
        return merged, replacement_tileset
