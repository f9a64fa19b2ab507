import os
from unittest import TestCase

from tiled_importer.errors import MalformedDocument, NestedTemplateUnsupported, TilesetLoadFailed
from tiled_importer.model import Ellipse, Field, FieldState, MapObject, Properties, Property
from tiled_importer.templates import TemplateCache, apply_template, initialise_unset_values, merge_properties
from tiled_importer.tilesets import TilesetResolver, full_path
from tests.unit.helpers import FakeFiles


def template_object() -> MapObject:
    return MapObject(
        name="barrel",
        type="prop",
        x=Field.explicit(5.0),
        gid=Field.explicit(1),
        width=Field.explicit(32.0),
        height=Field.explicit(32.0),
        properties=Properties([Property("hp", "int", 10), Property("label", "string", "barrel")])
    )


class TestMergeProperties(TestCase):
    def test_absent_on_both_sides(self) -> None:
        self.assertIsNone(merge_properties(None, None))

    def test_instance_only(self) -> None:
        instance = Properties([Property("hp", "int", 3)])
        merged = merge_properties(None, instance)

        self.assertEqual(instance, merged)
        self.assertIsNot(instance, merged)

    def test_override_and_append(self) -> None:
        merged = merge_properties(
            Properties([Property("hp", "int", 10), Property("label", "string", "barrel")]),
            Properties([Property("hp", "int", 25), Property("loot", "string", "coin")]))

        self.assertEqual({"hp": 25, "label": "barrel", "loot": "coin"}, merged.as_dict())


class TestApplyTemplate(TestCase):
    def test_set_instance_fields_win(self) -> None:
        instance = MapObject(
            id=Field.explicit(7),
            x=Field.explicit(10.0),
            y=Field.explicit(48.0),
            template="barrel.tx",
            properties=Properties([Property("hp", "int", 25)])
        )
        merged = apply_template(instance, template_object())

        self.assertEqual(Field.explicit(7), merged.id)
        self.assertEqual(Field.explicit(10.0), merged.x)
        self.assertEqual(Field.explicit(48.0), merged.y)
        self.assertEqual(Field.explicit(1), merged.gid)
        self.assertEqual(Field.explicit(32.0), merged.width)
        self.assertFalse(merged.rotation.is_set)
        self.assertEqual("barrel", merged.name)
        self.assertEqual("prop", merged.type)
        self.assertEqual(25, merged.properties["hp"])
        self.assertEqual("barrel", merged.properties["label"])
        self.assertIsNone(merged.template)

    def test_template_is_not_modified(self) -> None:
        template = template_object()
        apply_template(MapObject(properties=Properties([Property("hp", "int", 25)]), shape=Ellipse()), template)

        self.assertEqual(template_object(), template)

    def test_instance_without_properties_keeps_template_properties(self) -> None:
        merged = apply_template(MapObject(name="other"), template_object())

        self.assertEqual("other", merged.name)
        self.assertEqual({"hp": 10, "label": "barrel"}, merged.properties.as_dict())

    def test_instance_shape_wins(self) -> None:
        self.assertIsInstance(apply_template(MapObject(shape=Ellipse()), template_object()).shape, Ellipse)
        self.assertIsNone(apply_template(MapObject(), template_object()).shape)

    def test_empty_instance_gives_copy_of_template(self) -> None:
        template = template_object()
        merged = apply_template(MapObject(template="barrel.tx"), template)

        self.assertEqual(template, merged)
        self.assertIsNot(template.properties, merged.properties)

    def test_x_and_hp_override(self) -> None:
        template = MapObject(
            x=Field.explicit(1.0), y=Field.explicit(2.0), gid=Field.explicit(3),
            properties=Properties([Property("hp", "string", "5")])
        )
        instance = MapObject(x=Field.explicit(9.0), template="t.tx", properties=Properties([Property("hp", "string", "10")]))
        merged = apply_template(instance, template)

        self.assertEqual(Field.explicit(9.0), merged.x)
        self.assertEqual(Field.explicit(2.0), merged.y)
        self.assertEqual(Field.explicit(3), merged.gid)
        self.assertEqual([Property("hp", "string", "10")], merged.properties.items)

    def test_applying_twice_changes_nothing(self) -> None:
        instances = [
            MapObject(),
            MapObject(x=Field.explicit(10.0), properties=Properties([Property("hp", "int", 25), Property("loot", "string", "coin")])),
            MapObject(name="named", gid=Field.explicit(0), shape=Ellipse()),
        ]
        for instance in instances:
            merged = apply_template(instance, template_object())
            self.assertEqual(merged, apply_template(merged, template_object()))

    def test_nested_template(self) -> None:
        nested = template_object()
        nested.template = "other.tx"

        with self.assertRaises(NestedTemplateUnsupported):
            apply_template(MapObject(template="barrel.tx"), nested)


class TestInitialiseUnsetValues(TestCase):
    def test_only_unset_fields_get_defaults(self) -> None:
        obj = initialise_unset_values(MapObject(x=Field.explicit(3.0), visible=Field.explicit(False)))

        self.assertEqual(Field.explicit(3.0), obj.x)
        self.assertEqual(Field.explicit(False), obj.visible)
        self.assertEqual(Field(FieldState.DEFAULT, 0.0), obj.y)
        self.assertEqual(Field(FieldState.DEFAULT, 0), obj.gid)
        self.assertEqual(Field(FieldState.DEFAULT, 0.0), obj.rotation)

    def test_visible_defaults_to_true(self) -> None:
        self.assertEqual(Field.default(True), initialise_unset_values(MapObject()).visible)

    def test_merge_then_initialise(self) -> None:
        merged = initialise_unset_values(apply_template(MapObject(), template_object()))

        # the template's x survives because defaults are only filled in after merging
        self.assertEqual(Field.explicit(5.0), merged.x)
        self.assertEqual(Field.default(0.0), merged.y)


class TestTemplateCache(TestCase):
    def setUp(self) -> None:
        self.base_dir = os.path.abspath("/maps")
        self.template_path = full_path(self.base_dir, "templates/barrel.tx")
        self.files = FakeFiles({
            self.template_path:
                '<template><tileset firstgid="1" source="../props.tsx"/>'
                '<object name="barrel" gid="1" width="32" height="32"/></template>',
            full_path(self.base_dir, "templates/plain.tx"):
                '<template><object name="marker" width="8" height="8"><ellipse/></object></template>',
            full_path(self.base_dir, "templates/nested.tx"):
                '<template><object name="nested" template="plain.tx"/></template>',
            full_path(self.base_dir, "templates/lost.tx"):
                '<template><tileset firstgid="1" source="lost.tsx"/><object gid="1"/></template>',
            full_path(self.base_dir, "props.tsx"):
                '<tileset name="props" tilewidth="32" tileheight="32" tilecount="1" columns="0">'
                '<tile id="0"><image width="32" height="32" source="barrel.png"/></tile></tileset>',
        })
        self.cache = TemplateCache(TilesetResolver(self.files), self.files)

    def test_template_is_loaded_once(self) -> None:
        first, first_tileset = self.cache.resolve(MapObject(template="templates/barrel.tx", x=Field.explicit(1.0)), self.base_dir)
        second, second_tileset = self.cache.resolve(MapObject(template="templates/barrel.tx", x=Field.explicit(2.0)), self.base_dir)

        self.assertEqual(1, len(self.cache))
        self.assertIn(self.template_path, self.cache)
        self.assertEqual(1, self.files.reads[self.template_path])
        self.assertEqual(Field.explicit(1.0), first.x)
        self.assertEqual(Field.explicit(2.0), second.x)
        self.assertIs(first_tileset, second_tileset)

    def test_template_tileset_is_relative_to_template(self) -> None:
        _, tileset = self.cache.resolve(MapObject(template="templates/barrel.tx"), self.base_dir)

        self.assertEqual("props", tileset.name)
        self.assertEqual(full_path(self.base_dir, "props.tsx"), tileset.source_path)
        self.assertEqual(1, tileset.first_gid)

    def test_instance_gid_keeps_map_tilesets(self) -> None:
        merged, tileset = self.cache.resolve(MapObject(template="templates/barrel.tx", gid=Field.explicit(3)), self.base_dir)

        self.assertEqual(3, merged.gid.value)
        self.assertIsNone(tileset)

    def test_object_without_template(self) -> None:
        obj = MapObject(name="plain")

        self.assertEqual((obj, None), self.cache.resolve(obj, self.base_dir))
        self.assertEqual(0, len(self.cache))

    def test_template_without_tileset(self) -> None:
        merged, tileset = self.cache.resolve(MapObject(template="templates/plain.tx"), self.base_dir)

        self.assertIsNone(tileset)
        self.assertIsInstance(merged.shape, Ellipse)

    def test_nested_template(self) -> None:
        with self.assertRaises(NestedTemplateUnsupported):
            self.cache.resolve(MapObject(template="templates/nested.tx"), self.base_dir)

    def test_missing_template(self) -> None:
        with self.assertRaises(MalformedDocument):
            self.cache.resolve(MapObject(template="templates/missing.tx"), self.base_dir)

    def test_missing_template_tileset(self) -> None:
        with self.assertRaises(TilesetLoadFailed) as cm:
            self.cache.resolve(MapObject(template="templates/lost.tx"), self.base_dir)
        self.assertEqual(full_path(self.base_dir, "templates/lost.tx"), cm.exception.context)
