import os
import shutil
import tempfile
import unittest
import xml.etree.ElementTree as ET
from ndkpack import manifest
from ndkpack.errors import DuplicateComponent, ManifestError
from ndkpack.manifest import Component, IntentFilter, ManifestOverrides, MetaData

ANDROID = "{%s}" % manifest.ANDROID_NS


def _service(name, **attributes):
    return Component("service", name, attributes)


class TestManifest(unittest.TestCase):

    def setUp(self):
        self.base = manifest.default_for("com.example.app")

    def test_default_for(self):
        self.assertEqual(self.base.package, "com.example.app")
        self.assertEqual(self.base.min_sdk, 21)
        self.assertEqual(self.base.target_sdk, 35)
        self.assertEqual(self.base.components, ())
        self.assertFalse(self.base.has_code)

    def test_invalid_package(self):
        for package in ("", "app", "com..example", "1com.example"):
            with self.assertRaises(ManifestError):
                manifest.default_for(package)

    def test_min_sdk_above_target_sdk(self):
        with self.assertRaises(ManifestError):
            manifest.merge(self.base, ManifestOverrides(min_sdk=30, target_sdk=21))

    def test_merge_scalars_and_sets(self):
        merged = manifest.merge(self.base, ManifestOverrides(
            version_code=7,
            label="Demo",
            permissions={"android.permission.INTERNET"},
            features={"android.hardware.vulkan.version"},
        ))
        self.assertEqual(merged.version_code, 7)
        self.assertEqual(merged.version_name, "1.0")
        self.assertEqual(merged.label, "Demo")
        again = manifest.merge(merged, ManifestOverrides(permissions={"android.permission.CAMERA"}))
        self.assertEqual(
            {p.name for p in again.permissions},
            {"android.permission.INTERNET", "android.permission.CAMERA"},
        )

    def test_merge_is_idempotent(self):
        overrides = ManifestOverrides(
            label="Demo",
            permissions={"android.permission.INTERNET"},
            components=(manifest.native_activity("demo"),),
            application_meta_data=(MetaData("com.example.flag", True),),
            extra_elements='<supports-screens android:anyDensity="true"/>',
        )
        once = manifest.merge(self.base, overrides)
        self.assertEqual(manifest.merge(once, overrides), once)
        self.assertEqual(manifest.to_xml(manifest.merge(once, overrides)), manifest.to_xml(once))

    def test_components_keep_order(self):
        merged = manifest.merge(self.base, ManifestOverrides(components=(_service("b.Second"),)))
        merged = manifest.merge(merged, ManifestOverrides(components=(_service("a.First"),)))
        self.assertEqual([c.name for c in merged.components], ["b.Second", "a.First"])

    def test_duplicate_component_in_overrides(self):
        with self.assertRaises(DuplicateComponent):
            ManifestOverrides(components=(_service("x.Sync"), _service("x.Sync", exported=False)))

    def test_conflicting_component_against_base(self):
        base = manifest.merge(self.base, ManifestOverrides(components=(_service("x.Sync", exported=False),)))
        with self.assertRaises(DuplicateComponent) as cm:
            manifest.merge(base, ManifestOverrides(components=(_service("x.Sync", exported=True),)))
        self.assertEqual(cm.exception.name, "x.Sync")
        self.assertEqual(cm.exception.tag, "service")

    def test_same_name_different_tag_is_allowed(self):
        merged = manifest.merge(self.base, ManifestOverrides(components=(
            _service("x.Thing"), Component("receiver", "x.Thing"),
        )))
        self.assertEqual(len(merged.components), 2)

    def test_exported_required_for_intent_filters(self):
        component = Component("activity", "x.Main", {}, (IntentFilter(("android.intent.action.VIEW",)),))
        with self.assertRaises(ManifestError):
            manifest.merge(self.base, ManifestOverrides(components=(component,)))
        # Older targets do not need it.
        older = manifest.merge(self.base, ManifestOverrides(target_sdk=30, components=(component,)))
        self.assertEqual(len(older.components), 1)

    def test_meta_data_needs_value_or_resource(self):
        with self.assertRaises(ManifestError):
            MetaData("x")
        with self.assertRaises(ManifestError):
            MetaData("x", "1", "@string/x")

    def test_application_meta_data_replaced_by_name(self):
        merged = manifest.merge(self.base, ManifestOverrides(application_meta_data=(MetaData("k", "1"),)))
        merged = manifest.merge(merged, ManifestOverrides(application_meta_data=(MetaData("k", "2"),)))
        self.assertEqual(merged.application_meta_data, (MetaData("k", "2"),))

    def test_malformed_fragment(self):
        with self.assertRaises(ManifestError):
            ManifestOverrides(extra_elements="<unclosed>")
        with self.assertRaises(ManifestError):
            ManifestOverrides(extra_elements="text only")

    def test_fragments_are_canonical(self):
        a = ManifestOverrides(extra_elements='<supports-screens  android:smallScreens="true" android:anyDensity="true" />')
        b = ManifestOverrides(extra_elements='<supports-screens android:anyDensity="true" android:smallScreens="true"/>')
        self.assertEqual(a.extra_elements, b.extra_elements)

    def test_scalar_types_are_checked(self):
        for data in ({"label": 5}, {"icon": ["@mipmap/icon"]}, {"version_name": 2},
                     {"debuggable": "true"}, {"has_code": 1}, {"extract_native_libs": "false"},
                     {"version_code": "3"}, {"min_sdk": 21.0}):
            with self.assertRaises(ManifestError):
                ManifestOverrides.from_dict(data)
        with self.assertRaises(ManifestError):
            self.base.replace(theme=True)
        with self.assertRaises(ManifestError):
            self.base.replace(has_code=None)

    def test_feature_required_must_be_bool(self):
        with self.assertRaises(ManifestError):
            manifest.merge(self.base, {"features": [{"name": "android.hardware.camera", "required": "false"}]})

    def test_bare_string_is_not_a_list(self):
        for key in ("permissions", "features", "components", "application_meta_data"):
            with self.assertRaises(ManifestError):
                ManifestOverrides.from_dict({key: "android.permission.INTERNET"})
        with self.assertRaises(ManifestError):
            ManifestOverrides(permissions=5)

    def test_permissions_unique_by_name(self):
        base = manifest.merge(self.base, {"permissions": ["android.permission.READ_EXTERNAL_STORAGE"]})
        merged = manifest.merge(base, ManifestOverrides(
            permissions={manifest.Permission("android.permission.READ_EXTERNAL_STORAGE", 32)},
        ))
        self.assertEqual(merged.permissions, {manifest.Permission("android.permission.READ_EXTERNAL_STORAGE", 32)})
        self.assertEqual(manifest.to_xml(merged).count("<uses-permission "), 1)
        with self.assertRaises(ManifestError):
            ManifestOverrides(permissions=("a.P", manifest.Permission("a.P", 30)))

    def test_features_unique_by_name(self):
        base = manifest.merge(self.base, {"features": ["android.hardware.camera"]})
        merged = manifest.merge(base, {"features": [{"name": "android.hardware.camera", "required": False}]})
        self.assertEqual(merged.features, {manifest.Feature("android.hardware.camera", False)})
        self.assertIn('android:required="false"', manifest.to_xml(merged))

    def test_fragments_cannot_repeat_modelled_elements(self):
        with self.assertRaises(ManifestError):
            ManifestOverrides(extra_elements='<uses-feature android:name="x" android:required="true"/>')
        with self.assertRaises(ManifestError):
            ManifestOverrides(extra_elements='<application android:label="Other"/>')
        with self.assertRaises(ManifestError):
            ManifestOverrides(application_extra_elements='<activity android:name="x.Main"/>')
        allowed = ManifestOverrides(application_extra_elements='<uses-library android:name="org.apache.http.legacy"/>')
        self.assertEqual(len(allowed.application_extra_elements), 1)

    def test_from_dict(self):
        overrides = ManifestOverrides.from_dict({
            "version_name": "2.0",
            "permissions": ["android.permission.INTERNET", {"name": "android.permission.READ_EXTERNAL_STORAGE",
                                                            "max_sdk_version": 32}],
            "components": [{
                "tag": "activity",
                "name": "x.Main",
                "attributes": {"exported": True},
                "intent_filters": [{"actions": ["android.intent.action.MAIN"]}],
            }],
        })
        merged = manifest.merge(self.base, overrides)
        self.assertEqual(merged.version_name, "2.0")
        self.assertEqual(merged.components[0].attribute("exported"), "true")
        self.assertEqual(len(merged.permissions), 2)

    def test_from_dict_rejects_unknown_keys(self):
        with self.assertRaises(ManifestError):
            ManifestOverrides.from_dict({"packge": "typo.example"})
        with self.assertRaises(ManifestError):
            ManifestOverrides.from_dict({"components": [{"tag": "activity"}]})

    def test_merge_accepts_dict(self):
        merged = manifest.merge(self.base, {"label": "From dict"})
        self.assertEqual(merged.label, "From dict")

    def test_to_xml(self):
        merged = manifest.merge(self.base, ManifestOverrides(
            permissions={"android.permission.INTERNET"},
            components=(manifest.native_activity("demo", label="Demo"),),
        ))
        text = manifest.to_xml(merged)
        self.assertTrue(text.startswith('<?xml version="1.0" encoding="utf-8"?>\n'))
        self.assertTrue(text.endswith("\n"))
        root = ET.fromstring(text.split("\n", 1)[1])
        self.assertEqual(root.get("package"), "com.example.app")
        self.assertEqual(root.find("uses-sdk").get(ANDROID + "minSdkVersion"), "21")
        self.assertEqual(root.find("uses-permission").get(ANDROID + "name"), "android.permission.INTERNET")
        activity = root.find("application/activity")
        self.assertEqual(activity.get(ANDROID + "name"), "android.app.NativeActivity")
        self.assertEqual(activity.get(ANDROID + "exported"), "true")
        self.assertEqual(activity.find("meta-data").get(ANDROID + "value"), "demo")
        self.assertEqual(root.find("application").get(ANDROID + "hasCode"), "false")

    def test_to_xml_is_deterministic(self):
        first = manifest.merge(self.base, ManifestOverrides(permissions={"b.P", "a.P", "c.P"}))
        second = manifest.merge(self.base, ManifestOverrides(permissions={"c.P", "b.P", "a.P"}))
        self.assertEqual(manifest.to_xml(first), manifest.to_xml(second))
        names = [e.get(ANDROID + "name") for e in ET.fromstring(
            manifest.to_xml(first).split("\n", 1)[1]).findall("uses-permission")]
        self.assertEqual(names, ["a.P", "b.P", "c.P"])

    def test_write_to(self):
        test_dir = tempfile.mkdtemp()
        try:
            path = manifest.write_to(self.base, test_dir)
            self.assertEqual(os.path.basename(path), "AndroidManifest.xml")
            with open(path, "r", encoding="utf-8") as f:
                self.assertEqual(f.read(), manifest.to_xml(self.base))
        finally:
            shutil.rmtree(test_dir)


if __name__ == "__main__":
    unittest.main()
