"""In-memory AndroidManifest.xml model.

Manifest values are immutable and validated when they are built, so an
invalid manifest never exists in memory. Serialization is deterministic:
two field-wise equal manifests always produce the same bytes.
"""
import dataclasses
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional

from . import catalog
from .errors import DuplicateComponent, ManifestError

ANDROID_NS = "http://schemas.android.com/apk/res/android"
MANIFEST_FILE = "AndroidManifest.xml"
COMPONENT_TAGS = ("activity", "service", "receiver", "provider")
# Top-level elements built from Manifest fields; XML fragments may not add more of them.
MANIFEST_MODELLED_TAGS = ("uses-sdk", "uses-permission", "uses-feature", "application")
APPLICATION_MODELLED_TAGS = COMPONENT_TAGS + ("meta-data",)

# Android requires android:exported on components with intent filters from API 31.
EXPORTED_REQUIRED_API = 31

_PACKAGE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z][A-Za-z0-9_]*)+$")
_ATTRIBUTE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

ET.register_namespace("android", ANDROID_NS)


def _android(name):
    return f"{{{ANDROID_NS}}}{name}"


def _attr_value(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, str)):
        return str(value)
    raise ManifestError(f"Unsupported attribute value {value!r}")


def _positive_int(name, value, optional=False):
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ManifestError(f"{name} must be a positive integer, got {value!r}")
    return value


def _check_type(name, value, kind, optional=True):
    if value is None and optional:
        return
    if not isinstance(value, kind):
        raise ManifestError(f"{name} must be a {kind.__name__}, got {value!r}")


def _sequence(name, values):
    """Items of a list-valued field. A bare string or a mapping is not a list."""
    if isinstance(values, (str, bytes, dict)):
        raise ManifestError(f"{name} must be a list, got {values!r}")
    try:
        return tuple(values)
    except TypeError:
        raise ManifestError(f"{name} must be a list, got {values!r}") from None


# -------------------- Parts --------------------

@dataclass(frozen=True)
class Permission:
    name: str
    max_sdk_version: Optional[int] = None

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ManifestError(f"Invalid permission name {self.name!r}")
        _positive_int("maxSdkVersion", self.max_sdk_version, optional=True)

    def sort_key(self):
        return (self.name, self.max_sdk_version or 0)


@dataclass(frozen=True)
class Feature:
    name: str
    required: bool = True

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ManifestError(f"Invalid feature name {self.name!r}")
        _check_type("required", self.required, bool, optional=False)

    def sort_key(self):
        return (self.name, self.required)


@dataclass(frozen=True)
class MetaData:
    name: str
    value: Optional[str] = None
    resource: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ManifestError("meta-data requires a name")
        if (self.value is None) == (self.resource is None):
            raise ManifestError(f"meta-data {self.name!r} needs exactly one of value or resource")
        if self.value is not None:
            object.__setattr__(self, "value", _attr_value(self.value))


@dataclass(frozen=True)
class IntentFilter:
    actions: tuple = ()
    categories: tuple = ()
    data: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "actions", tuple(self.actions))
        object.__setattr__(self, "categories", tuple(self.categories))
        # Each data entry is a set of attributes, e.g. {"scheme": "https"}.
        data = []
        for entry in self.data:
            items = entry.items() if isinstance(entry, dict) else entry
            data.append(_normalize_attributes(items))
        object.__setattr__(self, "data", tuple(data))
        if not self.actions:
            raise ManifestError("intent-filter requires at least one action")


def _normalize_attributes(items):
    pairs = {}
    for key, value in items:
        if not isinstance(key, str) or not _ATTRIBUTE_RE.match(key):
            raise ManifestError(f"Invalid attribute name {key!r}")
        if key == "name":
            raise ManifestError("'name' is set through the component name, not its attributes")
        pairs[key] = _attr_value(value)
    return tuple(sorted(pairs.items()))


@dataclass(frozen=True)
class Component:
    """An <activity>, <service>, <receiver> or <provider> entry.

    Identified by (tag, name). Attributes are given without the android:
    prefix and are stored sorted.
    """
    tag: str
    name: str
    attributes: tuple = ()
    intent_filters: tuple = ()
    meta_data: tuple = ()

    def __post_init__(self):
        if self.tag not in COMPONENT_TAGS:
            raise ManifestError(f"Unknown component tag {self.tag!r}; expected one of {COMPONENT_TAGS}")
        if not self.name or not isinstance(self.name, str):
            raise ManifestError(f"<{self.tag}> requires a name")
        attributes = self.attributes.items() if isinstance(self.attributes, dict) else self.attributes
        object.__setattr__(self, "attributes", _normalize_attributes(attributes))
        object.__setattr__(self, "intent_filters", tuple(self.intent_filters))
        object.__setattr__(self, "meta_data", tuple(self.meta_data))
        for item in self.intent_filters:
            if not isinstance(item, IntentFilter):
                raise ManifestError(f"<{self.tag}> {self.name}: intent filters must be IntentFilter values")
        for item in self.meta_data:
            if not isinstance(item, MetaData):
                raise ManifestError(f"<{self.tag}> {self.name}: meta-data must be MetaData values")

    @property
    def key(self):
        return (self.tag, self.name)

    def attribute(self, name):
        return dict(self.attributes).get(name)


# -------------------- Fragments --------------------

def _strip_whitespace(elem):
    if elem.text is not None and not elem.text.strip():
        elem.text = None
    elem.tail = None
    elem.attrib = dict(sorted(elem.attrib.items()))
    for child in elem:
        _strip_whitespace(child)


def _canonical_fragments(text, reserved=()):
    """Split pass-through XML into one canonical string per top-level element.

    Elements the manifest models itself (named in reserved) are rejected.
    """
    if not isinstance(text, str):
        raise ManifestError(f"XML fragment must be a string, got {text!r}")
    try:
        wrapper = ET.fromstring(f'<fragment xmlns:android="{ANDROID_NS}">{text}</fragment>')
    except ET.ParseError as e:
        raise ManifestError(f"Malformed XML fragment: {e}") from None
    if wrapper.text and wrapper.text.strip():
        raise ManifestError("XML fragment contains bare text outside an element")
    fragments = []
    for child in wrapper:
        if child.tail and child.tail.strip():
            raise ManifestError("XML fragment contains bare text outside an element")
        if child.tag in reserved:
            raise ManifestError(f"<{child.tag}> is modelled by the manifest and cannot be passed through as XML")
        _strip_whitespace(child)
        fragments.append(ET.tostring(child, encoding="unicode"))
    return fragments


def _normalize_fragments(name, values, reserved):
    if isinstance(values, str):
        values = (values,)
    fragments = []
    for value in _sequence(name, values):
        fragments.extend(_canonical_fragments(value, reserved))
    return tuple(fragments)


def _parse_fragment(text):
    wrapper = ET.fromstring(f'<fragment xmlns:android="{ANDROID_NS}">{text}</fragment>')
    return list(wrapper)


# -------------------- Manifest --------------------

def _coerce_permission(value):
    if isinstance(value, Permission):
        return value
    if isinstance(value, str):
        return Permission(value)
    if isinstance(value, dict):
        return Permission(value.get("name"), value.get("max_sdk_version"))
    raise ManifestError(f"Invalid permission {value!r}")


def _coerce_feature(value):
    if isinstance(value, Feature):
        return value
    if isinstance(value, str):
        return Feature(value)
    if isinstance(value, dict):
        return Feature(value.get("name"), value.get("required", True))
    raise ManifestError(f"Invalid feature {value!r}")


def _check_unique_components(components):
    seen = set()
    for component in components:
        if not isinstance(component, Component):
            raise ManifestError(f"Expected a Component, got {component!r}")
        if component.key in seen:
            raise DuplicateComponent(*component.key)
        seen.add(component.key)


def _check_unique_meta_data(entries):
    names = [entry.name for entry in entries]
    if len(names) != len(set(names)):
        raise ManifestError(f"Duplicate application meta-data names in {names}")


def _named_set(field_name, items, coerce):
    """Coerce permission or feature entries into a frozenset with one entry per name."""
    entries = {}
    for item in _sequence(field_name, items):
        entry = coerce(item)
        existing = entries.get(entry.name)
        if existing is not None and existing != entry:
            raise ManifestError(f"Conflicting {field_name} entries for {entry.name!r}: {existing} and {entry}")
        entries[entry.name] = entry
    return frozenset(entries.values())


def _check_scalars(values, has_code_optional):
    _check_type("package", values.package, str)
    for name in ("version_name", "label", "icon", "theme"):
        _check_type(name, getattr(values, name), str)
    for name in ("debuggable", "extract_native_libs"):
        _check_type(name, getattr(values, name), bool)
    _check_type("has_code", values.has_code, bool, optional=has_code_optional)


def _normalize_collections(values):
    """Shared normalization of the list-valued fields of Manifest and ManifestOverrides."""
    object.__setattr__(values, "permissions", _named_set("permissions", values.permissions, _coerce_permission))
    object.__setattr__(values, "features", _named_set("features", values.features, _coerce_feature))
    object.__setattr__(
        values, "application_meta_data", _sequence("application_meta_data", values.application_meta_data)
    )
    object.__setattr__(values, "components", _sequence("components", values.components))
    object.__setattr__(
        values, "extra_elements",
        _normalize_fragments("extra_elements", values.extra_elements, MANIFEST_MODELLED_TAGS),
    )
    object.__setattr__(
        values, "application_extra_elements",
        _normalize_fragments(
            "application_extra_elements", values.application_extra_elements, APPLICATION_MODELLED_TAGS
        ),
    )
    for entry in values.application_meta_data:
        if not isinstance(entry, MetaData):
            raise ManifestError(f"Expected MetaData, got {entry!r}")
    _check_unique_meta_data(values.application_meta_data)
    _check_unique_components(values.components)


@dataclass(frozen=True)
class Manifest:
    package: str
    min_sdk: int
    target_sdk: int
    version_code: int = 1
    version_name: str = "1.0"
    max_sdk: Optional[int] = None
    permissions: frozenset = frozenset()
    features: frozenset = frozenset()
    label: Optional[str] = None
    debuggable: Optional[bool] = None
    has_code: bool = False
    icon: Optional[str] = None
    theme: Optional[str] = None
    extract_native_libs: Optional[bool] = None
    application_meta_data: tuple = ()
    components: tuple = ()
    extra_elements: tuple = ()
    application_extra_elements: tuple = ()

    def __post_init__(self):
        if not self.package or not isinstance(self.package, str) or not _PACKAGE_RE.match(self.package):
            raise ManifestError(f"Invalid package identifier {self.package!r}")
        _check_scalars(self, has_code_optional=False)
        _positive_int("versionCode", self.version_code)
        if not self.version_name:
            raise ManifestError(f"Invalid versionName {self.version_name!r}")
        _positive_int("minSdkVersion", self.min_sdk)
        _positive_int("targetSdkVersion", self.target_sdk)
        _positive_int("maxSdkVersion", self.max_sdk, optional=True)
        if self.min_sdk > self.target_sdk:
            raise ManifestError(
                f"minSdkVersion {self.min_sdk} is greater than targetSdkVersion {self.target_sdk}"
            )
        if self.max_sdk is not None and self.max_sdk < self.target_sdk:
            raise ManifestError(
                f"maxSdkVersion {self.max_sdk} is lower than targetSdkVersion {self.target_sdk}"
            )

        _normalize_collections(self)

        if self.target_sdk >= EXPORTED_REQUIRED_API:
            for component in self.components:
                if component.intent_filters and component.attribute("exported") is None:
                    raise ManifestError(
                        f"<{component.tag}> {component.name} has intent filters but no exported "
                        f"attribute, which targetSdkVersion {self.target_sdk} requires"
                    )

    def replace(self, **changes):
        return dataclasses.replace(self, **changes)


SCALAR_FIELDS = (
    "package", "version_code", "version_name", "min_sdk", "target_sdk", "max_sdk",
    "label", "debuggable", "has_code", "icon", "theme", "extract_native_libs",
)


@dataclass(frozen=True)
class ManifestOverrides:
    """Explicit changes to apply on top of a base Manifest.

    Scalar fields left as None keep the base value.
    """
    package: Optional[str] = None
    version_code: Optional[int] = None
    version_name: Optional[str] = None
    min_sdk: Optional[int] = None
    target_sdk: Optional[int] = None
    max_sdk: Optional[int] = None
    label: Optional[str] = None
    debuggable: Optional[bool] = None
    has_code: Optional[bool] = None
    icon: Optional[str] = None
    theme: Optional[str] = None
    extract_native_libs: Optional[bool] = None
    permissions: frozenset = frozenset()
    features: frozenset = frozenset()
    application_meta_data: tuple = ()
    components: tuple = ()
    extra_elements: tuple = ()
    application_extra_elements: tuple = ()

    def __post_init__(self):
        _check_scalars(self, has_code_optional=True)
        for name, label in (("version_code", "versionCode"), ("min_sdk", "minSdkVersion"),
                            ("target_sdk", "targetSdkVersion"), ("max_sdk", "maxSdkVersion")):
            _positive_int(label, getattr(self, name), optional=True)
        _normalize_collections(self)

    @classmethod
    def from_dict(cls, data):
        """Build overrides from a plain mapping such as the [manifest] config table."""
        if not isinstance(data, dict):
            raise ManifestError(f"Manifest overrides must be a table, got {type(data).__name__}")
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ManifestError(f"Unknown manifest override keys: {', '.join(unknown)}")
        values = dict(data)
        try:
            components = _sequence("components", data.get("components", ()))
            values["components"] = tuple(_component_from_dict(c) for c in components)
            meta_data = _sequence("application_meta_data", data.get("application_meta_data", ()))
            values["application_meta_data"] = tuple(_meta_data_from_dict(m) for m in meta_data)
        except (TypeError, AttributeError, ValueError, KeyError) as e:
            raise ManifestError(f"Malformed manifest override: {e}") from None
        return cls(**values)


def _meta_data_from_dict(data):
    if isinstance(data, MetaData):
        return data
    return MetaData(data["name"], data.get("value"), data.get("resource"))


def _component_from_dict(data):
    if isinstance(data, Component):
        return data
    data = dict(data)
    try:
        tag = data.pop("tag")
        name = data.pop("name")
    except KeyError as e:
        raise ManifestError(f"Component override is missing {e.args[0]!r}") from None
    filters = tuple(
        IntentFilter(f.get("actions", ()), f.get("categories", ()), f.get("data", ()))
        for f in data.pop("intent_filters", ())
    )
    meta_data = tuple(_meta_data_from_dict(m) for m in data.pop("meta_data", ()))
    attributes = data.pop("attributes", {})
    if data:
        raise ManifestError(f"Unknown keys in component {name!r}: {', '.join(sorted(data))}")
    return Component(tag, name, attributes, filters, meta_data)


# -------------------- Operations --------------------

def default_for(package_id):
    """Minimal valid manifest for package_id: lowest supported min SDK, no components."""
    return Manifest(
        package=package_id,
        min_sdk=catalog.default_min_api(),
        target_sdk=catalog.max_known_api(),
    )


def native_activity(lib_name, label=None):
    """The launcher NativeActivity that loads lib<lib_name>.so."""
    attributes = {
        "exported": True,
        "configChanges": "orientation|keyboardHidden|screenSize",
    }
    if label is not None:
        attributes["label"] = label
    return Component(
        "activity",
        "android.app.NativeActivity",
        attributes,
        (IntentFilter(("android.intent.action.MAIN",), ("android.intent.category.LAUNCHER",)),),
        (MetaData("android.app.lib_name", lib_name),),
    )


def _merge_components(base, extra):
    merged = list(base)
    index = {component.key: component for component in base}
    for component in extra:
        existing = index.get(component.key)
        if existing is None:
            merged.append(component)
            index[component.key] = component
        elif existing != component:
            raise DuplicateComponent(*component.key)
    return tuple(merged)


def _merge_named(base, extra):
    merged = {entry.name: entry for entry in base}
    merged.update((entry.name, entry) for entry in extra)
    return frozenset(merged.values())


def _merge_meta_data(base, extra):
    merged = {entry.name: entry for entry in base}
    order = [entry.name for entry in base]
    for entry in extra:
        if entry.name not in merged:
            order.append(entry.name)
        merged[entry.name] = entry
    return tuple(merged[name] for name in order)


def _merge_fragments(base, extra):
    merged = list(base)
    for fragment in extra:
        if fragment not in merged:
            merged.append(fragment)
    return tuple(merged)


def merge(base, overrides):
    """Apply overrides to base and return a new, validated Manifest.

    Scalars in overrides replace base values. Permissions and features are
    unioned by name, an override entry replacing a base entry of the same
    name. Components are appended in order. A component whose (tag, name)
    already exists with different content raises DuplicateComponent.
    """
    if isinstance(overrides, dict):
        overrides = ManifestOverrides.from_dict(overrides)
    values = {f.name: getattr(base, f.name) for f in dataclasses.fields(Manifest)}
    for name in SCALAR_FIELDS:
        value = getattr(overrides, name)
        if value is not None:
            values[name] = value
    values["permissions"] = _merge_named(base.permissions, overrides.permissions)
    values["features"] = _merge_named(base.features, overrides.features)
    values["application_meta_data"] = _merge_meta_data(
        base.application_meta_data, overrides.application_meta_data
    )
    values["components"] = _merge_components(base.components, overrides.components)
    values["extra_elements"] = _merge_fragments(base.extra_elements, overrides.extra_elements)
    values["application_extra_elements"] = _merge_fragments(
        base.application_extra_elements, overrides.application_extra_elements
    )
    return Manifest(**values)


def _meta_data_element(parent, entry):
    attrib = {_android("name"): entry.name}
    if entry.value is not None:
        attrib[_android("value")] = entry.value
    else:
        attrib[_android("resource")] = entry.resource
    ET.SubElement(parent, "meta-data", attrib)


def _component_element(parent, component):
    attrib = {_android("name"): component.name}
    for key, value in component.attributes:
        attrib[_android(key)] = value
    elem = ET.SubElement(parent, component.tag, attrib)
    for intent_filter in component.intent_filters:
        filter_elem = ET.SubElement(elem, "intent-filter")
        for action in intent_filter.actions:
            ET.SubElement(filter_elem, "action", {_android("name"): action})
        for category in intent_filter.categories:
            ET.SubElement(filter_elem, "category", {_android("name"): category})
        for data in intent_filter.data:
            ET.SubElement(filter_elem, "data", {_android(k): v for k, v in data})
    for entry in component.meta_data:
        _meta_data_element(elem, entry)


def to_xml(manifest):
    """Serialize to AndroidManifest.xml text. Equal manifests give identical text."""
    root = ET.Element("manifest", {
        "package": manifest.package,
        _android("versionCode"): str(manifest.version_code),
        _android("versionName"): manifest.version_name,
    })

    sdk = {
        _android("minSdkVersion"): str(manifest.min_sdk),
        _android("targetSdkVersion"): str(manifest.target_sdk),
    }
    if manifest.max_sdk is not None:
        sdk[_android("maxSdkVersion")] = str(manifest.max_sdk)
    ET.SubElement(root, "uses-sdk", sdk)

    for permission in sorted(manifest.permissions, key=Permission.sort_key):
        attrib = {_android("name"): permission.name}
        if permission.max_sdk_version is not None:
            attrib[_android("maxSdkVersion")] = str(permission.max_sdk_version)
        ET.SubElement(root, "uses-permission", attrib)

    for feature in sorted(manifest.features, key=Feature.sort_key):
        ET.SubElement(root, "uses-feature", {
            _android("name"): feature.name,
            _android("required"): _attr_value(feature.required),
        })

    for fragment in manifest.extra_elements:
        root.extend(_parse_fragment(fragment))

    application = {}
    for key, attr in (("label", "label"), ("icon", "icon"), ("theme", "theme")):
        value = getattr(manifest, key)
        if value is not None:
            application[_android(attr)] = value
    if manifest.debuggable is not None:
        application[_android("debuggable")] = _attr_value(manifest.debuggable)
    application[_android("hasCode")] = _attr_value(manifest.has_code)
    if manifest.extract_native_libs is not None:
        application[_android("extractNativeLibs")] = _attr_value(manifest.extract_native_libs)
    app_elem = ET.SubElement(root, "application", application)

    for entry in manifest.application_meta_data:
        _meta_data_element(app_elem, entry)
    for component in manifest.components:
        _component_element(app_elem, component)
    for fragment in manifest.application_extra_elements:
        app_elem.extend(_parse_fragment(fragment))

    ET.indent(root, space="    ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="utf-8"?>\n{body}\n'


def write_to(manifest, directory):
    """Write AndroidManifest.xml into directory and return its path."""
    path = os.path.join(directory, MANIFEST_FILE)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(to_xml(manifest))
    return path
