# object_model.py: object models describe the properties, defaults and connections of a graph object type
#
# Object models are loaded from yaml templates: a mapping, a yaml string or the docstring of an
# ObjectModel subclass (the yaml part precedes the "---" delimiter):
#
#   class Post(ObjectModel):
#       """
#       type: post
#       default: [id, message]
#       properties:
#           id: {type: id}
#           message: {type: string, preprocessor: {POST: [strip_tags]}}
#           comments: {connection: comment}
#       ---
#       Wall posts
#       """
#
from __future__ import annotations
import inspect
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import yaml
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.engine import Row
from sqlalchemy.exc import NoInspectionAvailable
import graphgate
from .annotations import annotation_parser, ALL_METHODS
from .errors import NoObjectData, ValidationError
from .graph_types import PermissionLevel

DOC_DELIMITER = "---"
TYPE_ANNOTATIONS = ("type", "version", "default", "setting", "maintenance", "authorizer")
PROPERTY_ANNOTATIONS = ("type", "default", "permissions", "connection", "preprocessor", "postprocessor", "version", "setting")
READ_METHODS = ("GET",)


def parse_template_doc(obj: Any) -> Dict:
    """
    Parse the yaml template from a docstring
    """
    obj_doc = str(inspect.getdoc(obj) or "")
    raw_doc = obj_doc.split(DOC_DELIMITER)[0]
    try:
        yaml_doc = yaml.safe_load(raw_doc)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Failed to parse object template of {obj} ({exc})")
    if not isinstance(yaml_doc, dict):
        raise ValidationError(f"No object template in the documentation of {obj}")
    return yaml_doc


def load_template(template: Any) -> Dict:
    """
    :param template: mapping, yaml string or documented class
    :return: template dict
    """
    if isinstance(template, Mapping):
        return dict(template)
    if isinstance(template, str):
        try:
            result = yaml.safe_load(template)
        except yaml.YAMLError as exc:
            raise ValidationError(f"Failed to parse object template ({exc})")
        if not isinstance(result, dict):
            raise ValidationError("Object template is not a mapping")
        return result
    return parse_template_doc(template)


class ObjectData(dict):
    """
    Object properties as returned by the object APIs
    `is_complete` is False when only part of the object could be loaded
    """

    def __init__(self, *args, complete: bool = True, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.is_complete = complete


@dataclass
class PropertyDef:
    name: str
    type: str = "string"
    default: bool = False
    permissions: Dict[str, PermissionLevel] = field(default_factory=dict)
    connection: Optional[str] = None
    preprocessor: Dict[str, tuple] = field(default_factory=dict)
    postprocessor: Dict[str, tuple] = field(default_factory=dict)
    version: int = 1
    setting: Dict[str, Any] = field(default_factory=dict)


class ObjectModel:
    """
    type: object
    properties:
        id: {type: id, default: true}
    ---
    Object model base class, subclasses document their template in the docstring
    """

    # required permission levels when the template doesn't specify them
    default_read_level = PermissionLevel.PUBLIC
    default_write_level = PermissionLevel.MEMBER

    def __init__(self, template: Any = None, parser=annotation_parser) -> None:
        self.parser = parser
        raw = load_template(template if template is not None else type(self))
        self.type_name = self._parse_type_annotation(raw, "type", None)
        if not self.type_name:
            raise ValidationError(f"Object template without type: {raw}")
        self.version = self._parse_type_annotation(raw, "version", 1)
        self.defaults = self._parse_type_annotation(raw, "default", ())
        self.settings = self._parse_type_annotation(raw, "setting", {})
        self.maintenance = self._parse_type_annotation(raw, "maintenance", frozenset())
        self._authorizers = self._parse_type_annotation(raw, "authorizer", {})

        unknown = [k for k in raw if k not in TYPE_ANNOTATIONS and k != "properties"]
        if unknown:
            raise ValidationError(f"Invalid annotations on {self.type_name}: {', '.join(unknown)}")

        self.properties: Dict[str, PropertyDef] = {}
        properties = raw.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise ValidationError(f"Invalid properties of {self.type_name}")
        if "id" not in properties:
            self.properties["id"] = PropertyDef("id", type="id", default=True)
        for name, annotations in properties.items():
            self.properties[name] = self._parse_property(str(name), annotations or {})

    def _parse_type_annotation(self, raw: Mapping, name: str, default: Any) -> Any:
        if name not in raw:
            return default
        return self.parser.parse(name, raw[name], {"type": raw.get("type", "?")})

    def _parse_property(self, name: str, annotations: Mapping) -> PropertyDef:
        if not isinstance(annotations, Mapping):
            raise ValidationError(f"Invalid annotations for {self.type_name}.{name}")
        metadata = {"type": self.type_name, "property": name}
        kwargs = {}
        for annotation_name, data in annotations.items():
            if annotation_name not in PROPERTY_ANNOTATIONS or not self.parser.is_valid_annotation(annotation_name):
                raise ValidationError(f"Invalid annotation '{annotation_name}' on {self.type_name}.{name}")
            kwargs[annotation_name] = self.parser.parse(annotation_name, data, metadata)
        if name == "id":
            kwargs.setdefault("type", "id")
        if "default" in kwargs and not isinstance(kwargs["default"], bool):
            raise ValidationError(f"Property default of {self.type_name}.{name} must be a boolean")
        return PropertyDef(name, **kwargs)

    def __repr__(self) -> str:
        return f"<ObjectModel {self.type_name}>"

    def property_names(self) -> List[str]:
        return list(self.properties.keys())

    def has_property(self, name: str) -> bool:
        return name in self.properties

    def default_properties(self) -> List[str]:
        """
        :return: the properties returned when no fields are requested
        """
        if self.defaults:
            return [name for name in self.defaults if name in self.properties]
        result = [name for name, prop in self.properties.items() if prop.default]
        return result or ["id"]

    def connections(self) -> Dict[str, str]:
        """
        :return: {connection property name: connected object type}
        """
        return {name: prop.connection for name, prop in self.properties.items() if prop.connection}

    def is_connection(self, name: str) -> bool:
        prop = self.properties.get(name)
        return bool(prop and prop.connection)

    def connection_type(self, name: str) -> Optional[str]:
        prop = self.properties.get(name)
        return prop.connection if prop else None

    def processors(self, kind: str) -> Dict[str, Dict[str, tuple]]:
        """
        :param kind: "preprocessor" or "postprocessor"
        :return: {property: {METHOD: processor names}}
        """
        return {name: getattr(prop, kind) for name, prop in self.properties.items() if getattr(prop, kind)}

    def required_level(self, name: str, method: str) -> PermissionLevel:
        prop = self.properties[name]
        if method in prop.permissions:
            return prop.permissions[method]
        if ALL_METHODS in prop.permissions:
            return prop.permissions[ALL_METHODS]
        return self.default_read_level if method in READ_METHODS else self.default_write_level

    def min_version(self, name: str) -> int:
        return self.properties[name].version

    def property_setting(self, name: str, key: str, default: Any = None) -> Any:
        prop = self.properties.get(name)
        if prop is None:
            return default
        return prop.setting.get(key, default)

    def setting(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def authorizers(self, method: str) -> tuple:
        return self._authorizers.get(method, self._authorizers.get(ALL_METHODS, ()))

    def in_maintenance(self, method: str) -> bool:
        return method in self.maintenance

    def map_source(self, source: Any) -> ObjectData:
        """
        Map the data returned by an object API onto the template

        :param source: mapping, sqlalchemy Row or mapped sqlalchemy instance
        :return: ObjectData with the template properties found in `source`
        """
        if source is None:
            raise NoObjectData(f"No source data for {self.type_name}")
        if isinstance(source, ObjectData):
            data, complete = source, source.is_complete
        elif isinstance(source, Mapping):
            data, complete = source, True
        elif isinstance(source, Row):
            data, complete = source._mapping, True
        else:
            try:
                state = sqla_inspect(source)
            except NoInspectionAvailable:
                raise NoObjectData(f"Can't map {type(source).__name__} onto {self.type_name}")
            data = {attr.key: getattr(source, attr.key) for attr in state.mapper.column_attrs}
            complete = True

        if data.get("id") is None:
            raise NoObjectData(f"{self.type_name} source data without id")
        result = ObjectData(complete=complete)
        for name in self.properties:
            if name in data:
                result[name] = data[name]
        ignored = [k for k in data if k not in self.properties]
        if ignored:
            graphgate.log.debug(f"{self.type_name}: ignoring source keys {ignored}")
        return result
