"""
Object model annotations

Object templates describe types and properties with a closed set of annotations:

    authorizer, connection, default, maintenance, permissions,
    preprocessor, postprocessor, setting, type, version

Each annotation name is served by one strategy instance. A strategy validates
the annotation data and returns the parsed value. "by method" annotations
accept a mapping of HTTP method to value, "*" applies to all methods:

    preprocessor:
        POST: [strip_tags, trim]
        "*": [readonly]
"""
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional
from .errors import ValidationError
from .graph_types import HTTP_METHODS, PermissionLevel
from .processors import get_processor
from .permissions import get_authorizer

ALL_METHODS = "*"
PROPERTY_TYPES = ("id", "string", "int", "float", "bool", "datetime", "url", "object", "list")


class Annotation:
    """
    Annotation strategy base class
    """

    name = None
    by_method = False  # the value may be specified per HTTP method
    multiple = False  # the value is a list of items

    def parse(self, data: Any, metadata: Mapping) -> Any:
        """
        :param data: raw annotation data from the template
        :param metadata: where the annotation was found, {"type": .., "property": ..}
        :return: parsed annotation value
        """
        if self.by_method:
            return self.parse_by_method(data, metadata)
        return self.parse_value(data, metadata)

    def parse_by_method(self, data: Any, metadata: Mapping) -> Dict[str, Any]:
        if not isinstance(data, Mapping):
            data = {ALL_METHODS: data}
        result = {}
        for method, value in data.items():
            method = str(method).upper()
            if method != ALL_METHODS and method not in HTTP_METHODS:
                self.fail(f"invalid method '{method}'", metadata)
            result[method] = self.parse_value(value, metadata)
        return result

    def parse_value(self, value: Any, metadata: Mapping) -> Any:
        if self.multiple:
            return tuple(self.parse_item(item, metadata) for item in self.as_list(value))
        if isinstance(value, (list, tuple)):
            self.fail("only a single value is allowed", metadata)
        return self.parse_item(value, metadata)

    def parse_item(self, item: Any, metadata: Mapping) -> Any:
        return item

    @staticmethod
    def as_list(value: Any) -> List:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return [value]

    def fail(self, message: str, metadata: Mapping) -> None:
        location = metadata.get("type", "?")
        if metadata.get("property"):
            location += "." + metadata["property"]
        raise ValidationError(f"Invalid @{self.name} annotation on {location}: {message}")


class AuthorizerAnnotation(Annotation):
    """
    Names of the authorization rules applied to the viewer
    """

    name = "authorizer"
    by_method = True
    multiple = True

    def parse_item(self, item, metadata):
        if get_authorizer(item) is None:
            self.fail(f"unknown authorizer '{item}'", metadata)
        return item


class ConnectionAnnotation(Annotation):
    """
    The property is a connection to objects of another type
    """

    name = "connection"

    def parse_item(self, item, metadata):
        if not isinstance(item, str) or not item:
            self.fail("a connection names the connected object type", metadata)
        return item


class DefaultAnnotation(Annotation):
    """
    Type level: list of the default properties
    Property level: boolean
    """

    name = "default"
    multiple = True

    def parse_value(self, value, metadata):
        if isinstance(value, bool):
            return value
        return super().parse_value(value, metadata)

    def parse_item(self, item, metadata):
        if not isinstance(item, str):
            self.fail(f"invalid property name {item!r}", metadata)
        return item


class MaintenanceAnnotation(Annotation):
    """
    HTTP methods that are unavailable because the type is in maintenance, `true` means all of them
    """

    name = "maintenance"
    multiple = True

    def parse_value(self, value, metadata):
        if value is True:
            return frozenset(HTTP_METHODS)
        if value is False or value is None:
            return frozenset()
        return frozenset(super().parse_value(value, metadata))

    def parse_item(self, item, metadata):
        method = str(item).upper()
        if method not in HTTP_METHODS:
            self.fail(f"invalid method '{item}'", metadata)
        return method


class PermissionsAnnotation(Annotation):
    """
    Permission level required to access the property
    """

    name = "permissions"
    by_method = True

    def parse_item(self, item, metadata):
        try:
            return PermissionLevel.from_name(item)
        except ValueError as exc:
            self.fail(str(exc), metadata)


class PreprocessorAnnotation(Annotation):
    """
    Processors applied to the payload before the method is handled
    """

    name = "preprocessor"
    by_method = True
    multiple = True

    def parse_item(self, item, metadata):
        processor = get_processor(item)
        if processor is None:
            self.fail(f"unknown processor '{item}'", metadata)
        return item


class PostprocessorAnnotation(PreprocessorAnnotation):
    """
    Processors applied to the result, they can't remove properties
    """

    name = "postprocessor"

    def parse_item(self, item, metadata):
        item = super().parse_item(item, metadata)
        if get_processor(item).removes:
            self.fail(f"processor '{item}' removes properties and can't be used as postprocessor", metadata)
        return item


class SettingAnnotation(Annotation):
    """
    Free form key/value settings
    """

    name = "setting"

    def parse_item(self, item, metadata):
        if not isinstance(item, Mapping):
            self.fail("settings must be a mapping", metadata)
        return dict(item)


class TypeAnnotation(Annotation):
    """
    Type level: the object type name
    Property level: the value type
    """

    name = "type"

    def parse_item(self, item, metadata):
        if not isinstance(item, str) or not item:
            self.fail(f"invalid type {item!r}", metadata)
        if metadata.get("property") and item not in PROPERTY_TYPES:
            self.fail(f"unknown property type '{item}'", metadata)
        return item


class VersionAnnotation(Annotation):
    """
    Minimum API version
    """

    name = "version"

    def parse_item(self, item, metadata):
        try:
            version = int(item)
        except (TypeError, ValueError):
            version = 0
        if version < 1:
            self.fail(f"invalid version {item!r}", metadata)
        return version


ANNOTATION_STRATEGIES = (
    AuthorizerAnnotation,
    ConnectionAnnotation,
    DefaultAnnotation,
    MaintenanceAnnotation,
    PermissionsAnnotation,
    PreprocessorAnnotation,
    PostprocessorAnnotation,
    SettingAnnotation,
    TypeAnnotation,
    VersionAnnotation,
)


class AnnotationParser:
    """
    Dispatches annotations to their strategy.
    The set of annotations is closed, so the strategies are created once and never change.
    """

    def __init__(self, strategies: Iterable[type] = ANNOTATION_STRATEGIES) -> None:
        self._strategies = MappingProxyType({strategy.name: strategy() for strategy in strategies})

    @property
    def annotation_names(self):
        return tuple(self._strategies.keys())

    def is_valid_annotation(self, name: str) -> bool:
        return name in self._strategies

    def get_valid_annotations(self, names: Iterable[str]) -> List[str]:
        """
        :return: the names in `names` that are valid annotations, in the same order
        """
        return [name for name in names if self.is_valid_annotation(name)]

    def is_by_method(self, name: str) -> bool:
        strategy = self._strategies.get(name)
        return bool(strategy and strategy.by_method)

    def allows_multiple(self, name: str) -> bool:
        strategy = self._strategies.get(name)
        return bool(strategy and strategy.multiple)

    def parse(self, name: str, data: Any, metadata: Optional[Mapping] = None) -> Any:
        """
        :return: the parsed annotation, None if `name` isn't an annotation
        """
        strategy = self._strategies.get(name)
        if strategy is None:
            return None
        return strategy.parse(data, metadata or {})


annotation_parser = AnnotationParser()
