"""
Object type registry

Maps graph object types onto the API class serving them, their object model and permissions model.
Object models are loaded from their template on first use.
"""
import threading
from typing import Any, Dict, Optional, Type
import graphgate
from .errors import NotFoundError, ValidationError
from .graph_types import GraphUUID, ObjectStruct
from .object_model import ObjectModel
from .permissions import PermissionsModel


class ObjectType:
    """
    Registration of a single object type
    """

    def __init__(self, type_name: str, api_class: type, template: Any, code: Optional[int], permissions_class: Type[PermissionsModel]) -> None:
        self.type_name = type_name
        self.api_class = api_class
        self.template = template
        self.code = code
        self.permissions_class = permissions_class
        self.object_model: Optional[ObjectModel] = None
        self.permissions_model: Optional[PermissionsModel] = None


class ObjectTypeRegistry:
    """
    Object types are registered at startup, the models are loaded lazily (once per type)
    """

    def __init__(self) -> None:
        self._types: Dict[str, ObjectType] = {}
        self._lock = threading.Lock()
        self._codec: Optional[GraphUUID] = None

    def register(
        self,
        type_name: str,
        api_class: type,
        template: Any = None,
        code: Optional[int] = None,
        permissions_class: Type[PermissionsModel] = PermissionsModel,
    ) -> ObjectType:
        """
        :param type_name: object type, e.g. "post"
        :param api_class: ObjectAPI subclass implementing the CRUD operations
        :param template: object model template (mapping, yaml or documented ObjectModel subclass),
                         defaults to the `object_model` attribute of the api class
        :param code: uuid type code, required to address the type by uuid
        """
        if code is not None and (code <= 0 or code >= 16**GraphUUID.TYPE_DIGITS):
            raise ValidationError(f"Invalid uuid type code {code} for {type_name}")
        if template is None:
            template = getattr(api_class, "object_model", None)
        if template is None:
            raise ValidationError(f"No object template for {type_name}")
        with self._lock:
            for other in self._types.values():
                if code is not None and other.code == code and other.type_name != type_name:
                    raise ValidationError(f"uuid type code {code} is used by {other.type_name}")
            object_type = ObjectType(type_name, api_class, template, code, permissions_class)
            self._types[type_name] = object_type
            self._codec = None
        graphgate.log.info(f"Registered object type {type_name} ({api_class.__name__})")
        return object_type

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._types

    def type_names(self):
        return list(self._types.keys())

    def get(self, type_name: str) -> ObjectType:
        try:
            return self._types[type_name]
        except KeyError:
            raise NotFoundError(f"Unknown object type '{type_name}'")

    def struct(self, type_name: str) -> ObjectStruct:
        return ObjectStruct(type_name, self.get(type_name).api_class)

    def get_api_class(self, type_name: str) -> type:
        return self.get(type_name).api_class

    def _load(self, object_type: ObjectType) -> ObjectType:
        if object_type.object_model is not None:
            return object_type
        with self._lock:
            if object_type.object_model is None:
                template = object_type.template
                if isinstance(template, type) and issubclass(template, ObjectModel):
                    model = template()
                elif isinstance(template, ObjectModel):
                    model = template
                else:
                    model = ObjectModel(template)
                if model.type_name != object_type.type_name:
                    raise ValidationError(f"Template type {model.type_name} doesn't match {object_type.type_name}")
                object_type.permissions_model = object_type.permissions_class(model)
                object_type.object_model = model
                graphgate.log.debug(f"Loaded object model {object_type.type_name}")
        return object_type

    def get_object_model(self, type_name: str) -> ObjectModel:
        return self._load(self.get(type_name)).object_model

    def get_permissions_model(self, type_name: str) -> PermissionsModel:
        return self._load(self.get(type_name)).permissions_model

    @property
    def codec(self) -> GraphUUID:
        codec = self._codec
        if codec is None:
            codec = GraphUUID({t.type_name: t.code for t in self._types.values() if t.code is not None})
            self._codec = codec
        return codec


default_registry = ObjectTypeRegistry()
