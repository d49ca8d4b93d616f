"""
Object APIs and the handlers resolving them

ObjectAPI subclasses implement the CRUD operations of an object type, the router only
calls the methods they implement:

    class PostAPI(ObjectAPI):
        object_model = PostModel

        def get(self):
            return storage.load_post(self.reference_id)

        def check_permission(self, viewer, struct, method):
            ...

The APIHandler adapters resolve the API serving a request:
- ObjectAPIHandler: the referenced object itself
- ConnectionAPIHandler: the objects connected to the referenced object, e.g. <post>/comments
"""
from typing import Any, Optional, Tuple
from .errors import NotFoundError, RequestParseFailure
from .graph_types import ObjectStruct, PermissionLevel


class ObjectAPI:
    """
    Object API base class

    Available to the CRUD methods:
    - self.context: request Context (viewer, caches)
    - self.request: ParsedRequest
    - self.reference_id: id of the referenced object, the parent object for connections
    - self.connection: connection name or None
    - self.options: active RequestOptions
    - self.valid_properties: properties the viewer may access (set before the method is handled)
    """

    object_model = None  # object model template

    def __init__(self, context, request, struct: ObjectStruct, object_model, parent: Optional[Tuple[str, Any]] = None) -> None:
        self.context = context
        self.request = request
        self.struct = struct
        self.model = object_model
        self.parent = parent
        self.options = request.options
        self.valid_properties = []
        self.requested_properties = []

    @property
    def reference_id(self) -> Any:
        return self.request.reference_id

    @property
    def connection(self) -> Optional[str]:
        return self.request.connection

    @property
    def viewer(self):
        return self.context.viewer

    @classmethod
    def implements(cls, method: str) -> bool:
        return callable(getattr(cls, str(method).lower(), None))

    def check_permission(self, viewer, struct: ObjectStruct, method: str) -> PermissionLevel:
        """
        :return: the permission flag of `viewer` for this object and method
        the default grants the viewer level, subclasses implement ownership etc.
        """
        return viewer.level


class APIHandler:
    """
    Resolves the object API and struct for a parsed request
    """

    def __init__(self, context, parsed, registry) -> None:
        self.context = context
        self.parsed = parsed
        self.registry = registry
        self._api = None

    @property
    def struct(self) -> ObjectStruct:
        raise NotImplementedError

    def parent(self) -> Optional[Tuple[str, Any]]:
        return None

    def validate_request(self) -> None:
        reference_id = self.parsed.reference_id
        if reference_id is None or reference_id == "":
            raise RequestParseFailure(f"No object reference in {self.parsed.entity}")
        if self.parsed.type not in self.registry:
            raise RequestParseFailure(f"Object type '{self.parsed.type}' isn't served")

    def object_model(self):
        return self.registry.get_object_model(self.struct.type)

    def resolve(self) -> Tuple[ObjectAPI, ObjectStruct]:
        """
        :return: (object api instance, struct)
        """
        struct = self.struct
        if self._api is None:
            self._api = struct.api_class(self.context, self.parsed, struct, self.object_model(), self.parent())
        return self._api, struct


class ObjectAPIHandler(APIHandler):
    @property
    def struct(self) -> ObjectStruct:
        return self.parsed.object_struct


class ConnectionAPIHandler(APIHandler):
    """
    The request addresses a connection of the referenced object,
    the connected type serves it
    """

    def validate_request(self) -> None:
        super().validate_request()
        parent_model = self.registry.get_object_model(self.parsed.type)
        if not parent_model.is_connection(self.parsed.connection):
            raise NotFoundError(f"{self.parsed.type} has no connection '{self.parsed.connection}'")
        target_type = parent_model.connection_type(self.parsed.connection)
        if target_type not in self.registry:
            raise NotFoundError(f"Connection {self.parsed.type}.{self.parsed.connection}: '{target_type}' isn't served")

    @property
    def struct(self) -> ObjectStruct:
        parent_model = self.registry.get_object_model(self.parsed.type)
        return self.registry.struct(parent_model.connection_type(self.parsed.connection))

    def parent(self) -> Optional[Tuple[str, Any]]:
        return self.parsed.type, self.parsed.reference_id


def get_api_handler(context, parsed, registry) -> APIHandler:
    if parsed.connection:
        return ConnectionAPIHandler(context, parsed, registry)
    return ObjectAPIHandler(context, parsed, registry)
