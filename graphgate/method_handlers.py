"""
Method handlers: one execution strategy per HTTP method

The handler calls the object api method and maps the raw result onto the object model.
"""
from types import MappingProxyType
from typing import Any, Mapping
import graphgate
from .errors import NotFoundError, OperationNotPermitted
from .graph_types import HTTPMethod
from .object_model import ObjectData


class MethodHandler:
    """
    Handler base class

    :param api: the resolved ObjectAPI instance
    """

    method: HTTPMethod = None
    cacheable = False  # whether the permission flag may be memoized

    def __init__(self, api) -> None:
        self.api = api

    @classmethod
    def supports(cls, api) -> bool:
        return api.implements(cls.method.value)

    def handle(self, payload: Mapping) -> Any:
        func = getattr(self.api, self.method.value.lower())
        if self.method is HTTPMethod.GET:
            return func()
        return func(payload)

    def post_process(self, raw: Any, object_model) -> Any:
        return raw


class GetHandler(MethodHandler):
    method = HTTPMethod.GET
    cacheable = True

    def post_process(self, raw, object_model):
        if raw is None:
            raise NotFoundError(f"{object_model.type_name} {self.api.reference_id}")
        if isinstance(raw, bool):
            # not an object, the response shape validation refuses it
            return raw
        if isinstance(raw, (list, tuple)):
            return [object_model.map_source(item) for item in raw]
        if isinstance(raw, Mapping) and raw.get("id") is None:
            return raw
        return object_model.map_source(raw)


class WriteHandler(MethodHandler):
    def post_process(self, raw, object_model):
        if isinstance(raw, bool):
            return {"success": raw}
        if raw is None:
            return {"success": False}
        if isinstance(raw, Mapping):
            if raw.get("id") is None:
                return raw
            return object_model.map_source(raw)
        if isinstance(raw, (int, str)):
            # the id of the created object
            return ObjectData(id=raw)
        return object_model.map_source(raw)


class PostHandler(WriteHandler):
    method = HTTPMethod.POST


class PutHandler(WriteHandler):
    method = HTTPMethod.PUT


class DeleteHandler(MethodHandler):
    method = HTTPMethod.DELETE

    def post_process(self, raw, object_model):
        if raw is None:
            return False
        return raw


class CacheClearHandler(MethodHandler):
    """
    Drops the memoized permission flags of the requested entity and asks the api to clear its own caches
    """

    method = HTTPMethod.GET

    def __init__(self, api, permission_keys=()) -> None:
        super().__init__(api)
        self.permission_keys = tuple(permission_keys)

    @classmethod
    def supports(cls, api) -> bool:
        return True

    def handle(self, payload):
        context = self.api.context
        for key in self.permission_keys:
            context.delete_cached_request(key)
        clear_cache = getattr(self.api, "clear_cache", None)
        if callable(clear_cache):
            clear_cache()
        graphgate.log.info(f"Cache cleared for {self.api.struct.type} {self.api.reference_id} by {context.viewer!r}")
        return {"success": True}


HANDLERS = MappingProxyType(
    {
        HTTPMethod.GET: GetHandler,
        HTTPMethod.POST: PostHandler,
        HTTPMethod.PUT: PutHandler,
        HTTPMethod.DELETE: DeleteHandler,
    }
)


def get_method_handler(method: str, api) -> MethodHandler:
    """
    :return: the handler executing `method` on `api`
    raises OperationNotPermitted when the method isn't served or the api doesn't implement it
    """
    handler_class = HANDLERS.get(HTTPMethod.parse(method))
    if handler_class is None or not handler_class.supports(api):
        raise OperationNotPermitted(f"{method} isn't supported by {api.struct.type}")
    return handler_class(api)
