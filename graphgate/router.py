"""
Router: runs a request through the pipeline

    router = Router()
    body, status = router.do_request("me/friends?fields=id,name&limit=5", context_data={"viewer": viewer})

Stages:
    INIT -> CONTEXT_RESOLVED -> PARSED -> GATED -> HANDLER_SELECTED
         -> PRE_PROCESSED -> METHOD_HANDLED -> POST_PROCESSED -> FINISHED

Errors raised in any stage are caught once, in do_request, and rendered as an error
response through the same output context as regular responses (ERROR_CAUGHT).
"""
from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlencode, urljoin, urlsplit, urlunsplit
import graphgate
from .api_handler import get_api_handler
from .cache import RequestCache, cache_key
from .config import get_config, get_int_config
from .context import Context
from .errors import GenericError, GraphError, PermissionDenied, ProcessorRemovedProperties, ValidationError
from .gatekeepers import load_gatekeepers
from .graph_types import HTTP_METHODS, HTTPMethod, ObjectStruct, PermissionLevel
from .method_handlers import CacheClearHandler, MethodHandler, get_method_handler
from .object_model import ObjectData
from .processors import ProcessorManager
from .request_parser import ParsedRequest, RequestOptions, RequestParser, split_entity
from .response import ErrorResponse, select_response
from .signals import request_failed, request_finished, request_started

# connections of connections are resolved up to this depth
MAX_DEPTH = 2
WRITE_METHODS = (HTTPMethod.POST.value, HTTPMethod.PUT.value)
PERMISSION_SCOPE = "processing"
ME_SCOPE = "me"


class RouterStage(Enum):
    INIT = "init"
    CONTEXT_RESOLVED = "context_resolved"
    PARSED = "parsed"
    GATED = "gated"
    HANDLER_SELECTED = "handler_selected"
    PRE_PROCESSED = "pre_processed"
    METHOD_HANDLED = "method_handled"
    POST_PROCESSED = "post_processed"
    FINISHED = "finished"
    ERROR_CAUGHT = "error_caught"


@dataclass
class RequestState:
    """
    Everything the router learns while serving one request, replaced by Router.reset()
    """

    entity: str = ""
    method: str = HTTPMethod.GET.value
    payload: Dict = field(default_factory=dict)
    output: bool = True
    stage: RouterStage = RouterStage.INIT
    context: Optional[Context] = None
    parsed: Optional[ParsedRequest] = None
    api: Any = None
    struct: Optional[ObjectStruct] = None
    handler: Optional[MethodHandler] = None
    options: RequestOptions = field(default_factory=RequestOptions.defaults)
    permission_flag: Optional[PermissionLevel] = None
    requested_properties: List[str] = field(default_factory=list)
    valid_properties: List[str] = field(default_factory=list)
    # memoization visible to this request only
    request_cache: Optional[RequestCache] = None


def is_uniform_collection(data: Any, valid_properties: List[str]) -> bool:
    """
    :return: True if `data` is a list of objects sharing the same keys, all of them valid
    """
    if not isinstance(data, list) or not data or not all(isinstance(item, Mapping) for item in data):
        return False
    keys = set(data[0].keys())
    return all(set(item.keys()) == keys for item in data) and keys <= set(valid_properties)


def canonical_url(value: str, url_root: Optional[str] = None, relative: bool = False) -> str:
    """
    :param relative: the value may be a relative url, it is joined with `url_root`
    :return: url with an explicit scheme and lower case scheme and host
    """
    if value.startswith("//"):
        value = "https:" + value
    elif relative and url_root and "://" not in value:
        value = urljoin(url_root.rstrip("/") + "/", value.lstrip("/"))
    if "://" not in value:
        return value
    parts = urlsplit(value)
    if parts.scheme.lower() not in ("http", "https"):
        return value
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, parts.fragment))


class Router:
    """
    Serves requests for the object types of a registry

    :param registry: ObjectTypeRegistry, defaults to graphgate.registry.default_registry
    :param context_registry: ContextRegistry, defaults to graphgate.context.default_context_registry
    :param member_directory: resolves member aliases, `find_member_id(alias)`
    :param gatekeepers: gatekeeper classes, instances or dotted paths, defaults to the GATEKEEPERS configuration
    :param observers: receivers connected to the request signals while a request is served
    """

    def __init__(self, registry=None, context_registry=None, member_directory=None, gatekeepers=None, observers=None, depth: int = 0) -> None:
        if registry is None:
            from .registry import default_registry as registry
        if context_registry is None:
            from .context import default_context_registry as context_registry
        self.registry = registry
        self.context_registry = context_registry
        self.member_directory = member_directory
        self.parser = RequestParser(registry, member_directory)
        self._gatekeepers = gatekeepers
        self.observers: List[Callable] = list(observers or [])
        self.depth = depth
        self.state = RequestState()

    @property
    def options(self) -> RequestOptions:
        return self.state.options

    @property
    def stage(self) -> RouterStage:
        return self.state.stage

    @property
    def gatekeepers(self):
        return load_gatekeepers(self._gatekeepers)

    def observe(self, receiver: Callable) -> Callable:
        """
        Add an observer, can be used as decorator. Receivers are called as
        `receiver(router, **kwargs)` for the request_started, request_finished and request_failed signals
        """
        self.observers.append(receiver)
        return receiver

    def reset(self) -> None:
        """
        Forget the state of the last request
        """
        self.state = RequestState()

    def _advance(self, stage: RouterStage) -> None:
        self.state.stage = stage
        graphgate.log.debug(f"{self.state.method} {self.state.entity}: {stage.value}")

    #
    # Observers
    #
    def _connect_observers(self) -> None:
        for receiver in self.observers:
            for signal in (request_started, request_finished, request_failed):
                signal.connect(receiver, sender=self, weak=False)

    def _disconnect_observers(self) -> None:
        for receiver in self.observers:
            for signal in (request_started, request_finished, request_failed):
                signal.disconnect(receiver, sender=self)

    def _notify(self, signal, **kwargs) -> None:
        try:
            signal.send(self, **kwargs)
        except Exception as exc:  # observers can't change the outcome of a request
            graphgate.log.exception(f"Observer of {signal.name} failed: {exc}")

    #
    # Request lifecycle
    #
    def do_request(
        self,
        entity: str,
        method: str = "GET",
        data: Optional[Mapping] = None,
        context_data: Any = None,
        context: Optional[Context] = None,
        output: bool = True,
    ) -> Any:
        """
        Serve a request

        :param entity: "<path>?<query>"
        :param method: HTTP method
        :param data: request payload
        :param context_data: data the Context is derived from, None inside a flask request
        :param context: an existing Context (sub-requests)
        :param output: render the response with the output context, otherwise return the Response object
        :return: the rendered response, or the Response object
        """
        self.reset()
        state = self.state
        state.entity = entity
        state.method = str(method).upper()
        state.output = output
        self._connect_observers()
        # a context resolved here is released when the request is done
        resolved = None
        try:
            state.payload = self.strip_reserved(data)
            if context is None:
                context = resolved = Context.get_instance(context_data, self.context_registry)
            state.context = context
            state.request_cache = RequestCache(context.get_request_id())
            self._advance(RouterStage.CONTEXT_RESOLVED)
            self._notify(request_started, context=state.context, entity=entity, method=state.method)

            parsed = self.parser.parse(state.context, state.method, entity)
            self._advance(RouterStage.PARSED)
            parsed = self.run_gatekeepers(parsed, state.context)
            self._advance(RouterStage.GATED)
            state.parsed = self.apply_overrides(parsed)
            state.options = state.parsed.options

            return_data = self.process_request()
            return self.finish_request(return_data)
        except Exception as exc:
            return self.handle_error(exc)
        finally:
            self._disconnect_observers()
            if resolved is not None:
                self.context_registry.release(resolved)

    @staticmethod
    def strip_reserved(data: Optional[Mapping]) -> Dict:
        """
        :return: the payload without the reserved property names
        """
        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise ValidationError(f"Invalid payload type {type(data).__name__}")
        reserved = get_config("RESERVED_PROPERTIES") or ()
        stripped = [key for key in data if key in reserved]
        if stripped:
            graphgate.log.debug(f"Stripped reserved properties {stripped}")
        return {key: value for key, value in data.items() if key not in reserved}

    def run_gatekeepers(self, parsed: ParsedRequest, context: Context) -> ParsedRequest:
        for gatekeeper in self.gatekeepers:
            if gatekeeper.applies(parsed, context, self):
                parsed = gatekeeper.process(parsed, context, self)
        return parsed

    def apply_overrides(self, parsed: ParsedRequest) -> ParsedRequest:
        """
        Apply the method override (?method=POST) carried by the options.
        The query parameters that aren't options become the payload of the overridden request.
        """
        override = parsed.options.method
        if override and override != parsed.method:
            graphgate.log.info(f"Method override {parsed.method} => {override} for {parsed.entity}")
            if override in WRITE_METHODS or override == HTTPMethod.DELETE.value:
                payload = self.strip_reserved(parsed.options.extra)
                payload.update(self.state.payload)
                self.state.payload = payload
                parsed = parsed.with_options(extra={})
            parsed = parsed.with_method(override)
        self.state.method = parsed.method
        return parsed

    def process_request(self) -> Any:
        """
        Resolve the object api and method handler and run the processing stages
        :return: post-processed data
        """
        state = self.state
        context, parsed = state.context, state.parsed
        context.assert_authorizable()

        api_handler = get_api_handler(context, parsed, self.registry)
        api_handler.validate_request()
        api, struct = api_handler.resolve()
        state.api, state.struct = api, struct
        object_model = self.registry.get_object_model(struct.type)
        state.options = self.parser.validate_options(object_model, struct, state.entity, state.options, api)
        api.options = state.options

        if context.is_cache_clear_request():
            state.handler = CacheClearHandler(api, [self.permission_key(method) for method in HTTP_METHODS])
            self._advance(RouterStage.HANDLER_SELECTED)
            return state.handler.handle(state.payload)

        state.handler = get_method_handler(state.method, api)
        self._advance(RouterStage.HANDLER_SELECTED)

        payload = self.pre_processing(struct)
        self._advance(RouterStage.PRE_PROCESSED)

        if parsed.cacheable and state.method == HTTPMethod.GET.value:
            return state.request_cache.remember(ME_SCOPE, state.entity, lambda: self._handle(struct, payload))
        return self._handle(struct, payload)

    def _handle(self, struct: ObjectStruct, payload: Dict) -> Any:
        raw = self.handle_request(payload)
        self._advance(RouterStage.METHOD_HANDLED)
        result = self.post_processing(struct, raw)
        self._advance(RouterStage.POST_PROCESSED)
        return result

    #
    # Pre-processing
    #
    def permission_key(self, method: str) -> str:
        path, _ = split_entity(self.state.entity)
        return f"{PERMISSION_SCOPE}:{cache_key(path, method)}"

    def get_permission_flag(self, api, struct: ObjectStruct) -> PermissionLevel:
        """
        :return: the permission flag of the viewer, memoized when the method handler allows it
        """
        state = self.state
        context = state.context
        if not state.handler.cacheable:
            return PermissionLevel(api.check_permission(context.viewer, struct, state.method))

        key = self.permission_key(state.method)
        flag = context.get_cached_request(key)
        if flag is None:
            flag = PermissionLevel(api.check_permission(context.viewer, struct, state.method))
            context.set_cache_request(key, flag, get_int_config("PERMISSION_CACHE_TTL", 300))
        return flag

    def requested_properties(self, object_model) -> List[str]:
        """
        :return: the requested fields or the object defaults, "id" first
        """
        result = ["id"]
        for name in list(self.state.options.fields) or object_model.default_properties():
            if name not in result:
                result.append(name)
        return result

    def pre_processing(self, struct: ObjectStruct) -> Dict:
        """
        Compute the valid properties and run the pre-processors on the payload
        :return: processed payload
        """
        state = self.state
        context, method = state.context, state.method
        object_model = self.registry.get_object_model(struct.type)
        permissions_model = self.registry.get_permissions_model(struct.type)

        state.permission_flag = self.get_permission_flag(state.api, struct)
        state.requested_properties = self.requested_properties(object_model)
        allowed = permissions_model.allowed_properties(state.permission_flag, method, context.api_version())
        valid = [name for name in state.requested_properties if name in allowed]

        payload = state.payload
        if method in WRITE_METHODS:
            unknown = [key for key in payload if not object_model.has_property(key)]
            if unknown:
                raise ValidationError(f"Unknown properties for {struct.type}: {', '.join(unknown)}")
            valid += [key for key in payload if key in allowed and key not in valid]

        valid = permissions_model.apply_authorizers(context.viewer, struct, method, valid)
        if "id" not in valid:
            raise PermissionDenied(f"{method} {struct.type}: id isn't accessible for {context.viewer!r}")
        if method in WRITE_METHODS:
            denied = [key for key in payload if key not in valid]
            if denied:
                raise PermissionDenied(f"{method} {struct.type}: can't write {', '.join(denied)}")

        manager = ProcessorManager()
        valid, payload = manager.apply_processors_to_array(method, object_model.processors("preprocessor"), valid, payload)
        if manager.report:
            raise ProcessorRemovedProperties(manager.removed_properties, manager.report.message)

        state.valid_properties = valid
        state.api.valid_properties = list(valid)
        state.api.requested_properties = list(state.requested_properties)
        return payload

    def handle_request(self, payload: Dict) -> Any:
        return self.state.handler.handle(payload)

    #
    # Post-processing
    #
    def post_processing(self, struct: ObjectStruct, raw: Any) -> Any:
        """
        Map the raw result onto the object model, resolve the requested connections,
        filter the properties and run the post-processors
        """
        state = self.state
        object_model = self.registry.get_object_model(struct.type)
        data = state.handler.post_process(raw, object_model)

        if state.method == HTTPMethod.GET.value and isinstance(data, Mapping) and data.get("id") is not None:
            data = self.resolve_connections(struct, object_model, data)

        if not is_uniform_collection(data, state.valid_properties):
            data = self.filter_properties(data, state.valid_properties)

        manager = ProcessorManager()
        return manager.apply_processors_to_object(state.method, object_model.processors("postprocessor"), state.valid_properties, data)

    @classmethod
    def filter_properties(cls, data: Any, valid_properties: List[str]) -> Any:
        if isinstance(data, list):
            return [cls.filter_properties(item, valid_properties) for item in data]
        if not isinstance(data, Mapping) or data.get("id") is None:
            return data
        result = ObjectData(complete=getattr(data, "is_complete", True))
        for name in valid_properties:
            if name in data:
                result[name] = data[name]
        return result

    def object_reference(self, struct: ObjectStruct, data: Mapping) -> Optional[str]:
        parsed = self.state.parsed
        if not parsed.connection and parsed.uuid:
            return parsed.uuid
        try:
            return self.registry.codec.encode(struct.type, data["id"])
        except (TypeError, ValueError):
            return None

    @staticmethod
    def expansion_query(directives: Mapping[str, List[str]]) -> str:
        """
        {"fields": ["id", "name"], "limit": ["5"]} => "fields=id,name&limit=5"
        """
        return urlencode([(directive, ",".join(values)) for directive, values in directives.items()])

    def resolve_connections(self, struct: ObjectStruct, object_model, data: Mapping) -> Mapping:
        """
        Requested connection properties are loaded with a sub-request, e.g. fields=comments.limit(5)
        GET <object uuid>/comments?limit=5
        """
        state = self.state
        names = [name for name in state.requested_properties if name in state.valid_properties and object_model.is_connection(name)]
        if not names:
            return data
        if self.depth >= MAX_DEPTH:
            graphgate.log.debug(f"Not resolving connections {names} at depth {self.depth}")
            return data
        reference = self.object_reference(struct, data)
        if reference is None:
            graphgate.log.warning(f"Can't reference {struct.type} {data.get('id')} to resolve {names}")
            return data

        sub_router = Router(self.registry, self.context_registry, self.member_directory, self._gatekeepers, depth=self.depth + 1)
        result = data if isinstance(data, ObjectData) else ObjectData(data)
        for name in names:
            query = self.expansion_query(state.options.expansions.get(name, {}))
            sub_entity = f"{reference}/{name}" + (f"?{query}" if query else "")
            response = sub_router.do_request(sub_entity, HTTPMethod.GET.value, context=state.context, output=False)
            if isinstance(response, ErrorResponse):
                graphgate.log.info(f"Connection {struct.type}.{name} left out: {response.errors}")
                continue
            result[name] = response.data
        return result

    #
    # Finishing
    #
    def canonicalize_urls(self, data: Any, object_model=None) -> Any:
        """
        Canonicalize the values of the properties `object_model` declares as `type: url`,
        the objects of connection properties are canonicalized with the model of the connected type.
        Other values are returned unchanged.
        """
        if object_model is None:
            return data
        if isinstance(data, list):
            return [self.canonicalize_urls(item, object_model) for item in data]
        if not isinstance(data, Mapping):
            return data
        url_root = get_config("URL_ROOT")
        result = copy.copy(data) if isinstance(data, dict) else dict(data)
        for name, value in data.items():
            prop = object_model.properties.get(name)
            if prop is None:
                continue
            if prop.type == "url" and isinstance(value, str):
                result[name] = canonical_url(value, url_root, relative=True)
            elif prop.connection and prop.connection in self.registry and isinstance(value, (list, Mapping)):
                result[name] = self.canonicalize_urls(value, self.registry.get_object_model(prop.connection))
        return result

    def debug_payload(self) -> Dict:
        state = self.state
        return {
            "entity": state.entity,
            "method": state.method,
            "stage": state.stage.value,
            "type": state.struct.type if state.struct else None,
            "permission_flag": state.permission_flag.name if state.permission_flag is not None else None,
            "requested_properties": list(state.requested_properties),
            "valid_properties": list(state.valid_properties),
            "options": {"limit": state.options.limit, "offset": state.options.offset, "fields": list(state.options.fields)},
            "depth": self.depth,
        }

    def finish_request(self, return_data: Any) -> Any:
        """
        Canonicalize the urls, select the response shape and hand the response to the output context
        """
        state = self.state
        context = state.context
        object_model = self.registry.get_object_model(state.struct.type) if state.struct is not None else None
        data = self.canonicalize_urls(return_data, object_model)

        meta = None
        if isinstance(data, list):
            meta = {"limit": state.options.limit, "offset": state.options.offset}
        response = select_response(state.method, data, meta)
        if context.is_debug:
            response.debug = self.debug_payload()
        self._advance(RouterStage.FINISHED)

        output, output_options = state.output, state.options.output
        self.reset()
        self._notify(request_finished, response=response, context=context)
        if not output:
            return response
        return context.output_context().render(response.to_dict(), response.status_code, output_options)

    def handle_error(self, exc: Exception) -> Any:
        """
        Format the error for the viewer: system and debug viewers get the details
        """
        state = self.state
        if not isinstance(exc, GraphError):
            graphgate.log.exception(exc)
            exc = GenericError(str(exc))
        context = state.context if state.context is not None else Context.get_error_instance()
        self._advance(RouterStage.ERROR_CAUGHT)

        response = ErrorResponse(state.method, [exc.to_dict(detailed=context.is_trusted)], exc.status_code)
        if context.is_debug and not context.is_error_instance:
            response.debug = self.debug_payload()

        output, output_options = state.output, state.options.output
        self.reset()
        self._notify(request_failed, error=exc, context=context)
        if not output:
            return response
        return context.output_context().render(response.to_dict(), response.status_code, output_options)
