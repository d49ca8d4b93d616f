"""
Request contexts

A Context holds the viewer of a request, the input context the request came from
and the output context used to render the response. Contexts are memoized per
instance key: the same key always yields the same Context until it is invalidated.

Input contexts are tried in the order of the INPUT_CONTEXTS configuration,
the first one that accepts the context data is used:
- FlaskInputContext: inside a flask request
- DictInputContext: a mapping, used for internal and programmatic requests
"""
from __future__ import annotations
import threading
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from flask import g, has_request_context, jsonify, make_response, request, current_app
import graphgate
from .cache import MemoryCache, cache_key
from .config import get_config, get_int_config
from .errors import GenericError, RequestParseFailure
from .graphgate_init import load_class
from .signals import context_created
from .viewer import AnonymousViewer, Authenticator, Viewer

REQUEST_ID_HEADER = "X-Request-Id"
API_VERSION_HEADER = "X-Api-Version"


class OutputContext:
    """
    Renders the response of a request
    """

    def __init__(self, context: "Context") -> None:
        self.context = context

    def render(self, body: Dict, status_code: int, options: Iterable[str] = ()) -> Any:
        raise NotImplementedError


class DictOutputContext(OutputContext):
    def render(self, body, status_code, options=()):
        return body, status_code


class FlaskOutputContext(OutputContext):
    mimetype = "application/json"

    def render(self, body, status_code, options=()):
        if "pretty" in options:
            response = current_app.response_class(current_app.json.dumps(body, indent=2), mimetype=self.mimetype)
        else:
            response = jsonify(body)
        return make_response(response, status_code)


class InputContext:
    """
    Input context base class: where the request comes from and what it tells about the viewer
    """

    output_context_class = DictOutputContext

    def __init__(self, context_data: Any) -> None:
        self.context_data = context_data

    @classmethod
    def is_valid(cls, context_data: Any) -> bool:
        raise NotImplementedError

    @classmethod
    def instance_key(cls, context_data: Any) -> str:
        raise NotImplementedError

    @classmethod
    def is_ephemeral(cls, context_data: Any) -> bool:
        """
        :return: True if the context only serves the current request and is dropped when it finishes
        """
        return False

    def get_viewer(self, context_data: Any) -> Optional[Viewer]:
        return None

    def get_token(self, context_data: Any) -> Optional[str]:
        return None

    def get_param(self, name: str, default: Any = None) -> Any:
        return default

    def allows_method_override(self) -> bool:
        return bool(get_config("ALLOW_METHOD_OVERRIDE"))

    def api_version(self) -> int:
        version = self.get_param("version")
        try:
            return int(version)
        except (TypeError, ValueError):
            return get_int_config("DEFAULT_API_VERSION", 1)


class DictInputContext(InputContext):
    """
    Context data is a mapping:
        {"instance": "abc", "viewer": MemberViewer(4), "token": None, "clear_cache": False, "version": 2}

    Without an "instance" every call gets its own context, the router drops it when the request is done.
    Callers passing an "instance" share the context (and its parameters) until they invalidate it.
    """

    @classmethod
    def is_valid(cls, context_data):
        return isinstance(context_data, Mapping)

    @classmethod
    def instance_key(cls, context_data):
        instance = context_data.get("instance")
        if instance is None:
            instance = f"request-{uuid.uuid4().hex}"
        return f"dict:{instance}"

    @classmethod
    def is_ephemeral(cls, context_data):
        return context_data.get("instance") is None

    def get_viewer(self, context_data):
        return context_data.get("viewer")

    def get_token(self, context_data):
        return context_data.get("token")

    def get_param(self, name, default=None):
        return self.context_data.get(name, default)

    def allows_method_override(self):
        return bool(self.context_data.get("allow_method_override", super().allows_method_override()))


class FlaskInputContext(InputContext):
    """
    The request is served by flask, the viewer is set on flask.g by the app (g.viewer)
    """

    output_context_class = FlaskOutputContext

    @classmethod
    def is_valid(cls, context_data):
        return has_request_context() and not isinstance(context_data, Mapping)

    @classmethod
    def instance_key(cls, context_data):
        if "graphgate_instance" not in g:
            g.graphgate_instance = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        return f"flask:{g.graphgate_instance}"

    @classmethod
    def current_instance_key(cls) -> Optional[str]:
        if not has_request_context() or "graphgate_instance" not in g:
            return None
        return f"flask:{g.graphgate_instance}"

    def get_viewer(self, context_data):
        return g.get("viewer")

    def get_token(self, context_data):
        auth = request.headers.get("Authorization", "")
        if auth.lower().startswith("bearer "):
            return auth[7:].strip()
        return request.args.get("access_token")

    def get_param(self, name, default=None):
        if name == "version" and API_VERSION_HEADER in request.headers:
            return request.headers[API_VERSION_HEADER]
        return request.args.get(name, default)


class Context:
    """
    Request context: viewer, input and output context, viewer scoped cache
    Use Context.get_instance() to obtain a context
    """

    def __init__(
        self,
        instance_key: str,
        input_context: InputContext,
        viewer: Viewer,
        cache: Optional[MemoryCache] = None,
        is_error_instance: bool = False,
        ephemeral: bool = False,
    ) -> None:
        self.instance_key = instance_key
        self.input_context = input_context
        self.viewer = viewer
        self.cache = cache if cache is not None else default_cache
        self.is_error_instance = is_error_instance
        self.ephemeral = ephemeral

    def __repr__(self) -> str:
        return f"<Context {self.instance_key} {self.viewer!r}>"

    @classmethod
    def get_instance(cls, context_data: Any = None, registry: Optional["ContextRegistry"] = None) -> "Context":
        """
        :param context_data: data the input context is derived from (None for flask requests)
        :return: the memoized Context for the instance key of `context_data`
        """
        if registry is None:
            registry = default_context_registry
        return registry.get(context_data)

    @classmethod
    def get_error_instance(cls) -> "Context":
        """
        Context used to format errors that happened before a context existed.
        It is never memoized and must not be used for authorization.
        """
        if has_request_context():
            input_context = FlaskInputContext(None)
        else:
            input_context = DictInputContext({})
        return cls("error", input_context, AnonymousViewer(), is_error_instance=True)

    def output_context(self) -> OutputContext:
        return self.input_context.output_context_class(self)

    def assert_authorizable(self) -> None:
        if self.is_error_instance:
            raise GenericError("The error context can't be used for authorization")

    def get_request_id(self) -> str:
        """
        :return: request id derived from the viewer identity, it namespaces the request cache
        """
        return cache_key("request", self.viewer.cache_key)

    def get_cached_request(self, key: str, default: Any = None) -> Any:
        return self.cache.get(cache_key(key, self.get_request_id()), default)

    def set_cache_request(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.cache.set(cache_key(key, self.get_request_id()), value, ttl)

    def delete_cached_request(self, key: str) -> None:
        self.cache.delete(cache_key(key, self.get_request_id()))

    def can_override_method(self) -> bool:
        return self.input_context.allows_method_override()

    def is_cache_clear_request(self) -> bool:
        """
        Only system and debug viewers can clear the cache
        """
        if not (self.viewer.is_system or self.viewer.debug):
            return False
        flag = self.input_context.get_param(get_config("CLEAR_CACHE_PARAM"))
        return str(flag).lower() in ("1", "true", "yes")

    def api_version(self) -> int:
        return self.input_context.api_version()

    @property
    def is_debug(self) -> bool:
        return bool(self.viewer.debug)

    @property
    def is_trusted(self) -> bool:
        """
        Trusted contexts get detailed error messages
        """
        return not self.is_error_instance and (self.viewer.is_system or self.viewer.debug)


class ContextRegistry:
    """
    Contexts by instance key. A context is created once per key, concurrent lookups
    of a new key wait for the first one to finish.
    """

    def __init__(self, input_contexts: Optional[Iterable] = None, authenticator: Optional[Authenticator] = None, cache: Optional[MemoryCache] = None) -> None:
        self._input_contexts = tuple(input_contexts) if input_contexts is not None else None
        self._authenticator = authenticator
        self.cache = cache
        self._contexts: Dict[str, Context] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    @property
    def input_contexts(self) -> Tuple[type, ...]:
        candidates = self._input_contexts if self._input_contexts is not None else get_config("INPUT_CONTEXTS")
        return tuple(load_class(candidate) for candidate in candidates)

    @property
    def authenticator(self) -> Authenticator:
        if self._authenticator is None:
            self._authenticator = load_class(get_config("AUTHENTICATOR"))()
        return self._authenticator

    def select_input_context(self, context_data: Any) -> type:
        for candidate in self.input_contexts:
            if candidate.is_valid(context_data):
                return candidate
        raise RequestParseFailure(f"No input context for {type(context_data).__name__}")

    def get(self, context_data: Any) -> Context:
        input_context_class = self.select_input_context(context_data)
        key = input_context_class.instance_key(context_data)
        context = self._contexts.get(key)
        if context is not None:
            return context

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            context = self._contexts.get(key)
            if context is None:
                input_context = input_context_class(context_data)
                viewer = self.authenticator.authenticate(context_data, input_context)
                ephemeral = input_context_class.is_ephemeral(context_data)
                context = Context(key, input_context, viewer, cache=self.cache, ephemeral=ephemeral)
                self._contexts[key] = context
                graphgate.log.debug(f"Created {context}")
                context_created.send(context)
        return context

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._contexts.pop(key, None)
            self._key_locks.pop(key, None)

    def release(self, context: Context) -> None:
        """
        Forget `context` if it only served the request that just finished
        """
        if context.ephemeral:
            self.invalidate(context.instance_key)

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()
            self._key_locks.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)


default_cache = MemoryCache()
default_context_registry = ContextRegistry()
