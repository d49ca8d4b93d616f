"""
Response shapes

The data produced by a request is wrapped in the first response type that validates
against the HTTP method and the data, the candidates are tried in a fixed order:

    GET:      DataSet, Object, Operation
    POST/PUT: Object, Incomplete, Operation
    DELETE:   Boolean, Operation
"""
from http import HTTPStatus
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from .errors import InvalidResponseShape
from .graph_types import HTTPMethod


def _is_object(data: Any) -> bool:
    return isinstance(data, Mapping) and data.get("id") is not None


def _is_complete(data: Any) -> bool:
    return getattr(data, "is_complete", True)


class Response:
    """
    Response base class, subclasses implement `validate`
    """

    name = None
    status_code = HTTPStatus.OK.value

    def __init__(self, method: str, data: Any, meta: Optional[Dict] = None) -> None:
        self.method = method
        self.data = data
        self.meta = dict(meta or {})
        self.debug = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.method}>"

    @classmethod
    def validate(cls, method: str, data: Any) -> bool:
        raise NotImplementedError

    def to_dict(self) -> Dict:
        """
        create the response payload
        """
        result = {"data": self.data}
        if self.meta:
            result["meta"] = self.meta
        if self.debug is not None:
            result["debug"] = self.debug
        return result


class DataSet(Response):
    """
    Collection of objects
    """

    name = "dataset"

    @classmethod
    def validate(cls, method, data):
        return isinstance(data, list) and all(_is_object(item) for item in data)

    def to_dict(self):
        self.meta.setdefault("count", len(self.data))
        return super().to_dict()


class Object(Response):
    name = "object"

    @classmethod
    def validate(cls, method, data):
        return _is_object(data) and _is_complete(data)

    @property
    def status_code(self):
        if self.method == HTTPMethod.POST.value:
            return HTTPStatus.CREATED.value
        return HTTPStatus.OK.value


class Incomplete(Response):
    """
    An object of which only part of the properties could be loaded
    """

    name = "incomplete"
    status_code = HTTPStatus.ACCEPTED.value

    @classmethod
    def validate(cls, method, data):
        return _is_object(data) and not _is_complete(data)


class Operation(Response):
    """
    Outcome of an operation: {"success": bool, ...}
    """

    name = "operation"

    @classmethod
    def validate(cls, method, data):
        return isinstance(data, Mapping) and isinstance(data.get("success"), bool)


class Boolean(Response):
    name = "boolean"

    @classmethod
    def validate(cls, method, data):
        return isinstance(data, bool)

    def to_dict(self):
        result = super().to_dict()
        result["data"] = {"success": self.data}
        return result


class ErrorResponse(Response):
    """
    Formatted errors, never selected by select_response
    """

    name = "error"

    def __init__(self, method: str, errors: List[Dict], status_code: int) -> None:
        super().__init__(method, None)
        self.errors = errors
        self.status_code = status_code

    @classmethod
    def validate(cls, method, data):
        return False

    def to_dict(self):
        result = {"errors": self.errors}
        if self.debug is not None:
            result["debug"] = self.debug
        return result


RESPONSE_TYPES = MappingProxyType(
    {
        HTTPMethod.GET: (DataSet, Object, Operation),
        HTTPMethod.POST: (Object, Incomplete, Operation),
        HTTPMethod.PUT: (Object, Incomplete, Operation),
        HTTPMethod.DELETE: (Boolean, Operation),
    }
)


def select_response(method: str, data: Any, meta: Optional[Dict] = None) -> Response:
    """
    :param method: HTTP method
    :param data: post-processed request data
    :return: instance of the first response type that validates
    """
    http_method = HTTPMethod.parse(method)
    for candidate in RESPONSE_TYPES.get(http_method, ()):
        if candidate.validate(method, data):
            return candidate(method, data, meta)
    raise InvalidResponseShape(f"{type(data).__name__} isn't a valid {method} response")
