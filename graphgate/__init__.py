# flake8: noqa: F401
#
# graphgate_init has to be imported first: the other modules log through graphgate.log
#
from .graphgate_init import log, GraphGate, load_class
from .config import get_config, is_debug
from .errors import (
    GraphError,
    ValidationError,
    RequestParseFailure,
    InvalidFieldsRequested,
    ProcessorRemovedProperties,
    PermissionDenied,
    OperationNotPermitted,
    NotFoundError,
    InvalidResponseShape,
    NoObjectData,
    GenericError,
)
from .graph_types import HTTPMethod, PermissionLevel, ObjectStruct, GraphUUID
from .annotations import AnnotationParser, annotation_parser
from .object_model import ObjectModel, ObjectData
from .processors import Processor, ProcessorManager, register_processor
from .permissions import PermissionsModel, register_authorizer
from .viewer import Viewer, AnonymousViewer, MemberViewer, SystemViewer, Authenticator, TokenAuthenticator
from .context import Context, ContextRegistry, InputContext, DictInputContext, FlaskInputContext
from .registry import ObjectTypeRegistry, default_registry
from .api_handler import ObjectAPI
from .gatekeepers import Gatekeeper
from .router import Router
from .restful import GraphAPI, GraphResource
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "GraphGate",
    "GraphAPI",
    "GraphResource",
    "Router",
    # object types:
    "ObjectAPI",
    "ObjectModel",
    "ObjectData",
    "ObjectTypeRegistry",
    "default_registry",
    "AnnotationParser",
    "annotation_parser",
    # permissions and processors:
    "PermissionLevel",
    "PermissionsModel",
    "register_authorizer",
    "Processor",
    "ProcessorManager",
    "register_processor",
    "Gatekeeper",
    # contexts:
    "Context",
    "ContextRegistry",
    "InputContext",
    "DictInputContext",
    "FlaskInputContext",
    "Viewer",
    "AnonymousViewer",
    "MemberViewer",
    "SystemViewer",
    "Authenticator",
    "TokenAuthenticator",
    # Errors:
    "GraphError",
    "ValidationError",
    "RequestParseFailure",
    "InvalidFieldsRequested",
    "ProcessorRemovedProperties",
    "PermissionDenied",
    "OperationNotPermitted",
    "NotFoundError",
    "InvalidResponseShape",
    "NoObjectData",
    "GenericError",
)
