"""
Request parsing

A request entity looks like "<reference>/<connection>?<query>":

    5e0a7c1e-0000-0000-0000-00000000002a/comments?limit=5&fields=id,message
    me?fields=id,name.photo(large)
    42
    johndoe/friends

The first path segment references the object, it is resolved by the first matching rule:
uuid, numeric member id, "me", memorable member name.
The remaining segments form the connection (sub-resource) name.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl
from werkzeug.datastructures import MultiDict
import graphgate
from .config import get_config, get_int_config
from .errors import InvalidFieldsRequested, NotFoundError, RequestParseFailure
from .graph_types import GraphUUID, HTTPMethod, ObjectStruct

ALIAS_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]{0,63}$")
EXPANSION_RE = re.compile(r"(\w+)\(([^)]*)\)")
ME = "me"
# query parameters handled by the parser itself
OPTION_PARAMS = ("limit", "offset", "method", "fields", "output")
# query parameters used by the input context, they're never forwarded to the object apis
CONTEXT_PARAMS = ("access_token", "version")


@dataclass(frozen=True)
class RequestOptions:
    limit: int = 10
    offset: int = 0
    fields: Tuple[str, ...] = ()
    expansions: Mapping[str, Mapping[str, List[str]]] = field(default_factory=dict)
    method: Optional[str] = None
    output: Tuple[str, ...] = ()
    extra: Mapping[str, str] = field(default_factory=dict)
    explicit_limit: bool = False

    @classmethod
    def defaults(cls) -> "RequestOptions":
        return cls(limit=get_int_config("DEFAULT_LIMIT", 10), offset=get_int_config("DEFAULT_OFFSET", 0))

    def replace(self, **changes) -> "RequestOptions":
        return replace(self, **changes)


@dataclass(frozen=True)
class ParsedRequest:
    """
    Structured request, only `with_*` copies are used to change it
    """

    entity: str
    method: str
    uuid: Optional[str]
    reference_id: Any
    object_struct: ObjectStruct
    connection: Optional[str] = None
    options: RequestOptions = field(default_factory=RequestOptions)
    query: str = ""
    cacheable: bool = False

    @property
    def type(self) -> str:
        return self.object_struct.type

    def with_method(self, method: str) -> "ParsedRequest":
        return replace(self, method=method)

    def with_options(self, **changes) -> "ParsedRequest":
        return replace(self, options=self.options.replace(**changes))

    def with_connection(self, connection: Optional[str]) -> "ParsedRequest":
        return replace(self, connection=connection)


@dataclass(frozen=True)
class Reference:
    uuid: Optional[str]
    type: str
    id: Any
    cacheable: bool = False


def split_entity(raw_entity: str) -> Tuple[str, str]:
    """
    :return: (path, query) of the raw request entity
    """
    path, _, query = str(raw_entity or "").partition("?")
    return path.strip("/"), query


def parse_query(query: str) -> MultiDict:
    return MultiDict(parse_qsl(query, keep_blank_values=True))


def parse_fields(value: str) -> Tuple[List[str], Dict[str, Dict[str, List[str]]]]:
    """
    Parse the fields query parameter

        "id,name.photo(large|small),comments.limit(5)"
        => ["id", "name", "comments"], {"name": {"photo": ["large", "small"]}, "comments": {"limit": ["5"]}}

    Top level names are separated by commas, a dot starts an expansion `directive(sub1|sub2)`
    which closes on the parenthesis.
    """
    items = []
    item = ""
    depth = 0
    for char in value or "":
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        if char == "," and depth == 0:
            items.append(item)
            item = ""
        else:
            item += char
    items.append(item)

    fields: List[str] = []
    expansions: Dict[str, Dict[str, List[str]]] = {}
    for item in items:
        name, _, expansion = item.strip().partition(".")
        name = name.strip()
        if not name:
            continue
        if name not in fields:
            fields.append(name)
        if not expansion:
            continue
        directives = expansions.setdefault(name, {})
        matches = EXPANSION_RE.findall(expansion)
        if not matches:
            directives.setdefault(expansion.strip(), [])
        for directive, subfields in matches:
            values = directives.setdefault(directive, [])
            for subfield in subfields.split("|"):
                subfield = subfield.strip()
                if subfield and subfield not in values:
                    values.append(subfield)
    return fields, expansions


def _parse_int(args: MultiDict, name: str) -> Optional[int]:
    value = args.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise RequestParseFailure(f"Invalid {name}: '{value}'")


class RequestParser:
    """
    Parses raw request entities into ParsedRequest objects
    """

    def __init__(self, registry=None, member_directory=None) -> None:
        if registry is None:
            from .registry import default_registry as registry
        self.registry = registry
        self.member_directory = member_directory
        self.rules = (self.resolve_uuid, self.resolve_numeric, self.resolve_me, self.resolve_alias)

    @property
    def codec(self) -> GraphUUID:
        return self.registry.codec

    def parse(self, context, method: str, raw_entity: str, options_data: Optional[Mapping] = None) -> ParsedRequest:
        """
        :param context: request Context
        :param method: HTTP method
        :param raw_entity: "<path>?<query>"
        :param options_data: option defaults, overridden by the query string
        :return: ParsedRequest
        """
        path, query = split_entity(raw_entity)
        segments = [segment for segment in path.split("/") if segment]
        if not segments:
            raise RequestParseFailure("Empty request path")

        reference = self.resolve_reference(context, segments[0])
        connection = "/".join(segments[1:]) or None
        options = self.parse_options(context, method, query, options_data)
        try:
            struct = self.registry.struct(reference.type)
        except NotFoundError:
            raise RequestParseFailure(f"Object type '{reference.type}' isn't served")

        result = ParsedRequest(
            entity=raw_entity,
            method=method,
            uuid=reference.uuid,
            reference_id=reference.id,
            object_struct=struct,
            connection=connection,
            options=options,
            query=query,
            cacheable=reference.cacheable,
        )
        graphgate.log.debug(f"Parsed {raw_entity}: {reference.type} {reference.id} {connection or ''}")
        return result

    def resolve_reference(self, context, segment: str) -> Reference:
        for rule in self.rules:
            reference = rule(context, segment)
            if reference is not None:
                return reference
        raise RequestParseFailure(f"Can't resolve '{segment}'")

    def resolve_uuid(self, context, segment: str) -> Optional[Reference]:
        if not GraphUUID.is_uuid(segment):
            return None
        segment = segment.lower()
        try:
            type_name, object_id = self.codec.decode(segment)
        except ValueError:
            if GraphUUID.has_zero_prefix(segment):
                # legacy picture uuids carry the picture id only
                return Reference(segment, get_config("PICTURE_TYPE"), GraphUUID.split(segment)[1])
            return Reference(segment, get_config("POST_TYPE"), segment)
        return Reference(segment, type_name, object_id)

    def _member_reference(self, member_id: Any, cacheable: bool = False) -> Reference:
        member_type = get_config("MEMBER_TYPE")
        try:
            member_uuid = self.codec.encode(member_type, member_id)
        except ValueError as exc:
            raise RequestParseFailure(f"Can't reference member {member_id} ({exc})")
        return Reference(member_uuid, member_type, int(member_id), cacheable)

    def resolve_numeric(self, context, segment: str) -> Optional[Reference]:
        if not segment.isdigit():
            return None
        return self._member_reference(int(segment))

    def resolve_me(self, context, segment: str) -> Optional[Reference]:
        if segment != ME:
            return None
        viewer = context.viewer
        if not viewer.is_member or viewer.is_logged_out or viewer.member_id is None:
            raise RequestParseFailure("'me' requires an authenticated member")
        return self._member_reference(viewer.member_id, cacheable=True)

    def resolve_alias(self, context, segment: str) -> Optional[Reference]:
        if self.member_directory is None or not ALIAS_RE.match(segment):
            return None
        member_id = self.member_directory.find_member_id(segment)
        if member_id is None:
            return None
        return self._member_reference(member_id)

    def parse_options(self, context, method: str, query: str, options_data: Optional[Mapping] = None) -> RequestOptions:
        args = MultiDict(options_data or {})
        for key, values in parse_query(query).lists():
            args.setlist(key, values)

        options = RequestOptions.defaults()
        changes: Dict[str, Any] = {}

        limit = _parse_int(args, "limit")
        if limit is not None:
            changes["limit"] = max(1, min(limit, get_int_config("MAX_LIMIT", 500)))
            changes["explicit_limit"] = True
        offset = _parse_int(args, "offset")
        if offset is not None:
            changes["offset"] = max(0, min(offset, get_int_config("MAX_OFFSET", 2**31)))

        override = args.get("method")
        if override:
            override = override.upper()
            if method != HTTPMethod.GET.value:
                raise RequestParseFailure(f"Method override is only allowed for GET requests, not {method}")
            if override not in get_config("OVERRIDE_METHODS"):
                raise RequestParseFailure(f"Invalid method override '{override}'")
            if not context.can_override_method():
                raise RequestParseFailure("Method override isn't allowed")
            changes["method"] = override

        if "fields" in args:
            fields, expansions = parse_fields(args.get("fields"))
            changes["fields"] = tuple(fields)
            changes["expansions"] = expansions

        if "output" in args:
            changes["output"] = tuple(o.strip() for o in args.get("output").split(",") if o.strip())

        ignored = OPTION_PARAMS + CONTEXT_PARAMS + (get_config("CLEAR_CACHE_PARAM"),)
        extra = {key: value for key, value in args.items() if key not in ignored}
        if extra:
            changes["extra"] = extra

        return options.replace(**changes)

    def validate_options(self, object_model, object_struct: ObjectStruct, entity: str, options: RequestOptions, api: Any = None) -> RequestOptions:
        """
        Check the requested fields against the object model and hand the unrecognized
        query parameters to the object api

        :return: options, updated with the overrides returned by the object api
        """
        _, query = split_entity(entity)
        args = parse_query(query)

        if "fields" in args:
            fields, _ = parse_fields(args.get("fields"))
            invalid = [name for name in fields if not object_model.has_property(name)]
            if invalid:
                raise InvalidFieldsRequested(invalid)

        ignored = OPTION_PARAMS + CONTEXT_PARAMS + (get_config("CLEAR_CACHE_PARAM"),)
        params = {key: value for key, value in args.items() if key not in ignored}
        params.update({k: v for k, v in options.extra.items() if k not in params})
        if not params:
            return options

        process_options = getattr(api, "process_options", None)
        if not callable(process_options):
            graphgate.log.debug(f"{object_struct.type} ignores parameters {sorted(params)}")
            return options

        overrides = process_options(params) or {}
        changes = {}
        extra = dict(options.extra)
        for key, value in overrides.items():
            if key in ("limit", "offset"):
                changes[key] = int(value)
            elif key in ("fields", "output"):
                changes[key] = tuple(value)
            elif key == "expansions":
                changes[key] = dict(value)
            else:
                extra[key] = value
        changes["extra"] = extra
        return options.replace(**changes)
