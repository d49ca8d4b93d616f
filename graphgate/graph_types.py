# Some custom types for graph object references and uuid coding
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Mapping, Optional, Tuple


UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


class HTTPMethod(str, Enum):
    """
    The HTTP methods served by the router
    """

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, method: str) -> Optional["HTTPMethod"]:
        """
        :return: the HTTPMethod for `method`, None if it isn't supported
        """
        try:
            return cls(str(method).upper())
        except ValueError:
            return None


HTTP_METHODS = [m.value for m in HTTPMethod]


class PermissionLevel(IntEnum):
    """
    Permission flag computed for a (viewer, object, method) triple.
    A property is visible when the flag is at least the level it requires.
    """

    NONE = 0
    PUBLIC = 1
    MEMBER = 2
    OWNER = 3
    SYSTEM = 4

    @classmethod
    def from_name(cls, name) -> "PermissionLevel":
        if isinstance(name, PermissionLevel):
            return name
        try:
            return cls[str(name).upper()]
        except KeyError:
            raise ValueError(f"Invalid permission level '{name}'")


@dataclass(frozen=True)
class ObjectStruct:
    """
    The resolved object type and the API class serving it
    """

    type: str
    api_class: type


class GraphUUID:
    """
    Graph object uuids carry the object type and id:
    the first 8 hex digits hold the (non-zero) type code, the remaining 24 the object id

        00000002-0000-0000-0000-00000000002a => type code 2, id 42

    Uuids with an all-zero prefix are legacy references without a type
    """

    TYPE_DIGITS = 8
    ID_DIGITS = 24
    MAX_ID = 16**ID_DIGITS - 1

    def __init__(self, type_codes: Mapping[str, int]) -> None:
        self.type_codes = dict(type_codes)
        self.code_types = {code: type_name for type_name, code in self.type_codes.items()}

    @staticmethod
    def is_uuid(value: str) -> bool:
        return bool(UUID_RE.match(str(value)))

    @classmethod
    def format(cls, type_code: int, object_id: int) -> str:
        return str(uuid.UUID(hex=f"{type_code:0{cls.TYPE_DIGITS}x}{object_id:0{cls.ID_DIGITS}x}"))

    def encode(self, type_name: str, object_id) -> str:
        """
        :param type_name: registered object type
        :param object_id: integer id
        :return: uuid string
        """
        try:
            type_code = self.type_codes[type_name]
        except KeyError:
            raise ValueError(f"No uuid type code for '{type_name}'")
        object_id = int(object_id)
        if object_id < 0 or object_id > self.MAX_ID:
            raise ValueError(f"Object id out of range: {object_id}")
        return self.format(type_code, object_id)

    @classmethod
    def split(cls, value: str) -> Tuple[int, int]:
        """
        :return: (type code, object id) of a uuid string
        """
        hex_digits = uuid.UUID(str(value)).hex
        return int(hex_digits[: cls.TYPE_DIGITS], 16), int(hex_digits[cls.TYPE_DIGITS :], 16)

    @classmethod
    def has_zero_prefix(cls, value: str) -> bool:
        return cls.split(value)[0] == 0

    def decode(self, value: str) -> Tuple[str, int]:
        """
        :param value: uuid string
        :return: (type name, object id)
        raises ValueError when the uuid doesn't carry a registered type code
        """
        type_code, object_id = self.split(value)
        if type_code not in self.code_types:
            raise ValueError(f"Unknown type code {type_code} in uuid {value}")
        return self.code_types[type_code], object_id
