# graphgate to json encoding

import datetime
import decimal
from enum import Enum
from uuid import UUID
from flask.json.provider import DefaultJSONProvider
import graphgate
from .config import is_debug
from .response import Response


def _encode_enum(value: Enum):
    # PermissionLevel and other int enums are shown by name
    return value.name if isinstance(value.value, int) else value.value


# checked in order: datetime is a date subclass
ENCODERS = (
    (Response, lambda value: value.to_dict()),
    (datetime.timedelta, str),
    (datetime.datetime, lambda value: value.isoformat(" ")),
    ((datetime.date, datetime.time), lambda value: value.isoformat()),
    ((set, frozenset, tuple), list),
    (Enum, _encode_enum),
    (UUID, str),
    (decimal.Decimal, float),
    (bytes, lambda value: value.hex()),
)


class GraphJSONProvider(DefaultJSONProvider):
    """
    Flask JSON encoding of graph responses and the property types the object models declare
    """

    encoders = ENCODERS

    def default(self, obj):
        """
        :param obj: object the json module can't serialize
        :return: serializable value
        """
        for types, encode in self.encoders:
            if isinstance(obj, types):
                return encode(obj)

        if not is_debug():
            graphgate.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
            return {"error": "GraphJSONProvider invalid object"}
        return str(obj)
