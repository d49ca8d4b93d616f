import copy
import datetime
from types import SimpleNamespace
from typing import Optional

import pytest

import graphgate
from graphgate.api_handler import ObjectAPI
from graphgate.cache import MemoryCache
from graphgate.config import get_config
from graphgate.context import ContextRegistry, DictInputContext
from graphgate.graph_types import GraphUUID, PermissionLevel
from graphgate.object_model import ObjectModel
from graphgate.registry import ObjectTypeRegistry
from graphgate.router import Router

MEMBER_CODE, POST_CODE, COMMENT_CODE, PICTURE_CODE, FLAG_CODE, SECRET_CODE = 1, 2, 3, 4, 5, 6

MEMBER_TEMPLATE = {
    "type": "member",
    "default": ["id", "name"],
    "properties": {
        "id": {"type": "id"},
        "name": {"type": "string", "preprocessor": {"PUT": ["strip_tags", "trim"]}, "postprocessor": {"GET": ["trim"]}},
        "email": {"type": "string", "permissions": {"GET": "owner"}},
        "website": {"type": "url"},
        "bio": {"type": "string", "version": 2},
        "posts": {"connection": "post"},
    },
}


class PostModel(ObjectModel):
    """
    type: post
    default: [id, message]
    setting: {limit: 25}
    properties:
        id: {type: id}
        message: {type: string, preprocessor: {POST: [strip_tags, trim]}}
        author: {type: id, preprocessor: {"*": [readonly]}}
        created: {type: datetime, preprocessor: {"*": [readonly]}, postprocessor: {GET: [isoformat]}}
        comments: {connection: comment}
    ---
    Wall posts
    """


COMMENT_TEMPLATE = """
type: comment
default: [id, message]
properties:
    message: {type: string}
"""

PICTURE_TEMPLATE = {
    "type": "picture",
    "maintenance": ["DELETE"],
    "default": ["id", "url"],
    "properties": {"url": {"type": "url"}},
}

SECRET_TEMPLATE = {
    "type": "secret",
    "properties": {"id": {"type": "id", "permissions": {"GET": "system"}}, "value": {"type": "string"}},
}

INITIAL_DATA = {
    "member": {
        7: {"id": 7, "name": "  Jane  ", "email": "jane@example.com", "website": "//Example.COM/Jane", "bio": "hi"},
        8: {"id": 8, "name": "Joe", "email": "joe@example.com", "website": None, "bio": ""},
    },
    "post": {
        1: {"id": 1, "message": "hello", "author": 7, "created": datetime.datetime(2020, 5, 17, 12, 30)},
        2: {"id": 2, "message": "again", "author": 7, "created": datetime.datetime(2020, 5, 18, 8, 0)},
        3: {"id": 3, "message": "hi jane", "author": 8, "created": datetime.datetime(2020, 5, 19, 9, 15)},
    },
    "comment": {
        10: {"id": 10, "message": "first", "post": 1},
        11: {"id": 11, "message": "second", "post": 1},
    },
    "picture": {5: {"id": 5, "url": "pics/5.jpg"}},
}


class _FakeStore:
    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.data = copy.deepcopy(INITIAL_DATA)
        self.permission_checks = 0
        self.cleared = []


STORE = _FakeStore()


class _PagedAPI(ObjectAPI):
    def page(self, items):
        return items[self.options.offset : self.options.offset + self.options.limit]


class MemberAPI(_PagedAPI):
    object_model = MEMBER_TEMPLATE

    def get(self):
        return STORE.data["member"].get(self.reference_id)

    def put(self, payload):
        STORE.data["member"][self.reference_id].update(payload)
        return True

    def check_permission(self, viewer, struct, method):
        STORE.permission_checks += 1
        if viewer.is_member and viewer.member_id == self.reference_id:
            return PermissionLevel.OWNER
        return viewer.level

    def clear_cache(self):
        STORE.cleared.append(self.reference_id)


class PostAPI(_PagedAPI):
    object_model = PostModel

    def get(self):
        if self.parent:
            _, member_id = self.parent
            return self.page([p for p in STORE.data["post"].values() if p["author"] == member_id])
        return STORE.data["post"].get(self.reference_id)

    def post(self, payload):
        posts = STORE.data["post"]
        post_id = max(posts) + 1
        posts[post_id] = dict(payload, id=post_id, author=self.viewer.member_id, created=datetime.datetime(2021, 1, 1))
        return post_id

    def delete(self, payload):
        return STORE.data["post"].pop(self.reference_id, None) is not None


class CommentAPI(_PagedAPI):
    object_model = COMMENT_TEMPLATE

    def get(self):
        if self.parent:
            _, post_id = self.parent
            return self.page([c for c in STORE.data["comment"].values() if c["post"] == post_id])
        return STORE.data["comment"].get(self.reference_id)

    def process_options(self, params):
        if "order" in params:
            return {"order": params["order"]}
        return {}


class PictureAPI(ObjectAPI):
    object_model = PICTURE_TEMPLATE

    def get(self):
        return STORE.data["picture"].get(self.reference_id)

    def delete(self, payload):
        return True


class FlagAPI(ObjectAPI):
    object_model = {"type": "flag"}

    def get(self):
        return True


class SecretAPI(ObjectAPI):
    object_model = SECRET_TEMPLATE

    def get(self):
        return {"id": self.reference_id, "value": "s3cr3t"}


class _FakeDirectory:
    def __init__(self, aliases) -> None:
        self.aliases = aliases

    def find_member_id(self, alias: str) -> Optional[int]:
        return self.aliases.get(alias)


def uuid_of(code: int, object_id: int) -> str:
    return GraphUUID.format(code, object_id)


@pytest.fixture(autouse=True)
def _reset_runtime():
    get_config.cache_clear()
    STORE.reset()
    yield
    get_config.cache_clear()


@pytest.fixture
def registry() -> ObjectTypeRegistry:
    result = ObjectTypeRegistry()
    result.register("member", MemberAPI, code=MEMBER_CODE)
    result.register("post", PostAPI, code=POST_CODE)
    result.register("comment", CommentAPI, code=COMMENT_CODE)
    result.register("picture", PictureAPI, code=PICTURE_CODE)
    result.register("flag", FlagAPI, code=FLAG_CODE)
    result.register("secret", SecretAPI, code=SECRET_CODE)
    return result


@pytest.fixture
def context_registry() -> ContextRegistry:
    return ContextRegistry(input_contexts=[DictInputContext], cache=MemoryCache())


@pytest.fixture
def directory() -> _FakeDirectory:
    return _FakeDirectory({"jane.doe": 7})


@pytest.fixture
def router(registry, context_registry, directory) -> Router:
    return Router(registry, context_registry, member_directory=directory)


@pytest.fixture
def fake_context():
    """
    Context stand-in for the parser tests
    """

    def _build(viewer=None, allow_override=True):
        return SimpleNamespace(viewer=viewer or graphgate.AnonymousViewer(), can_override_method=lambda: allow_override)

    return _build
