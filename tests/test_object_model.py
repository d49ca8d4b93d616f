from types import SimpleNamespace

import pytest
from sqlalchemy import Column, Integer, String, create_engine, text
from sqlalchemy.orm import declarative_base

from graphgate.errors import NoObjectData, PermissionDenied, ValidationError
from graphgate.graph_types import ObjectStruct, PermissionLevel
from graphgate.object_model import ObjectData, ObjectModel, load_template
from graphgate.permissions import PermissionsModel, get_authorizer, register_authorizer
from graphgate.viewer import AnonymousViewer, MemberViewer

from conftest import MEMBER_TEMPLATE, PostModel

Base = declarative_base()


class _Member(Base):
    __tablename__ = "members"
    id = Column(Integer, primary_key=True)
    name = Column(String)
    password = Column(String)


def test_docstring_template():
    model = PostModel()

    assert model.type_name == "post"
    assert model.default_properties() == ["id", "message"]
    assert model.connections() == {"comments": "comment"}
    assert model.setting("limit") == 25
    assert model.processors("preprocessor")["message"] == {"POST": ("strip_tags", "trim")}
    assert model.processors("postprocessor") == {"created": {"GET": ("isoformat",)}}


def test_mapping_template():
    model = ObjectModel(MEMBER_TEMPLATE)

    assert model.property_names() == ["id", "name", "email", "website", "bio", "posts"]
    assert model.is_connection("posts")
    assert not model.is_connection("name")
    assert model.connection_type("posts") == "post"
    assert model.min_version("bio") == 2
    assert model.required_level("email", "GET") is PermissionLevel.OWNER
    assert model.required_level("email", "PUT") is PermissionLevel.MEMBER
    assert model.required_level("name", "GET") is PermissionLevel.PUBLIC


def test_id_is_always_declared():
    model = ObjectModel("type: tag\nproperties:\n    label: {type: string, default: true}")

    assert model.property_names() == ["id", "label"]
    assert model.default_properties() == ["id", "label"]


@pytest.mark.parametrize(
    "template",
    [
        {"type": "tag", "color": "red"},
        {"type": "tag", "properties": {"label": {"colour": "red"}}},
        {"type": "tag", "properties": {"label": {"maintenance": True}}},
        {"type": "tag", "properties": {"label": {"default": ["a"]}}},
        {"properties": {}},
        "- just\n- a list",
        "type: [unclosed",
    ],
)
def test_invalid_templates(template):
    with pytest.raises(ValidationError):
        ObjectModel(template)


def test_undocumented_class():
    class _Undocumented:
        pass

    with pytest.raises(ValidationError):
        load_template(_Undocumented)


def test_maintenance_and_authorizers():
    model = ObjectModel({"type": "tag", "maintenance": True, "authorizer": {"GET": ["member_only"], "*": ["not_logged_out"]}})

    assert model.in_maintenance("DELETE")
    assert model.authorizers("GET") == ("member_only",)
    assert model.authorizers("POST") == ("not_logged_out",)


def test_map_source_mapping():
    model = ObjectModel(MEMBER_TEMPLATE)

    result = model.map_source({"id": 1, "name": "Jane", "password": "x"})

    assert result == {"id": 1, "name": "Jane"}
    assert result.is_complete


def test_map_source_incomplete():
    model = ObjectModel(MEMBER_TEMPLATE)

    result = model.map_source(ObjectData({"id": 1}, complete=False))

    assert not result.is_complete


def test_map_source_row():
    model = ObjectModel(MEMBER_TEMPLATE)
    engine = create_engine("sqlite://")
    with engine.connect() as connection:
        row = connection.execute(text("SELECT 3 AS id, 'Joe' AS name, 'secret' AS password")).first()

    assert model.map_source(row) == {"id": 3, "name": "Joe"}


def test_map_source_orm_instance():
    model = ObjectModel(MEMBER_TEMPLATE)

    result = model.map_source(_Member(id=4, name="Ann", password="secret"))

    assert result == {"id": 4, "name": "Ann"}


@pytest.mark.parametrize("source", [None, 42, SimpleNamespace(id=1), {"name": "no id"}])
def test_map_source_invalid(source):
    with pytest.raises(NoObjectData):
        ObjectModel(MEMBER_TEMPLATE).map_source(source)


def test_allowed_properties():
    permissions = PermissionsModel(ObjectModel(MEMBER_TEMPLATE))

    assert permissions.allowed_properties(PermissionLevel.PUBLIC, "GET", 1) == ["id", "name", "website", "posts"]
    assert permissions.allowed_properties(PermissionLevel.OWNER, "GET") == ["id", "name", "email", "website", "bio", "posts"]
    assert permissions.allowed_properties(PermissionLevel.PUBLIC, "PUT") == []
    assert permissions.allowed_properties(PermissionLevel.NONE, "GET") == []


def test_authorizers():
    model = ObjectModel(
        {
            "type": "profile",
            "authorizer": {"GET": ["hide_private"], "PUT": ["member_only"]},
            "properties": {"name": {"type": "string"}, "phone": {"type": "string", "setting": {"private": True}}},
        }
    )
    permissions = PermissionsModel(model)
    struct = ObjectStruct("profile", object)

    assert permissions.apply_authorizers(AnonymousViewer(), struct, "GET", ["id", "name", "phone"]) == ["id", "name"]
    assert permissions.apply_authorizers(MemberViewer(1), struct, "GET", ["id", "name", "phone"]) == ["id", "name", "phone"]
    with pytest.raises(PermissionDenied):
        permissions.apply_authorizers(AnonymousViewer(), struct, "PUT", ["id", "name"])


def test_register_authorizer():
    @register_authorizer("no_names")
    def no_names(viewer, struct, method, valid_properties, object_model):
        return ["name"]

    assert get_authorizer("no_names") is no_names
    model = ObjectModel({"type": "tag", "authorizer": ["no_names"], "properties": {"name": {"type": "string"}}})
    assert PermissionsModel(model).apply_authorizers(AnonymousViewer(), ObjectStruct("tag", object), "GET", ["id", "name"]) == ["id"]
