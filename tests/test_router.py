from http import HTTPStatus

import pytest

from graphgate.api_handler import ObjectAPI
from graphgate.errors import HIDDEN_LOG
from graphgate.graphgate_init import GraphGate
from graphgate.response import DataSet, ErrorResponse, Object, Operation
from graphgate.router import Router, RouterStage, canonical_url, is_uniform_collection
from graphgate.viewer import LOGGED_OUT_VIEWER, MemberViewer, SystemViewer

from conftest import COMMENT_CODE, FLAG_CODE, MEMBER_CODE, PICTURE_CODE, POST_CODE, SECRET_CODE, STORE, uuid_of


def _member(member_id=7, **kwargs):
    return {"viewer": MemberViewer(member_id, **kwargs)}


def test_get_requested_fields(router):
    body, status = router.do_request("7?fields=id,name", context_data=_member(8))

    assert status == HTTPStatus.OK.value
    assert body["data"] == {"id": 7, "name": "Jane"}
    assert "errors" not in body


def test_get_default_properties_by_uuid(router):
    body, status = router.do_request(uuid_of(POST_CODE, 1), context_data=_member(8))

    assert status == 200
    assert body["data"] == {"id": 1, "message": "hello"}


def test_get_by_alias(router):
    body, status = router.do_request("jane.doe", context_data=_member(8))

    assert status == 200
    assert body["data"]["id"] == 7


def test_get_me(router):
    response = router.do_request("me?fields=name,email", context_data=_member(7), output=False)

    assert isinstance(response, Object)
    # id is always requested, the owner sees the email
    assert list(response.data.keys()) == ["id", "name", "email"]


def test_get_me_logged_out(router):
    response = router.do_request("me", context_data={"viewer": LOGGED_OUT_VIEWER}, output=False)

    assert isinstance(response, ErrorResponse)
    assert response.status_code == 400
    assert "'me' requires an authenticated member" in response.errors[0]["detail"]


def test_get_hides_properties_above_the_permission_flag(router):
    body, _ = router.do_request("7?fields=id,email", context_data=_member(8))

    assert body["data"] == {"id": 7}


def test_get_hides_properties_of_later_api_versions(router):
    body, _ = router.do_request("7?fields=id,bio", context_data=_member(8))
    assert body["data"] == {"id": 7}

    body, _ = router.do_request("7?fields=id,bio", context_data={"viewer": MemberViewer(8), "version": 2})
    assert body["data"] == {"id": 7, "bio": "hi"}


def test_get_invalid_fields(router):
    response = router.do_request("7?fields=id,nickname,shoesize", context_data=_member(8), output=False)

    assert response.status_code == 400
    assert "nickname, shoesize" in response.errors[0]["title"]


def test_id_removed_by_permissions(router):
    response = router.do_request(uuid_of(SECRET_CODE, 1), context_data=_member(8), output=False)

    assert response.status_code == HTTPStatus.FORBIDDEN.value
    assert response.errors[0]["title"] == "Authorization Error: " + HIDDEN_LOG


def test_id_removed_by_permissions_system_viewer(router):
    response = router.do_request(uuid_of(SECRET_CODE, 1), context_data={"viewer": SystemViewer()}, output=False)

    assert isinstance(response, Object)
    assert response.data == {"id": 1}


def test_get_boolean_is_an_invalid_response(router):
    response = router.do_request(uuid_of(FLAG_CODE, 1), context_data=_member(8), output=False)

    assert isinstance(response, ErrorResponse)
    assert response.status_code == 500
    assert response.errors[0]["title"] == "Invalid Response Shape: " + HIDDEN_LOG


def test_get_boolean_detailed_for_debug_viewer(router):
    response = router.do_request(uuid_of(FLAG_CODE, 1), context_data=_member(8, debug=True), output=False)

    assert response.errors[0]["title"] == "Invalid Response Shape: bool isn't a valid GET response"
    assert response.debug["stage"] == RouterStage.ERROR_CAUGHT.value


def test_post_not_implemented(router):
    body, status = router.do_request(uuid_of(COMMENT_CODE, 10), "POST", {"message": "x"}, context_data=_member(8))

    assert status == HTTPStatus.METHOD_NOT_ALLOWED.value
    assert body == {"errors": [{"title": "Operation Not Permitted: " + HIDDEN_LOG, "detail": "Operation Not Permitted: " + HIDDEN_LOG, "code": "405"}]}


def test_unknown_method(router):
    response = router.do_request("7", "PATCH", {}, context_data=_member(8), output=False)

    assert response.status_code == 405


def test_not_found(router):
    response = router.do_request("99", context_data=_member(8), output=False)

    assert response.status_code == 404


def test_router_state_is_reset(router):
    router.do_request("7/posts?limit=1&offset=1", context_data=_member(7))

    assert router.options.limit == 10
    assert router.options.offset == 0
    assert router.stage is RouterStage.INIT
    assert router.state.context is None

    router.do_request(uuid_of(FLAG_CODE, 1), context_data=_member(8))
    assert router.options.limit == 10
    assert router.state.valid_properties == []


def test_connection_dataset(router):
    response = router.do_request("7/posts?fields=id,message&limit=1&offset=1", context_data=_member(8), output=False)

    assert isinstance(response, DataSet)
    assert response.data == [{"id": 2, "message": "again"}]
    assert response.to_dict()["meta"] == {"limit": 1, "offset": 1, "count": 1}


def test_connection_default_limit_setting(router):
    response = router.do_request("7/posts", context_data=_member(8), output=False)

    # the post type sets its own default limit
    assert response.meta["limit"] == 25
    assert [post["id"] for post in response.data] == [1, 2]


def test_connection_alias(router, monkeypatch):
    monkeypatch.setattr(GraphGate, "CONNECTION_ALIASES", {"feed": "posts"})

    response = router.do_request("7/feed", context_data=_member(8), output=False)

    assert isinstance(response, DataSet)
    assert len(response.data) == 2


def test_unknown_connection(router):
    response = router.do_request("7/friends", context_data=_member(8), output=False)

    assert response.status_code == 404


def test_expanded_connection(router):
    entity = f"{uuid_of(POST_CODE, 1)}?fields=id,comments.limit(1)"

    response = router.do_request(entity, context_data=_member(8), output=False)

    assert isinstance(response, Object)
    assert response.data == {"id": 1, "comments": [{"id": 10, "message": "first"}]}


def test_expanded_connection_fields(router):
    entity = f"{uuid_of(POST_CODE, 1)}?fields=id,comments.fields(message)"

    body, _ = router.do_request(entity, context_data=_member(8))

    assert body["data"]["comments"] == [{"id": 10, "message": "first"}, {"id": 11, "message": "second"}]


def test_post_processors(router):
    body, _ = router.do_request(f"{uuid_of(POST_CODE, 1)}?fields=created", context_data=_member(8))

    assert body["data"] == {"id": 1, "created": "2020-05-17T12:30:00"}


def test_post_creates_object(router):
    body, status = router.do_request("me/posts", "POST", {"message": " <b>Hi</b> there "}, context_data=_member(7))

    assert status == HTTPStatus.CREATED.value
    assert body["data"] == {"id": 4}
    assert STORE.data["post"][4]["message"] == "Hi there"
    assert STORE.data["post"][4]["author"] == 7


def test_post_strips_reserved_properties(router):
    body, status = router.do_request("me/posts", "POST", {"message": "hi", "id": 99, "access_token": "abc"}, context_data=_member(7))

    assert status == 201
    assert 99 not in STORE.data["post"]


def test_post_removed_properties_are_aggregated(router):
    payload = {"message": "hi", "author": 8, "created": "2020-01-01"}

    response = router.do_request("me/posts", "POST", payload, context_data=_member(7), output=False)

    assert response.status_code == 400
    assert "author is read only; created is read only" in response.errors[0]["detail"]
    assert len(STORE.data["post"]) == 3


def test_post_unknown_property(router):
    response = router.do_request("me/posts", "POST", {"title": "x"}, context_data=_member(7), output=False)

    assert response.status_code == 400
    assert "title" in response.errors[0]["detail"]


def test_put_requires_write_permission(router):
    response = router.do_request("7", "PUT", {"name": "Hacked"}, context_data={}, output=False)

    assert response.status_code == 403
    assert STORE.data["member"][7]["name"] == "  Jane  "


def test_put_operation(router):
    response = router.do_request("me", "PUT", {"name": "<i>Janet</i> "}, context_data=_member(7), output=False)

    assert isinstance(response, Operation)
    assert response.data == {"success": True}
    assert STORE.data["member"][7]["name"] == "Janet"


def test_delete_boolean(router):
    body, status = router.do_request(uuid_of(POST_CODE, 3), "DELETE", context_data=_member(8))

    assert status == 200
    assert body == {"data": {"success": True}}
    assert 3 not in STORE.data["post"]


def test_method_override(router):
    body, _ = router.do_request(f"{uuid_of(POST_CODE, 3)}?method=DELETE", context_data=_member(8))

    assert body["data"] == {"success": True}
    assert 3 not in STORE.data["post"]


def test_method_override_not_allowed(router):
    context_data = {"viewer": MemberViewer(8), "allow_method_override": False}

    response = router.do_request(f"{uuid_of(POST_CODE, 3)}?method=DELETE", context_data=context_data, output=False)

    assert response.status_code == 400
    assert 3 in STORE.data["post"]


def test_maintenance(router):
    response = router.do_request(uuid_of(PICTURE_CODE, 5), "DELETE", context_data=_member(8), output=False)

    assert response.status_code == 405


def test_urls_are_canonical(router, monkeypatch):
    monkeypatch.setattr(GraphGate, "URL_ROOT", "https://CDN.example.com/")

    member = router.do_request("7?fields=website", context_data=_member(8), output=False)
    picture = router.do_request(uuid_of(PICTURE_CODE, 5), context_data=_member(8), output=False)

    assert member.data["website"] == "https://example.com/Jane"
    assert picture.data["url"] == "https://cdn.example.com/pics/5.jpg"


def test_permission_flag_is_memoized(router):
    context_data = {"viewer": MemberViewer(8)}

    router.do_request("7", context_data=context_data)
    router.do_request("7?fields=id,name", context_data=context_data)
    assert STORE.permission_checks == 1

    # writes are never memoized
    router.do_request("7", "PUT", {"name": "x"}, context_data=context_data)
    router.do_request("7", "PUT", {"name": "x"}, context_data=context_data)
    assert STORE.permission_checks == 3


def test_cache_clear_request(router):
    context_data = {"viewer": SystemViewer()}
    router.do_request("7", context_data=context_data)
    assert STORE.permission_checks == 1

    body, _ = router.do_request("7", context_data={"viewer": SystemViewer(), "clear_cache": "1"})
    assert body["data"] == {"success": True}
    assert STORE.cleared == [7]

    router.do_request("7", context_data=context_data)
    assert STORE.permission_checks == 2


def test_cache_clear_ignored_for_members(router):
    body, _ = router.do_request("7", context_data={"viewer": MemberViewer(8), "clear_cache": "1"})

    assert body["data"] == {"id": 7, "name": "Jane"}
    assert STORE.cleared == []


def test_debug_payload(router):
    body, _ = router.do_request("7?fields=id,email", context_data=_member(8, debug=True))

    assert body["debug"]["permission_flag"] == "MEMBER"
    assert body["debug"]["requested_properties"] == ["id", "email"]
    assert body["debug"]["valid_properties"] == ["id"]


def test_observers(router):
    events = []

    @router.observe
    def _record(sender, **kwargs):
        events.append((sender, sorted(kwargs)))

    router.do_request("7", context_data=_member(8))
    router.do_request(uuid_of(FLAG_CODE, 1), context_data=_member(8))

    assert [names for _, names in events] == [
        ["context", "entity", "method"],
        ["context", "response"],
        ["context", "entity", "method"],
        ["context", "error"],
    ]
    assert all(sender is router for sender, _ in events)


def test_failing_observer_does_not_change_the_response(router):
    def _fail(sender, **kwargs):
        raise RuntimeError("observer failure")

    router.observe(_fail)

    body, status = router.do_request("7", context_data=_member(8))

    assert status == 200
    assert body["data"]["id"] == 7


def test_unexpected_exception_is_a_generic_error(router, monkeypatch):
    from conftest import MemberAPI

    def _broken(self):
        raise KeyError("storage")

    monkeypatch.setattr(MemberAPI, "get", _broken)

    response = router.do_request("7", context_data=_member(8), output=False)

    assert response.status_code == 500
    assert response.errors[0]["title"] == "Generic Error: " + HIDDEN_LOG


def test_invalid_payload(router):
    response = router.do_request("me/posts", "POST", ["message"], context_data=_member(7), output=False)

    assert response.status_code == 400


def test_sub_router_depth(registry, context_registry):
    router = Router(registry, context_registry, depth=2)

    response = router.do_request(f"{uuid_of(POST_CODE, 1)}?fields=id,comments", context_data=_member(8), output=False)

    assert response.data == {"id": 1}


def test_member_uuid(router):
    body, _ = router.do_request(uuid_of(MEMBER_CODE, 8), context_data=_member(7))

    assert body["data"] == {"id": 8, "name": "Joe"}


@pytest.mark.parametrize(
    "value, expected",
    [
        ("//Example.com/a", "https://example.com/a"),
        ("HTTP://WWW.Example.com/Path?Q=1", "http://www.example.com/Path?Q=1"),
        ("mailto:someone@example.com", "mailto:someone@example.com"),
        ("just text", "just text"),
    ],
)
def test_canonical_url(value, expected):
    assert canonical_url(value) == expected


def test_canonical_url_relative():
    assert canonical_url("img/1.png", "https://cdn.example.com", relative=True) == "https://cdn.example.com/img/1.png"
    assert canonical_url("img/1.png", None, relative=True) == "img/1.png"


def test_uniform_collection():
    assert is_uniform_collection([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}], ["id", "name"])
    assert not is_uniform_collection([{"id": 1, "name": "a"}, {"id": 2}], ["id", "name"])
    assert not is_uniform_collection([{"id": 1, "secret": "a"}], ["id"])
    assert not is_uniform_collection({"id": 1}, ["id"])


def test_cache_clear_parameter_is_per_request(router):
    response = router.do_request("7", context_data={"viewer": SystemViewer(), "clear_cache": True}, output=False)
    assert isinstance(response, Operation)

    response = router.do_request("7?fields=id,name", context_data={"viewer": SystemViewer()}, output=False)

    assert isinstance(response, Object)
    assert response.data == {"id": 7, "name": "Jane"}
    assert STORE.cleared == [7]


def test_api_version_is_per_request(router):
    newer = router.do_request("7?fields=id,bio", context_data={"viewer": MemberViewer(8), "version": 2}, output=False)
    default = router.do_request("7?fields=id,bio", context_data={"viewer": MemberViewer(8)}, output=False)

    assert newer.data == {"id": 7, "bio": "hi"}
    assert default.data == {"id": 7}


def test_me_is_fresh_after_put(router):
    context_data = _member(7)

    before = router.do_request("me?fields=id,name", context_data=context_data, output=False)
    router.do_request("me", "PUT", {"name": "Renamed"}, context_data=context_data)
    after = router.do_request("me?fields=id,name", context_data=context_data, output=False)

    assert before.data == {"id": 7, "name": "Jane"}
    assert after.data == {"id": 7, "name": "Renamed"}


def test_contexts_are_released(router, context_registry):
    router.do_request("7", context_data=_member(8))
    router.do_request(f"{uuid_of(POST_CODE, 1)}?fields=id,comments", context_data=_member(8))
    router.do_request("7", context_data={"viewer": MemberViewer(8), "instance": "kept"})

    assert len(context_registry) == 1
    assert "dict:kept" in context_registry


def test_free_text_is_not_a_url(router):
    body, _ = router.do_request("me/posts", "POST", {"message": "//Shout OUT to Jane"}, context_data=_member(7))
    post = router.do_request(uuid_of(POST_CODE, body["data"]["id"]), context_data=_member(8), output=False)

    assert post.data == {"id": 4, "message": "//Shout OUT to Jane"}


def test_urls_of_connected_objects_are_canonical(router, registry):
    class _AlbumAPI(ObjectAPI):
        object_model = {"type": "album", "properties": {"title": {"type": "string"}, "pictures": {"connection": "picture"}}}

    registry.register("album", _AlbumAPI)
    data = {"id": 1, "title": "//Holiday", "pictures": [{"id": 5, "url": "//CDN.example.com/5.jpg"}]}

    result = router.canonicalize_urls(data, registry.get_object_model("album"))

    assert result == {"id": 1, "title": "//Holiday", "pictures": [{"id": 5, "url": "https://cdn.example.com/5.jpg"}]}
    assert data["pictures"][0]["url"] == "//CDN.example.com/5.jpg"
