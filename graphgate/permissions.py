"""
Permission filtering

- the PermissionsModel maps a permission flag onto the properties of an object model
- authorizers are named rules applied to the viewer, they remove properties or deny the request
"""
from typing import Callable, Dict, Iterable, List, Optional
from .errors import PermissionDenied
from .graph_types import PermissionLevel

Authorizer = Callable[..., Iterable[str]]

_authorizers: Dict[str, Authorizer] = {}


def register_authorizer(name: str, authorizer: Optional[Authorizer] = None):
    """
    Register an authorization rule, can be used as decorator:

        @register_authorizer("friends_only")
        def friends_only(viewer, struct, method, valid_properties, object_model):
            ...
            return ["email"]  # properties the viewer can't see

    :return: the authorizer
    """

    def _register(func: Authorizer) -> Authorizer:
        _authorizers[name] = func
        return func

    if authorizer is not None:
        return _register(authorizer)
    return _register


def get_authorizer(name: str) -> Optional[Authorizer]:
    return _authorizers.get(name)


@register_authorizer("member_only")
def member_only(viewer, struct, method, valid_properties, object_model):
    """
    Only authenticated viewers get access
    """
    if not viewer.is_authenticated:
        raise PermissionDenied(f"{method} {struct.type} requires an authenticated viewer")
    return []


@register_authorizer("not_logged_out")
def not_logged_out(viewer, struct, method, valid_properties, object_model):
    if viewer.is_logged_out:
        raise PermissionDenied(f"{method} {struct.type}: the viewer is logged out")
    return []


@register_authorizer("hide_private")
def hide_private(viewer, struct, method, valid_properties, object_model):
    """
    Properties with `setting: {private: true}` are hidden from anonymous viewers
    """
    if viewer.is_authenticated:
        return []
    return [name for name in valid_properties if object_model.property_setting(name, "private", False)]


class PermissionsModel:
    """
    Computes the properties allowed for a permission flag
    """

    def __init__(self, object_model) -> None:
        self.object_model = object_model

    def allowed_properties(self, flag: PermissionLevel, method: str, api_version: Optional[int] = None) -> List[str]:
        """
        :param flag: permission level of the viewer for the object
        :param method: HTTP method
        :param api_version: requested api version, properties introduced in later versions are excluded
        :return: the allowed property names, in object model order
        """
        result = []
        for name in self.object_model.property_names():
            if flag < self.object_model.required_level(name, method):
                continue
            if api_version is not None and self.object_model.min_version(name) > api_version:
                continue
            result.append(name)
        return result

    def apply_authorizers(self, viewer, struct, method: str, valid_properties: List[str]) -> List[str]:
        """
        Run the authorizers declared on the object model

        :return: valid properties minus the ones removed by the authorizers
        """
        valid_properties = list(valid_properties)
        for name in self.object_model.authorizers(method):
            authorizer = get_authorizer(name)
            removed = authorizer(viewer, struct, method, list(valid_properties), self.object_model) or []
            valid_properties = [prop for prop in valid_properties if prop not in removed]
        return valid_properties
