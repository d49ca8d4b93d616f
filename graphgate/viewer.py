"""
Viewers: the identity making a request

- AnonymousViewer: no (valid) credentials
- MemberViewer: an authenticated member, possibly logged out
- SystemViewer: internal callers, always trusted
"""
from typing import Any, Mapping, Optional
from .graph_types import PermissionLevel


class Viewer:
    """
    Viewer base class
    """

    kind = "anonymous"
    level = PermissionLevel.PUBLIC
    member_id = None
    debug = False
    is_logged_out = False

    @property
    def is_member(self) -> bool:
        return False

    @property
    def is_system(self) -> bool:
        return False

    @property
    def is_authenticated(self) -> bool:
        return self.is_member or self.is_system

    @property
    def cache_key(self) -> str:
        """
        :return: string identifying the viewer, used to derive cache keys and request ids
        """
        return f"{self.kind}:{self.member_id if self.member_id is not None else ''}"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.cache_key}>"


class AnonymousViewer(Viewer):
    pass


class MemberViewer(Viewer):
    kind = "member"
    level = PermissionLevel.MEMBER

    def __init__(self, member_id: int, debug: bool = False, logged_out: bool = False) -> None:
        self.member_id = member_id
        self.debug = debug
        self.is_logged_out = logged_out

    @property
    def is_member(self) -> bool:
        return True


class SystemViewer(Viewer):
    kind = "system"
    level = PermissionLevel.SYSTEM

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    @property
    def is_system(self) -> bool:
        return True


# the viewer of a member whose session ended
LOGGED_OUT_VIEWER = MemberViewer(0, logged_out=True)


class Authenticator:
    """
    Resolves the viewer of a request.
    The default implementation trusts the viewer the input context provides (e.g. flask.g.viewer set by the app)
    """

    def authenticate(self, context_data: Any, input_context: Any) -> Viewer:
        viewer = input_context.get_viewer(context_data)
        if isinstance(viewer, Viewer):
            return viewer
        return AnonymousViewer()


class TokenAuthenticator(Authenticator):
    """
    Looks up the access token provided by the input context
    """

    def __init__(self, tokens: Optional[Mapping[str, Viewer]] = None) -> None:
        self.tokens = dict(tokens or {})

    def authenticate(self, context_data: Any, input_context: Any) -> Viewer:
        token = input_context.get_token(context_data)
        if token and token in self.tokens:
            return self.tokens[token]
        return super().authenticate(context_data, input_context)
