"""
Gatekeepers validate or rewrite a parsed request before it is dispatched

They run in the order of the GATEKEEPERS configuration, each one receives the request
as rewritten by the previous ones:

    class BlockedGatekeeper(Gatekeeper):
        def applies(self, parsed, context, router):
            return context.viewer.is_member

        def process(self, parsed, context, router):
            if is_blocked(context.viewer.member_id, parsed.reference_id):
                raise PermissionDenied("blocked")
            return parsed
"""
from typing import Iterable, List
import graphgate
from .config import get_config
from .errors import OperationNotPermitted
from .graphgate_init import load_class


class Gatekeeper:
    """
    Gatekeeper base class
    """

    def applies(self, parsed, context, router) -> bool:
        return True

    def process(self, parsed, context, router):
        """
        :return: the (possibly rewritten) ParsedRequest
        """
        return parsed


class MaintenanceGatekeeper(Gatekeeper):
    """
    Refuses the methods listed in the `maintenance` annotation of the object type
    """

    def applies(self, parsed, context, router):
        return parsed.type in router.registry

    def process(self, parsed, context, router):
        object_model = router.registry.get_object_model(parsed.type)
        method = parsed.options.method or parsed.method
        if object_model.in_maintenance(method):
            raise OperationNotPermitted(f"{parsed.type} is in maintenance for {method}")
        return parsed


class ConnectionAliasGatekeeper(Gatekeeper):
    """
    Rewrites connection names with the CONNECTION_ALIASES configuration, e.g. {"feed": "posts"}
    """

    def applies(self, parsed, context, router):
        return bool(parsed.connection) and parsed.connection in (get_config("CONNECTION_ALIASES") or {})

    def process(self, parsed, context, router):
        target = get_config("CONNECTION_ALIASES")[parsed.connection]
        graphgate.log.debug(f"Connection alias {parsed.connection} => {target}")
        return parsed.with_connection(target)


class DefaultLimitGatekeeper(Gatekeeper):
    """
    Object types can set their own default limit: `setting: {limit: 25}`
    """

    def applies(self, parsed, context, router):
        return not parsed.options.explicit_limit and parsed.type in router.registry

    def process(self, parsed, context, router):
        type_name = parsed.type
        if parsed.connection:
            parent_model = router.registry.get_object_model(parsed.type)
            type_name = parent_model.connection_type(parsed.connection)
            if type_name not in router.registry:
                return parsed
        limit = router.registry.get_object_model(type_name).setting("limit")
        if limit is None:
            return parsed
        return parsed.with_options(limit=int(limit))


def load_gatekeepers(gatekeepers: Iterable = None) -> List[Gatekeeper]:
    """
    :param gatekeepers: gatekeeper classes, instances or dotted paths, defaults to the GATEKEEPERS configuration
    :return: gatekeeper instances
    """
    if gatekeepers is None:
        gatekeepers = get_config("GATEKEEPERS") or ()
    result = []
    for gatekeeper in gatekeepers:
        gatekeeper = load_class(gatekeeper)
        if isinstance(gatekeeper, type):
            gatekeeper = gatekeeper()
        result.append(gatekeeper)
    return result
