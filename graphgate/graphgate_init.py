import logging
import os
import sys
from flask import Flask
import flask.app
import graphgate
from typing import Any


class GraphGate:
    """This class holds the graphgate configuration and hooks it into a Flask application
    :param app: a Flask application.
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    """

    # Configuration settings are stored as class variables
    DEFAULT_LIMIT = 10
    DEFAULT_OFFSET = 0
    MAX_LIMIT = 500
    MAX_OFFSET = 2**31
    PERMISSION_CACHE_TTL = 300  # seconds a memoized permission flag stays valid
    ALLOW_METHOD_OVERRIDE = True
    OVERRIDE_METHODS = ("GET", "POST", "DELETE")
    # payload keys that can never be written by a client
    RESERVED_PROPERTIES = ("id", "uuid", "type", "method", "access_token")
    # dotted paths or classes, tried in order by Context.get_instance
    INPUT_CONTEXTS = ("graphgate.context.FlaskInputContext", "graphgate.context.DictInputContext")
    GATEKEEPERS = (
        "graphgate.gatekeepers.MaintenanceGatekeeper",
        "graphgate.gatekeepers.ConnectionAliasGatekeeper",
        "graphgate.gatekeepers.DefaultLimitGatekeeper",
    )
    AUTHENTICATOR = "graphgate.viewer.Authenticator"
    CONNECTION_ALIASES = {}  # e.g. {"feed": "posts"}
    URL_ROOT = None
    MEMBER_TYPE = "member"
    PICTURE_TYPE = "picture"
    POST_TYPE = "post"
    DEFAULT_API_VERSION = 1
    CLEAR_CACHE_PARAM = "clear_cache"
    LOGLEVEL = logging.WARNING

    def __init__(self, app: flask.app.Flask = None, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        if app is not None:
            self.init_app(app, **kwargs)

    def init_app(self, app: flask.app.Flask, **kwargs) -> None:
        """
        Application initialization
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(GraphGate, conf_name, conf_val)

        for conf_name, conf_val in app.config.items():
            if hasattr(GraphGate, conf_name):
                setattr(GraphGate, conf_name, conf_val)

        graphgate.config.get_config.cache_clear()

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_request
        def drop_context(exception=None):
            """Contexts live for one flask request, forget them afterwards"""
            from .context import FlaskInputContext, default_context_registry

            instance_key = FlaskInputContext.current_instance_key()
            if instance_key is not None:
                default_context_registry.invalidate(instance_key)

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stderr so we redirect everything to sys.stderr
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


def load_class(path: Any) -> Any:
    """
    :param path: a class or a dotted path to a class, e.g. "graphgate.context.DictInputContext"
    :return: the class
    """
    if not isinstance(path, str):
        return path
    module_name, _, class_name = path.rpartition(".")
    module = __import__(module_name, fromlist=[class_name])
    return getattr(module, class_name)


#
# logging initialization
#
try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = GraphGate.init_logging(LOGLEVEL)
