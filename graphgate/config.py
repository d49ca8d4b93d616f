# Configuration settings should be set in app.config
# The get_config function falls back to the GraphGate class defaults and the environment
import os
import logging
from flask import current_app
from functools import lru_cache
import graphgate
from typing import Any


@lru_cache(maxsize=128)
def get_config(option: str) -> Any:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        result = getattr(graphgate.GraphGate, option, os.environ.get(option, None))
    return result


def get_int_config(option: str, default: int = 0) -> int:
    """
    :param option: configuration parameter holding an integer
    :return: the integer value, `default` if it isn't set or invalid
    """
    value = get_config(option)
    try:
        return int(value)
    except (TypeError, ValueError):
        graphgate.log.warning(f'Invalid integer configuration {option}="{value}"')
        return default


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return graphgate.log.getEffectiveLevel() < logging.INFO
