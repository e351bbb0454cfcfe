"""
Logging settings, as read from the ``logging`` section of the
configuration file.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

from pdfdecrypter.config.errors import ConfigurationError
from pdfdecrypter.pdf_utils.misc import get_and_apply

__all__ = [
    'LogConfig', 'LogLevel', 'LogOutput', 'StdLogOutput',
    'parse_logging_config', 'DEFAULT_ROOT_LOGGER_LEVEL',
]

DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO


class StdLogOutput(enum.Enum):
    STDERR = 'stderr'
    STDOUT = 'stdout'


LogLevel = Union[int, str]
LogOutput = Union[StdLogOutput, str]


@dataclass(frozen=True)
class LogConfig:
    level: LogLevel
    """
    Level number or name, as accepted by :meth:`logging.Logger.setLevel`.
    """

    output: LogOutput
    """
    A standard stream, or the name of a log file.
    """


def _parse_output(spec) -> LogOutput:
    if not isinstance(spec, str):
        raise ConfigurationError(
            "Log output must be 'stderr', 'stdout' or a file name."
        )
    try:
        return StdLogOutput(spec.lower())
    except ValueError:
        return spec


def _parse_level(spec) -> LogLevel:
    if isinstance(spec, int) and not isinstance(spec, bool):
        return spec
    # getLevelName returns a 'Level ...' string for unknown names
    if isinstance(spec, str) \
            and isinstance(logging.getLevelName(spec.upper()), int):
        return spec.upper()
    raise ConfigurationError(f"Invalid log level: {spec!r}")


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    """
    Parse the ``logging`` section of the configuration file.

    :param log_config_spec:
        Dictionary with the optional keys ``root-level``, ``root-output``
        and ``by-module``.
    :return:
        A dictionary mapping logger names to their :class:`LogConfig`.
        The root logger is stored under ``None``.
    """
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')

    root = LogConfig(
        level=get_and_apply(
            log_config_spec, 'root-level', _parse_level,
            default=DEFAULT_ROOT_LOGGER_LEVEL
        ),
        output=get_and_apply(
            log_config_spec, 'root-output', _parse_output,
            default=StdLogOutput.STDERR
        ),
    )
    result: Dict[Optional[str], LogConfig] = {None: root}

    by_module = log_config_spec.get('by-module', {})
    if not isinstance(by_module, dict):
        raise ConfigurationError('logging.by-module should be a dict')
    for module, settings in by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        if not isinstance(settings, dict) or 'level' not in settings:
            raise ConfigurationError(
                f"Logging settings for '{module}' should be a dictionary "
                f"with a 'level' entry."
            )
        result[module] = LogConfig(
            level=_parse_level(settings['level']),
            output=get_and_apply(
                settings, 'output', _parse_output, default=root.output
            ),
        )
    return result
