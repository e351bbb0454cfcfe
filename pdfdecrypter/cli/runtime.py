import logging
import sys
from contextlib import contextmanager
from typing import Dict, Optional

import click

from pdfdecrypter.cli.utils import logger
from pdfdecrypter.config.logging import LogConfig, LogOutput, StdLogOutput
from pdfdecrypter.pdf_utils import misc

LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class NoStackTraceFormatter(logging.Formatter):
    """
    Formatter that leaves out tracebacks, for console output outside of
    verbose mode.
    """

    def formatException(self, ei) -> str:
        return ""


def _make_handler(output: LogOutput, verbose: bool) -> logging.Handler:
    formatter_class = logging.Formatter
    if output == StdLogOutput.STDOUT:
        handler = logging.StreamHandler(sys.stdout)
    elif output == StdLogOutput.STDERR:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(output)
    if isinstance(output, StdLogOutput) and not verbose:
        formatter_class = NoStackTraceFormatter
    handler.setFormatter(formatter_class(LOG_FORMAT_STRING))
    return handler


def logging_setup(log_configs: Dict[Optional[str], LogConfig],
                  verbose: bool):
    """
    Apply the logging configuration.

    Every configured logger gets its level. A logger that writes to the
    same output as the root logger gets no handler of its own, and its
    records propagate to the root logger's handler. Other outputs get one
    handler each, shared between the loggers that use it.

    :param log_configs:
        Logging configuration by logger name, with ``None`` for the root
        logger.
    :param verbose:
        Include tracebacks in console output.
    """
    root_config = log_configs.get(None)
    handlers: Dict[LogOutput, logging.Handler] = {}
    for module, log_config in log_configs.items():
        module_logger = logging.getLogger(module)
        module_logger.setLevel(log_config.level)
        if module is not None and root_config is not None \
                and log_config.output == root_config.output:
            continue
        try:
            handler = handlers[log_config.output]
        except KeyError:
            handler = handlers[log_config.output] = _make_handler(
                log_config.output, verbose
            )
        module_logger.addHandler(handler)


@contextmanager
def decrypter_exception_manager():
    msg = exception = None
    try:
        yield
    except click.ClickException:
        raise
    except misc.AuthenticationError as e:
        exception = e
        msg = "Password didn't match."
    except misc.PdfReadError as e:
        exception = e
        msg = f"Failed to read PDF file: {e.msg}"
    except misc.PdfWriteError as e:
        exception = e
        msg = f"Failed to write PDF file: {e.msg}"
    except misc.UnsupportedFeatureError as e:
        exception = e
        msg = f"Unsupported PDF feature: {e.msg}"
    except misc.DecryptionUnavailableError as e:
        exception = e
        msg = f"Failed to decrypt PDF file: {e.msg}"
    except Exception as e:
        exception = e
        msg = "Generic processing error."

    if exception is not None:
        logger.error(msg, exc_info=exception)
        raise click.ClickException(msg)


DEFAULT_CONFIG_FILE = 'pdfdecrypter.yml'
