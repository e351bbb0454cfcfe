import logging
from typing import Optional

import click

from pdfdecrypter import __version__
from pdfdecrypter.cli._ctx import CLIContext
from pdfdecrypter.cli.config import CLIRootConfig, parse_cli_config
from pdfdecrypter.cli.runtime import DEFAULT_CONFIG_FILE, logging_setup
from pdfdecrypter.config.errors import ConfigurationError
from pdfdecrypter.config.logging import LogConfig, parse_logging_config

__all__ = ['cli_root']


@click.group()
@click.version_option(prog_name='pdfdecrypter', version=__version__)
@click.option(
    '--config',
    help=(
        'YAML file to load configuration from '
        f'[default: {DEFAULT_CONFIG_FILE}]'
    ),
    required=False,
    type=click.File('r'),
)
@click.option(
    '--verbose',
    help='Run in verbose mode',
    required=False,
    default=False,
    type=bool,
    is_flag=True,
)
@click.pass_context
def _root(ctx: click.Context, config, verbose):
    config_text = None
    if config is None:
        try:
            with open(DEFAULT_CONFIG_FILE, 'r') as f:
                config_text = f.read()
            config = DEFAULT_CONFIG_FILE
        except FileNotFoundError:
            pass
        except IOError as e:
            raise click.ClickException(
                f"Failed to read {DEFAULT_CONFIG_FILE}: {str(e)}"
            )
    else:
        try:
            config_text = config.read()
        except IOError as e:
            raise click.ClickException(
                f"Failed to read configuration: {str(e)}",
            )

    ctx.ensure_object(CLIContext)
    ctx_obj: CLIContext = ctx.obj
    ctx_obj.verbose = verbose
    cfg: Optional[CLIRootConfig] = None
    try:
        if config_text is not None:
            cfg = parse_cli_config(config_text)
            ctx_obj.config = cfg.config
            log_config = cfg.log_config
        else:
            # grab the default
            log_config = parse_logging_config({})
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration error: {e.msg}")

    if verbose:
        # override the root logger's logging level, but preserve the output
        root_logger_config = log_config[None]
        log_config[None] = LogConfig(
            level=logging.DEBUG, output=root_logger_config.output
        )

    logging_setup(log_config, verbose)

    if verbose:
        logging.debug("Running with --verbose")
    if cfg is not None:
        logging.debug(f'Finished reading configuration from {config}.')
    else:
        logging.debug('There was no configuration to parse.')


cli_root: click.Group = _root
