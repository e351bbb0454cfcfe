from dataclasses import dataclass
from typing import Dict, Optional

import yaml

from pdfdecrypter.config.errors import ConfigurationError
from pdfdecrypter.config.logging import LogConfig, parse_logging_config

__all__ = ['CLIConfig', 'CLIRootConfig', 'parse_cli_config']


DEFAULT_OUTPUT_SUFFIX = '-decrypted'


@dataclass
class CLIConfig:
    """
    CLI configuration settings.
    """

    require_owner_password: bool = False
    """
    Refuse to decrypt documents with the user password unless ``--force``
    is passed.
    """

    output_suffix: str = DEFAULT_OUTPUT_SUFFIX
    """
    Suffix appended to the input file's stem to name the output file when
    no output file is given.
    """

    raw_config: Optional[dict] = None
    """
    The raw config data parsed into a Python dictionary.
    """


@dataclass(frozen=True)
class CLIRootConfig:
    """
    Config settings that are only relevant to the CLI root and are not exposed
    to subcommands.
    """

    config: CLIConfig
    """
    General CLI config.
    """

    log_config: Dict[Optional[str], LogConfig]
    """
    Per-module logging configuration. The keys in this dictionary are
    module names, the :class:`.LogConfig` values define the logging settings.

    The ``None`` key houses the configuration for the root logger.
    """


def parse_cli_config(yaml_str) -> CLIRootConfig:
    config_dict = yaml.safe_load(yaml_str) or {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError("Configuration should be a dictionary")
    log_config_spec = config_dict.get('logging', {})
    return CLIRootConfig(
        log_config=parse_logging_config(log_config_spec),
        config=CLIConfig(
            **process_config_dict(config_dict), raw_config=config_dict
        ),
    )


def process_config_dict(config_dict: dict) -> dict:
    decrypt_settings = config_dict.get('decrypt', {}) or {}
    if not isinstance(decrypt_settings, dict):
        raise ConfigurationError("decrypt settings should be a dictionary")

    require_owner_password = decrypt_settings.get(
        'require-owner-password', False
    )
    if not isinstance(require_owner_password, bool):
        raise ConfigurationError(
            "require-owner-password must be a boolean"
        )
    output_suffix = decrypt_settings.get('output-suffix', DEFAULT_OUTPUT_SUFFIX)
    if not isinstance(output_suffix, str):
        raise ConfigurationError("output-suffix must be a string")
    return dict(
        require_owner_password=require_owner_password,
        output_suffix=output_suffix,
    )
