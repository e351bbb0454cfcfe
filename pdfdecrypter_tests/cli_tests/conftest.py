import logging

import pytest
import yaml
from click.testing import CliRunner

from pdfdecrypter_tests.samples import AES_128

INPUT_PATH = 'input.pdf'
DECRYPTED_OUTPUT_PATH = 'output.pdf'


def _const(v):
    def f(*_args, **_kwargs):
        return v

    return f


# cli_runner is autouse to ensure it gets priority in the dependency graph
@pytest.fixture(scope="function", autouse=True)
def cli_runner():
    runner = CliRunner()
    with runner.isolated_filesystem():
        with open(INPUT_PATH, 'wb') as outf:
            outf.write(AES_128)
        yield runner


@pytest.fixture(autouse=True)
def reset_logging():
    # the CLI attaches handlers to the loggers it configures
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
    root_logger.setLevel(level)


def _write_config(config: dict, fname: str = 'pdfdecrypter.yml'):
    with open(fname, 'w') as outf:
        yaml.dump(config, outf)
