import getpass
import logging
import os

import pytest

from pdfdecrypter.cli import cli_root
from pdfdecrypter.pdf_utils.document import Document
from pdfdecrypter_tests import samples
from pdfdecrypter_tests.cli_tests.conftest import (
    DECRYPTED_OUTPUT_PATH,
    INPUT_PATH,
    _const,
    _write_config,
)


def _assert_decrypted(fname):
    with open(fname, 'rb') as inf:
        doc = Document(inf.read())
    assert doc.find_encrypt_dictionary() is None
    assert doc.get_object(4).stream == samples.CONTENT


@pytest.mark.parametrize(
    'password', [samples.OWNER_PASSWORD, samples.USER_PASSWORD]
)
def test_decrypt(cli_runner, password):
    result = cli_runner.invoke(
        cli_root,
        [
            'decrypt', '--password', password,
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert not result.exception, result.output
    _assert_decrypted(DECRYPTED_OUTPUT_PATH)


def test_decrypt_default_output_name(cli_runner):
    result = cli_runner.invoke(
        cli_root,
        ['decrypt', '--password', samples.OWNER_PASSWORD, INPUT_PATH],
    )
    assert not result.exception, result.output
    _assert_decrypted('input-decrypted.pdf')


def test_decrypt_output_suffix_from_config(cli_runner):
    _write_config({'decrypt': {'output-suffix': '.plain'}})
    result = cli_runner.invoke(
        cli_root,
        ['decrypt', '--password', samples.OWNER_PASSWORD, INPUT_PATH],
    )
    assert not result.exception, result.output
    _assert_decrypted('input.plain.pdf')


def test_decrypt_to_stdout(cli_runner):
    result = cli_runner.invoke(
        cli_root,
        ['decrypt', '--password', samples.OWNER_PASSWORD, INPUT_PATH, '-'],
    )
    assert not result.exception, result.output
    doc = Document(result.stdout_bytes)
    assert doc.get_object(4).stream == samples.CONTENT


def test_decrypt_password_prompt(cli_runner, monkeypatch):
    monkeypatch.setattr(getpass, 'getpass', _const(samples.USER_PASSWORD))
    result = cli_runner.invoke(
        cli_root, ['decrypt', INPUT_PATH, DECRYPTED_OUTPUT_PATH]
    )
    assert not result.exception, result.output
    _assert_decrypted(DECRYPTED_OUTPUT_PATH)


def test_decrypt_wrong_password(cli_runner):
    result = cli_runner.invoke(
        cli_root,
        [
            'decrypt', '--password', samples.WRONG_PASSWORD,
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert result.exit_code == 1
    assert "Password didn't match." in result.output
    assert not os.path.exists(DECRYPTED_OUTPUT_PATH)


def test_decrypt_not_encrypted(cli_runner):
    with open(INPUT_PATH, 'wb') as outf:
        outf.write(samples.PLAIN)
    result = cli_runner.invoke(
        cli_root,
        ['decrypt', '--password', 'x', INPUT_PATH, DECRYPTED_OUTPUT_PATH],
    )
    assert result.exit_code == 1
    assert "File is not encrypted." in result.output


def test_decrypt_garbage(cli_runner):
    with open(INPUT_PATH, 'wb') as outf:
        outf.write(b'this is not a PDF file')
    result = cli_runner.invoke(
        cli_root,
        ['decrypt', '--password', 'x', INPUT_PATH, DECRYPTED_OUTPUT_PATH],
    )
    assert result.exit_code == 1
    assert "Failed to read PDF file" in result.output


def test_decrypt_missing_input(cli_runner):
    result = cli_runner.invoke(
        cli_root, ['decrypt', '--password', 'x', 'nonexistent.pdf']
    )
    assert result.exit_code == 2


def test_decrypt_require_owner_password(cli_runner):
    _write_config({'decrypt': {'require-owner-password': True}})
    result = cli_runner.invoke(
        cli_root,
        [
            'decrypt', '--password', samples.USER_PASSWORD,
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert result.exit_code == 1
    assert "not the owner password" in result.output
    assert not os.path.exists(DECRYPTED_OUTPUT_PATH)

    result = cli_runner.invoke(
        cli_root,
        [
            'decrypt', '--password', samples.USER_PASSWORD, '--force',
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert not result.exception, result.output
    _assert_decrypted(DECRYPTED_OUTPUT_PATH)


def test_decrypt_owner_password_with_restriction(cli_runner):
    _write_config({'decrypt': {'require-owner-password': True}})
    result = cli_runner.invoke(
        cli_root,
        [
            'decrypt', '--password', samples.OWNER_PASSWORD,
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert not result.exception, result.output
    _assert_decrypted(DECRYPTED_OUTPUT_PATH)


def test_explicit_config_file(cli_runner):
    _write_config(
        {'decrypt': {'require-owner-password': True}}, fname='custom.yml'
    )
    result = cli_runner.invoke(
        cli_root,
        [
            '--config', 'custom.yml', 'decrypt',
            '--password', samples.USER_PASSWORD,
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert result.exit_code == 1
    assert "not the owner password" in result.output


def test_broken_config(cli_runner):
    _write_config({'decrypt': {'require-owner-password': 'yes please'}})
    result = cli_runner.invoke(
        cli_root,
        ['decrypt', '--password', samples.OWNER_PASSWORD, INPUT_PATH],
    )
    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_verbose(cli_runner):
    result = cli_runner.invoke(
        cli_root,
        [
            '--verbose', 'decrypt', '--password', samples.OWNER_PASSWORD,
            INPUT_PATH, DECRYPTED_OUTPUT_PATH,
        ],
    )
    assert not result.exception, result.output
    assert logging.getLogger().level == logging.DEBUG
    _assert_decrypted(DECRYPTED_OUTPUT_PATH)


@pytest.mark.parametrize('password,expected', [
    (samples.OWNER_PASSWORD, 'owner'),
    (samples.USER_PASSWORD, 'user'),
])
def test_verify(cli_runner, password, expected):
    result = cli_runner.invoke(
        cli_root, ['verify', '--password', password, INPUT_PATH]
    )
    assert not result.exception, result.output
    assert result.stdout.strip() == expected


def test_verify_wrong_password(cli_runner):
    result = cli_runner.invoke(
        cli_root, ['verify', '--password', samples.WRONG_PASSWORD, INPUT_PATH]
    )
    assert result.exit_code == 1
    assert "Password didn't match." in result.output
