import getpass
import os

import click

from pdfdecrypter.cli._ctx import CLIContext
from pdfdecrypter.cli._root import cli_root
from pdfdecrypter.cli.config import CLIConfig
from pdfdecrypter.cli.runtime import decrypter_exception_manager
from pdfdecrypter.cli.utils import logger, readable_file
from pdfdecrypter.decrypter import PdfDecrypter
from pdfdecrypter.pdf_utils.crypt import AuthStatus

__all__ = ['decrypt_with_password', 'verify_password']


decrypt_force_flag = click.option(
    '--force',
    help='ignore access restrictions (use at your own risk)',
    required=False,
    type=bool,
    is_flag=True,
    default=False,
)

password_option = click.option(
    '--password',
    help='password to decrypt the file with',
    required=False,
    type=str,
)


def _cli_config(ctx: click.Context) -> CLIConfig:
    ctx_obj: CLIContext = ctx.obj
    if ctx_obj is None or ctx_obj.config is None:
        return CLIConfig()
    return ctx_obj.config


def _open_encrypted(infile, password) -> PdfDecrypter:
    decrypter = PdfDecrypter()
    decrypter.open_file(infile)
    if decrypter.source.find_encrypt_dictionary() is None:
        raise click.ClickException("File is not encrypted.")
    if password is None:
        password = getpass.getpass(prompt='File password: ')
    if not decrypter.verify_password(password):
        raise click.ClickException("Password didn't match.")
    return decrypter


def default_output_path(infile: str, suffix: str) -> str:
    stem, _ = os.path.splitext(infile)
    return f'{stem}{suffix}.pdf'


def _deliver(data: bytes, outfile: str):
    if outfile == '-':
        stdout = click.get_binary_stream('stdout')
        stdout.write(data)
        stdout.flush()
    else:
        with open(outfile, 'wb') as outf:
            outf.write(data)
        logger.info(f"Wrote decrypted document to {outfile}.")


@cli_root.command(help='decrypt PDF files using a password', name='decrypt')
@click.argument('infile', type=readable_file)
@click.argument(
    'outfile',
    required=False,
    type=click.Path(writable=True, dir_okay=False, allow_dash=True),
)
@password_option
@decrypt_force_flag
@click.pass_context
def decrypt_with_password(ctx: click.Context, infile, outfile, password,
                          force):
    config = _cli_config(ctx)
    if outfile is None:
        outfile = default_output_path(infile, config.output_suffix)
    with decrypter_exception_manager():
        decrypter = _open_encrypted(infile, password)
        if decrypter.auth_status == AuthStatus.USER \
                and config.require_owner_password and not force:
            raise click.ClickException(
                "Password specified was the user password, not "
                "the owner password. Pass --force to decrypt the "
                "file anyway."
            )
        data = decrypter.decrypt()
        _deliver(data, outfile)


@cli_root.command(
    help='check a password without decrypting the file', name='verify'
)
@click.argument('infile', type=readable_file)
@password_option
def verify_password(infile, password):
    with decrypter_exception_manager():
        decrypter = _open_encrypted(infile, password)
        click.echo(decrypter.password_type.name.lower())
