from pdfdecrypter.cli.commands import cli_root

__all__ = ['launch', 'cli_root']


def launch():
    cli_root(prog_name='pdfdecrypter')
