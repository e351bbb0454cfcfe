from pdfdecrypter.cli._root import cli_root
from pdfdecrypter.cli.commands.crypt import *

__all__ = ['cli_root']
