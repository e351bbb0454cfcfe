from dataclasses import dataclass
from typing import Optional

from pdfdecrypter.cli.config import CLIConfig


@dataclass
class CLIContext:
    """
    Context object that holds the CLI settings gathered during a CLI
    invocation. This object is passed around as a ``click`` context object.
    """

    config: Optional[CLIConfig] = None
    """
    Values for CLI configuration settings.
    """

    verbose: bool = False
    """
    Whether the CLI runs in verbose mode.
    """
