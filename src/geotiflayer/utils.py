"""Small helpers shared by the command-line tools."""
from . import config


def vprint(text, level=0):
    """Print text if verbose mode is enabled.

    Parameters
    ----------
    text : str
        Text to print.
    level : int, optional
        Minimum verbosity level required, by default 0.
    """
    verbose = config.settings.get("verbose", False)
    if verbose and int(verbose) > level:
        print(text)
