import os
from rich.console import Console
from functools import lru_cache


@lru_cache(maxsize=1)
def get_console() -> Console:
    """Get or create the shared Console instance.

    Progress goes to stderr so stdout stays usable by the calling build step.
    Set SIGNSTAGE_QUIET=1 to silence it.
    """
    return Console(stderr=True, quiet=os.getenv("SIGNSTAGE_QUIET") == "1")
