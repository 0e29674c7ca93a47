"""``.env`` loading for teamwire processes.

The leader and every isolated worker load the same file, so a worker started
in a tmux pane sees the settings of the leader that spawned it.
"""

import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv

ENV_FILE_VAR = "TEAMWIRE_ENV_FILE"

_loaded_from: Optional[str] = None
_attempted = False


def load_env(path: Optional[str] = None) -> Optional[str]:
    """Load ``.env`` once without overriding the real environment.

    ``path`` (or ``$TEAMWIRE_ENV_FILE``) wins over the upward search from
    the working directory. Returns the file that was loaded, if any.
    """
    global _loaded_from, _attempted
    if _attempted and path is None:
        return _loaded_from
    dotenv_path = path or os.getenv(ENV_FILE_VAR) or find_dotenv(usecwd=True)
    if dotenv_path and os.path.isfile(dotenv_path):
        load_dotenv(dotenv_path, override=False)
        _loaded_from = dotenv_path
    _attempted = True
    return _loaded_from


def getenv(key: str, default: Optional[str] = None) -> Optional[str]:
    load_env()
    return os.getenv(key, default)
