import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env(env_path: Optional[Path] = None) -> bool:
    """Load .env from the working directory if present.

    Variables already set in the process environment win over the file.
    Returns True when a file was loaded.
    """
    env_path = env_path or Path.cwd() / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(dotenv_path=env_path, override=False)


def first_env(environ: Optional[dict], *keys: str) -> str:
    """Return the first non-empty (stripped) value among `keys`."""
    environ = os.environ if environ is None else environ
    for key in keys:
        value = str(environ.get(key) or "").strip()
        if value:
            return value
    return ""
