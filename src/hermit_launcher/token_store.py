"""Shared bearer token for the lifetime of the shared services.

The first session to start the services creates the token; every later
session reuses it verbatim until the services are torn down.
"""

import logging
import os
import secrets

from hermit_launcher.locking import FileLock

logger = logging.getLogger(__name__)

TOKEN_FILENAME = ".hermit-token"
TOKEN_PREFIX = "sk-hermit-"


def token_path(cache_dir: str) -> str:
    return os.path.join(cache_dir, TOKEN_FILENAME)


def get_or_create(cache_dir: str) -> str:
    """Return the cached token, creating and persisting one if absent."""
    os.makedirs(cache_dir, exist_ok=True)
    path = token_path(cache_dir)
    with FileLock(path + ".lock", timeout=30.0):
        try:
            with open(path) as f:
                token = f.read().strip()
            if token:
                return token
            logger.warning("Token file %s is empty, issuing a new token", path)
        except FileNotFoundError:
            pass

        token = f"{TOKEN_PREFIX}{secrets.token_hex(16)}"
        tmp_path = f"{path}.{os.getpid()}.tmp"
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token)
        os.replace(tmp_path, path)
        logger.debug("Issued new auth token at %s", path)
        return token


def remove(cache_dir: str) -> bool:
    """Delete the token file.  Returns whether one existed."""
    path = token_path(cache_dir)
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True
