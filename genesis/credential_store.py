"""
genesis/credential_store.py
-----------------------------------------------------------------------------
Persisted storage for the single opaque API key.

The service holds exactly one credential.  It is read from disk once, when
the store is constructed (process start), and written back whenever the
user updates it.  Nothing here validates the key; the model API is the only
judge of whether it works.

Precedence
----------
A key supplied through the ``GEMINI_API_KEY`` environment variable (or a
``.env`` file) always wins over the stored one.  This lets a deployment pin
a key without touching the per-user file.

Environment variables
---------------------
GENESIS_CREDENTIAL_FILE – Where the stored key lives
                          (default: ``~/.genesis/api_key``).
GEMINI_API_KEY          – Deployment-wide key overriding the stored one.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_FILE = Path(
    os.getenv("GENESIS_CREDENTIAL_FILE", str(Path.home() / ".genesis" / "api_key"))
).expanduser()

_ENV_KEY = "GEMINI_API_KEY"


class CredentialStore:
    """
    A single persisted string with ``get()`` / ``set(value)`` access.

    Parameters
    ----------
    path : File holding the stored key.  Missing file means "no key".
    """

    def __init__(self, path: Path = DEFAULT_CREDENTIAL_FILE) -> None:
        self.path = Path(path)
        self._stored = self._read()

    def _read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""
        except OSError as exc:
            logger.warning("Could not read credential file %s: %s", self.path, exc)
            return ""

    def get(self) -> str:
        """Return the effective key, or ``""`` when none is configured."""
        return os.getenv(_ENV_KEY, "").strip() or self._stored

    def set(self, value: str) -> None:
        """
        Persist ``value`` as the stored key.

        Whitespace is stripped.  A blank value removes the stored key.

        Raises
        ------
        OSError : If the file cannot be written.
        """
        value = value.strip()
        if value:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(value, encoding="utf-8")
            # The key is a secret; keep it owner-readable only.
            self.path.chmod(0o600)
        else:
            self.path.unlink(missing_ok=True)
        self._stored = value
        logger.info("Credential %s.", "updated" if value else "cleared")

    @property
    def is_configured(self) -> bool:
        return bool(self.get())
