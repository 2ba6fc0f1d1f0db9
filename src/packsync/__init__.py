"""
packsync: manifest-driven content sync with verified self-updates.

Keeps a local directory tree in step with a remote file set described
by a JSON manifest of SHA-256 hashes, and checks for signed updates of
the tool itself.
"""

import os

__version__ = "0.1.0"
__author__ = "packsync"

PACKSYNC_HOME = os.environ.get("PACKSYNC_HOME", "~/.packsync")
