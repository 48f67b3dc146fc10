"""
tests/conftest.py — Shared test setup.

Points the JSONL event logger at a throwaway directory before any
pictovoice module creates it.
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("PICTOVOICE_LOG_DIR", tempfile.mkdtemp(prefix="pictovoice-logs-"))
