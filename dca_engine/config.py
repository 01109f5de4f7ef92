"""Configuration for the DCA allocation engine and its HTTP shell."""

import os

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

# --- Case intake ---
CASE_ID_PREFIX: str = os.environ.get("CASE_ID_PREFIX", "FDX")
CASE_ID_START: int = int(os.environ.get("CASE_ID_START", "1000"))  # first issued id is START + 1

# --- Compliance: permitted contact window for calls (local hours, inclusive) ---
CONTACT_HOURS_START: int = int(os.environ.get("CONTACT_HOURS_START", "9"))
CONTACT_HOURS_END: int = int(os.environ.get("CONTACT_HOURS_END", "18"))

# --- Documents ---
DOCUMENT_PREVIEW_CHARS: int = int(os.environ.get("DOCUMENT_PREVIEW_CHARS", "200"))

# --- Background poller: SLA evaluation + retry of pending allocations ---
SLA_POLL_INTERVAL_SECONDS: int = int(os.environ.get("SLA_POLL_INTERVAL_SECONDS", "300"))
