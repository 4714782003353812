# ============================================================
#  AuthentiScan — config.py
# ============================================================

import os

# ── Directory layout ─────────────────────────────────────────
# DATA_ROOT holds the scratch space for preview copies of the
# selected file. Nothing else is written to disk.
DATA_ROOT = os.environ.get("DATA_ROOT", ".")

TMP_DIR = os.path.join(DATA_ROOT, "tmp")

os.makedirs(TMP_DIR, exist_ok=True)

# ── Upload limits ─────────────────────────────────────────────
MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "200"))

# ── Sessions ─────────────────────────────────────────────────
# In-memory only; idle sessions are pruned and their preview
# files released.
SESSION_TTL_HOURS = float(os.environ.get("SESSION_TTL_HOURS", "12"))
SESSION_COOKIE    = os.environ.get("SESSION_COOKIE", "as_session")
