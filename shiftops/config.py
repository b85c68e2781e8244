import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shiftops.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Frontend base URL (CORS default)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Recurrence engine guards
# Hard cap on rule steps walked per expansion; hitting it flags the window as truncated
RECURRENCE_MAX_ITERATIONS = int(os.getenv("RECURRENCE_MAX_ITERATIONS", "1000"))
# Days scanned one at a time when looking for the next occurrence
NEXT_OCCURRENCE_SCAN_LIMIT = int(os.getenv("NEXT_OCCURRENCE_SCAN_LIMIT", "365"))

# Conflict detection expands recurring shifts this many days around the queried range
# so that occurrences moved into the range by a MODIFIED exception are still found
CONFLICT_SCAN_PADDING_DAYS = int(os.getenv("CONFLICT_SCAN_PADDING_DAYS", "60"))

# Listing pagination
SHIFTS_PAGE_LIMIT_DEFAULT = int(os.getenv("SHIFTS_PAGE_LIMIT_DEFAULT", "50"))
SHIFTS_PAGE_LIMIT_MAX = int(os.getenv("SHIFTS_PAGE_LIMIT_MAX", "100"))
