# etl/config.py
import os

from api.config import DB

# dreams picked up per batch run
REANALYZE_LIMIT = int(os.getenv("REANALYZE_LIMIT", "20"))

# delay between model calls (sec)
REANALYZE_DELAY_SEC = float(os.getenv("REANALYZE_DELAY_SEC", "1.5"))

# minimum dream age before a batch run picks it up (sec)
REANALYZE_MIN_AGE_SEC = int(os.getenv("REANALYZE_MIN_AGE_SEC", "600"))

__all__ = ["DB", "REANALYZE_LIMIT", "REANALYZE_DELAY_SEC", "REANALYZE_MIN_AGE_SEC"]
