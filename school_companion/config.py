"""
Application configuration, read from the environment.

A `.env` file in the working directory is loaded first, so local overrides
don't need exported shell variables:

    SCHOOL_COMPANION_DATA_FILE=/path/to/data.json
    LOG_LEVEL=DEBUG
    LOG_FORMAT=json
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

# -------------------------------
# Fixed domain constants
# -------------------------------

MIN_GRADE = 0.0
MAX_GRADE = 10.0
PASSING_GRADE = 6.0
URGENT_DAYS = 7
EXPORT_VERSION = "2.0"


class Config:
    DATA_FILE = os.environ.get(
        "SCHOOL_COMPANION_DATA_FILE",
        str(BASE_DIR / "school_companion_data.json"),
    )

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
