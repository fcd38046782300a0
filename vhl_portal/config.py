"""Runtime configuration read from the environment."""

import os
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = str(PACKAGE_DIR / "templates")

DATABASE_URL = os.getenv("VHL_DATABASE_URL", "sqlite:///./vhl_portal.db")
SECRET_KEY = os.getenv("VHL_SECRET_KEY", "CHANGE_ME_TO_A_RANDOM_SECRET")
BCRYPT_ROUNDS = int(os.getenv("VHL_BCRYPT_ROUNDS") or 12)
LOG_LEVEL = (os.getenv("VHL_LOG_LEVEL") or "INFO").upper()

# Seeded on startup when missing
DEFAULT_ADMIN_EMAIL = os.getenv("VHL_ADMIN_EMAIL", "admin@vhlabroad.com")
DEFAULT_ADMIN_PASSWORD = os.getenv("VHL_ADMIN_PASSWORD", "admin123")
DEFAULT_BATCH_NAME = os.getenv("VHL_DEFAULT_BATCH", "General")
DEFAULT_ACCESS_DAYS = int(os.getenv("VHL_DEFAULT_ACCESS_DAYS") or 365)

# Exam rules
PASSING_RATIO = 0.4  # default passing_marks = floor(total_marks * 0.4)
STUDENT_PASS_PERCENTAGE = 50
ADMIN_PASS_PERCENTAGE = 40

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "[{levelname}] {asctime} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
}
