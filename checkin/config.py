import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

APP_ENV = os.getenv("APP_ENV", "production").lower()
DEBUG = APP_ENV == "development"

DATABASE_PATH = os.getenv("DATABASE_PATH", "patient_checkin.db")

DATABASE_URL = os.getenv("DATABASE_URL", "")
DATABASE_MAX_CONNECTIONS = int(os.getenv("DATABASE_MAX_CONNECTIONS", "5"))
SEED_DEMO_PATIENTS = os.getenv("SEED_DEMO_PATIENTS", "false").lower() in ("1", "true", "yes", "on")

# "sql" (aiosqlite / asyncpg) or "memory"
STORE_BACKEND = os.getenv("STORE_BACKEND", "sql").lower()

# "binary" reports completed/incomplete, "tristate" adds partial
SUBMISSION_STATUS_MODE = os.getenv("SUBMISSION_STATUS_MODE", "binary").lower()

BASE_DIR = Path(__file__).resolve().parent.parent
UPLOAD_DIR = os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
MAX_UPLOAD_FILES = int(os.getenv("MAX_UPLOAD_FILES", "2"))

DEFAULT_WAIT_MINUTES = int(os.getenv("DEFAULT_WAIT_MINUTES", "20"))
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() in ("1", "true", "yes", "on")
FACILITY_NAME = os.getenv("FACILITY_NAME", "our healthcare facility")

# Wizard client
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:5001/api")
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "10"))
WIZARD_STATE_PATH = os.getenv("WIZARD_STATE_PATH", ".checkin_state.json")
