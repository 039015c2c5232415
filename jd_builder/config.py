import os
from dotenv import load_dotenv

load_dotenv()

# --- Key Rotation ---
KEY_ERROR_THRESHOLD = int(os.getenv("KEY_ERROR_THRESHOLD", "3"))
KEY_COOLDOWN_SECONDS = float(os.getenv("KEY_COOLDOWN_SECONDS", "60"))
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GEMINI_API_KEY_2", "GEMINI_API_KEY_3")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
CIRCUIT_FAILURE_THRESHOLD = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "3"))
CIRCUIT_RESET_SECONDS = float(os.getenv("CIRCUIT_RESET_SECONDS", "30"))

# --- Workers ---
DEFAULT_CHUNK_SIZE = 50000
WORKER_YIELD_INTERVAL = float(os.getenv("WORKER_YIELD_INTERVAL", "0"))
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB
WORKER_POOL_SIZE = int(os.getenv("WORKER_POOL_SIZE", "2"))
WORKER_TASK_TIMEOUT = float(os.getenv("WORKER_TASK_TIMEOUT", "300"))

# --- Security ---
SECRET_KEY = os.environ.get("SECRET_KEY", "a_very_secret_and_insecure_default_key_for_dev")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

# --- Database ---
MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "jd_builder_db")

# --- Logging / Error tracking ---
LOG_FILE = os.getenv("LOG_FILE", "jd_builder.log")
ERROR_WEBHOOK_URL = os.getenv("ERROR_WEBHOOK_URL")
ERROR_WEBHOOK_TIMEOUT = 10

# Testing
TESTING = os.environ.get("TESTING", "False").lower() == "true"
