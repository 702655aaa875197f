import os

from dotenv import load_dotenv

load_dotenv()


DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///monthly_ledger.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

APP_LOG_LEVEL = os.getenv("APP_LOG_LEVEL", "INFO")
THIRD_PARTY_LOG_LEVEL = os.getenv("THIRD_PARTY_LOG_LEVEL", "WARNING")
LOG_FILE = os.getenv("LOG_FILE")
