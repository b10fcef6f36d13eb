import os

from dotenv import load_dotenv

load_dotenv()

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
ORACLE_MAX_TOKENS = int(os.getenv("ORACLE_MAX_TOKENS", "512"))
# Seconds before an oracle call is abandoned and surfaced as unavailable
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "20"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Monthly spend ceiling in USD across every session
MONTHLY_USAGE_LIMIT = float(os.getenv("MONTHLY_USAGE_LIMIT", "20"))

JWT_SECRET = os.getenv("JWT_SECRET")
SESSION_EXPIRY_DAYS = int(os.getenv("SESSION_EXPIRY_DAYS", "14"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

HISTORY_LIMIT = 50
ORACLE_HISTORY_WINDOW = 10


def api_key_configured(key: str | None) -> bool:
    """True when a key is present and not the .env.example placeholder."""
    return bool(key) and key != "your-api-key-here"
