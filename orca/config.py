import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Database settings (SQLite file next to the package unless overridden)
DB_FILE = os.path.join(BASE_DIR, '..', 'db.sqlite')
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.abspath(DB_FILE)}")
SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

# Model and LLM settings
MODEL_NAME = os.getenv("LLM_MODEL", "llama3")
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_TIMEOUT = int(os.getenv("OLLAMA_TIMEOUT", 60))
SYSTEM_PROMPT = os.getenv(
    "SYSTEM_PROMPT",
    "You are Blue Orca AI, a friendly and concise assistant. "
    "Answer the user's latest message using the conversation so far.",
)

# Relay settings
RELAY_MAX_SECONDS = int(os.getenv("RELAY_MAX_SECONDS", 300))
RELAY_SESSION_LOCK = os.getenv("RELAY_SESSION_LOCK", "0") == "1"
RELAY_LOCK_TIMEOUT = float(os.getenv("RELAY_LOCK_TIMEOUT", 30))
DEFAULT_CHAT_TITLE = "New Chat"

# Auth settings
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = "HS256"
TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", 7))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", 300))

# Email settings (no credentials -> codes are only logged)
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", 465))
MAIL_SENDER_NAME = os.getenv("MAIL_SENDER_NAME", "Blue Orca AI")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
