import os
from dotenv import load_dotenv

# ------------------ ОКРУЖЕНИЕ ------------------
load_dotenv()

# ------------------ БОТ ------------------
BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
ADMIN_ID = os.getenv("ADMIN_ID", "6056498996")
ADMIN_IDS = [int(x) for x in os.getenv("ADMIN_IDS", ADMIN_ID).split(",") if x.strip()]
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000").rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))

# ------------------ АДМИНИСТРАТОР ------------------
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "nk28")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "nom")
ADMIN_TELEGRAM_ID = os.getenv("ADMIN_TELEGRAM_ID", ADMIN_ID)

# ------------------ БЭКЕНД ------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///mechanical_aspirants.db")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "86400"))
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
STORAGE_CHAT_ID = os.getenv("STORAGE_CHAT_ID")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
