import os
import sys

# Настройки до импорта config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:TEST-TOKEN"
os.environ["ADMIN_ID"] = "6056498996"
os.environ["ADMIN_IDS"] = "6056498996"
os.environ["ADMIN_USERNAME"] = "nk28"
os.environ["ADMIN_PASSWORD"] = "nom"
os.environ.pop("STORAGE_CHAT_ID", None)

# Добавляем корень проекта в путь, чтобы видеть модули
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
