import io
import logging
import os
import time

logger = logging.getLogger(__name__)


class StoredFile:
    def __init__(self, ref, filename, size):
        self.ref = ref
        self.filename = filename
        self.size = size


class LocalFileStorage:
    """Хранит файлы на диске и отдаёт их через /uploads."""

    def __init__(self, directory, public_prefix="/uploads"):
        self.directory = directory
        self.public_prefix = public_prefix.rstrip("/")

    def save(self, data, original_name):
        os.makedirs(self.directory, exist_ok=True)
        safe_name = os.path.basename(original_name) or "file"
        filename = f"{int(time.time() * 1000)}-{safe_name}"
        with open(os.path.join(self.directory, filename), "wb") as f:
            f.write(data)
        logger.info(f"Файл сохранён локально: {filename} ({len(data)} байт)")
        return StoredFile(f"{self.public_prefix}/{filename}", filename, len(data))

    def download_url(self, ref):
        return ref


class TelegramFileStorage:
    """Хранит файлы в служебном чате Telegram; ссылкой служит file_id."""

    def __init__(self, bot, chat_id):
        self.bot = bot
        self.chat_id = chat_id

    def save(self, data, original_name):
        document = io.BytesIO(data)
        document.name = original_name
        message = self.bot.send_document(self.chat_id, document, visible_file_name=original_name)
        file_id = message.document.file_id
        logger.info(f"Файл {original_name} отправлен в хранилище Telegram: {file_id}")
        return StoredFile(file_id, original_name, len(data))

    def download_url(self, ref):
        return self.bot.get_file_url(ref)
