import logging
from telebot import TeleBot, types

import config
from catalog_client import CatalogClient
from dialogue import DialogueEngine

# ------------------ ЛОГИРОВАНИЕ ------------------
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(levelname)s - %(message)s'
)

ERROR_TEXT = "❌ An error occurred. Please try again."

BOT_COMMANDS = [
    ("start", "Start the bot"),
    ("addsubject", "Add new subject (Admin only)"),
    ("addcontent", "Add content to subject (Admin only)"),
    ("upload", "Upload file (Admin only)"),
    ("stats", "View platform statistics"),
    ("cancel", "Cancel the current operation"),
]


# ------------------ БОТ ------------------
def create_bot(token, threaded=True):
    return TeleBot(token, threaded=threaded, num_threads=4)


def set_bot_commands(bot):
    """Публикует список команд в меню Telegram"""
    try:
        bot.set_my_commands([types.BotCommand(name, description) for name, description in BOT_COMMANDS])
    except Exception as e:
        logging.error(f"Не удалось установить команды бота: {e}")


class TelegramMessenger:
    """Отправка и редактирование сообщений через TeleBot"""

    def __init__(self, bot):
        self.bot = bot

    def send(self, chat_id, text):
        return self.bot.send_message(chat_id, text).message_id

    def edit(self, chat_id, message_id, text):
        self.bot.edit_message_text(text, chat_id=chat_id, message_id=message_id)


def create_engine_for(bot, catalog=None):
    """Движок диалогов с клиентом бэкенда из конфигурации"""
    if catalog is None:
        catalog = CatalogClient(
            config.BACKEND_URL,
            config.ADMIN_USERNAME,
            config.ADMIN_PASSWORD,
            timeout=config.REQUEST_TIMEOUT,
        )
    return DialogueEngine(catalog, TelegramMessenger(bot), config.ADMIN_IDS, config.ADMIN_USERNAME)


# ------------------ ОБЩИЕ ФУНКЦИИ ------------------
def sender_of(message):
    return message.from_user.id if message.from_user else None


def safe_reply(bot, chat_id, text):
    """Последняя попытка сообщить об ошибке"""
    try:
        bot.send_message(chat_id, text)
    except Exception as e:
        logging.error(f"Не удалось отправить сообщение в чат {chat_id}: {e}")
