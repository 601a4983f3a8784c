import logging

import admin_functions
import config
from common_functions import (
    ERROR_TEXT, create_bot, create_engine_for, safe_reply, sender_of, set_bot_commands,
)


def register_handlers(bot, engine):
    """Регистрирует все хэндлеры; диалоговый обработчик текста идёт последним."""

    # ------------------ СТАРТ ------------------
    @bot.message_handler(commands=['start'])
    def start_handler(message):
        logging.info(f"/start от {sender_of(message)}")
        try:
            engine.start(message.chat.id, sender_of(message))
        except Exception as e:
            logging.error(f"Ошибка при отправке приветствия: {e}")

    # ------------------ СТАТИСТИКА ------------------
    @bot.message_handler(commands=['stats'])
    def stats_handler(message):
        logging.info(f"/stats от {sender_of(message)}")
        try:
            engine.show_stats(message.chat.id)
        except Exception as e:
            logging.error(f"Ошибка в stats_handler: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)

    # ------------------ ОТМЕНА ------------------
    @bot.message_handler(commands=['cancel'])
    def cancel_handler(message):
        try:
            engine.cancel(message.chat.id, sender_of(message))
        except Exception as e:
            logging.error(f"Ошибка в cancel_handler: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)

    admin_functions.register_admin_handlers(bot, engine)

    # ------------------ ОТВЕТЫ В ДИАЛОГАХ ------------------
    @bot.message_handler(content_types=['text'])
    def dialogue_handler(message):
        """Ответы на шаги /addsubject, /addcontent и загрузки файла"""
        try:
            if not engine.handle_text(message.chat.id, sender_of(message), message.text):
                logging.debug(f"Сообщение вне диалога от {sender_of(message)} проигнорировано")
        except Exception as e:
            logging.error(f"Ошибка в обработчике диалога: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)


# ------------------ СТАРТ БОТА ------------------
if __name__ == "__main__":
    if not config.BOT_TOKEN:
        raise SystemExit("TELEGRAM_BOT_TOKEN не задан")
    bot = create_bot(config.BOT_TOKEN)
    register_handlers(bot, create_engine_for(bot))
    set_bot_commands(bot)
    logging.info("🤖 Mechanical Aspirants Telegram Bot запущен и ожидает сообщений...")
    bot.infinity_polling()
