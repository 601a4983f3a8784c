import logging

from common_functions import ERROR_TEXT, safe_reply, sender_of


def register_admin_handlers(bot, engine):
    """Команды администратора и приём файлов"""

    # ------------------ ДОБАВЛЕНИЕ ПРЕДМЕТА ------------------
    @bot.message_handler(commands=['addsubject'])
    def admin_add_subject(message):
        logging.info(f"/addsubject от {sender_of(message)}")
        try:
            engine.start_add_subject(message.chat.id, sender_of(message))
        except Exception as e:
            logging.error(f"Ошибка в admin_add_subject: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)

    # ------------------ ДОБАВЛЕНИЕ МАТЕРИАЛА ------------------
    @bot.message_handler(commands=['addcontent'])
    def admin_add_content(message):
        logging.info(f"/addcontent от {sender_of(message)}")
        try:
            engine.start_add_content(message.chat.id, sender_of(message))
        except Exception as e:
            logging.error(f"Ошибка в admin_add_content: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)

    # ------------------ ЗАГРУЗКА ФАЙЛА ------------------
    @bot.message_handler(commands=['upload'])
    def admin_upload(message):
        try:
            engine.upload_instructions(message.chat.id, sender_of(message))
        except Exception as e:
            logging.error(f"Ошибка в admin_upload: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)

    @bot.message_handler(content_types=['document'])
    def admin_document(message):
        document = message.document
        logging.info(f"Файл {document.file_name} от {sender_of(message)}")

        def fetch():
            file_info = bot.get_file(document.file_id)
            return bot.download_file(file_info.file_path)

        try:
            engine.receive_document(message.chat.id, sender_of(message), document.file_name, fetch)
        except Exception as e:
            logging.error(f"Ошибка при приёме файла: {e}")
            safe_reply(bot, message.chat.id, ERROR_TEXT)
