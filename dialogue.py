"""Пошаговые диалоги администратора: /addsubject, /addcontent и загрузка файла.

Каждый чат имеет не больше одного активного диалога. Состояние диалога:
неизменяемый объект одного из классов ``Awaiting*``; он хранит только те поля,
которые уже собраны к этому шагу. Ответ администратора обрабатывается функцией
перехода для текущего состояния: она либо возвращает следующее состояние, либо
то же самое (ответ отклонён, можно повторить), либо ``None`` (диалог завершён).
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from catalog_client import CatalogError

logger = logging.getLogger(__name__)

# ------------------ ТЕКСТЫ ------------------
ADMIN_ONLY = "❌ This command is for admins only"
UPLOAD_ADMIN_ONLY = "❌ File upload is for admins only"
NO_SUBJECTS = "❌ No subjects available. Please add a subject first."
INVALID_SUBJECT = "❌ Invalid subject number. Please try again."
INVALID_TYPE = "❌ Invalid content type. Please try again."
EMPTY_TITLE = "❌ Title cannot be empty. Please enter the content title:"
UNEXPECTED_ERROR = "❌ An error occurred. Please try again."

CONTENT_TYPE_MENU: Dict[str, str] = {"1": "video", "2": "file", "3": "topic", "4": "quiz", "5": "tips"}
# «Study Material» хранится как обычный файл
UPLOAD_TYPE_MENU: Dict[str, str] = {"1": "video", "2": "file", "3": "file"}

UPLOAD_STATUS = "📤 Uploading file... {percent}%"
PROGRESS_STEP = 5


# ------------------ СОСТОЯНИЯ ------------------
Subject = Dict[str, Any]


@dataclass(frozen=True)
class UploadedFile:
    name: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class AwaitingSubjectName:
    command = "addsubject"
    step = 1


@dataclass(frozen=True)
class AwaitingSubjectDescription:
    name: str
    command = "addsubject"
    step = 2


@dataclass(frozen=True)
class AwaitingContentSubject:
    subjects: Tuple[Subject, ...]
    command = "addcontent"
    step = 1


@dataclass(frozen=True)
class AwaitingContentType:
    subject: Subject
    command = "addcontent"
    step = 2


@dataclass(frozen=True)
class AwaitingContentTitle:
    subject: Subject
    content_type: str
    command = "addcontent"
    step = 3


@dataclass(frozen=True)
class AwaitingContentDescription:
    subject: Subject
    content_type: str
    title: str
    command = "addcontent"
    step = 4


@dataclass(frozen=True)
class AwaitingUploadSubject:
    file: UploadedFile
    subjects: Tuple[Subject, ...]
    command = "upload"
    step = 1


@dataclass(frozen=True)
class AwaitingUploadType:
    file: UploadedFile
    subject: Subject
    command = "upload"
    step = 2


@dataclass(frozen=True)
class AwaitingUploadTitle:
    file: UploadedFile
    subject: Subject
    content_type: str
    command = "upload"
    step = 3


@dataclass(frozen=True)
class AwaitingUploadDescription:
    file: UploadedFile
    subject: Subject
    content_type: str
    title: str
    command = "upload"
    step = 4


# ------------------ ХРАНИЛИЩЕ ------------------
class DialogueStore:
    """chat_id -> состояние диалога, плюс блокировка на каждый чат.

    Хэндлеры telebot выполняются в пуле потоков, поэтому все изменения
    состояния одного чата делаются под его блокировкой.
    """

    def __init__(self):
        self._states: Dict[Any, Any] = {}
        # chat_id -> [блокировка, число потоков, которые её держат или ждут]
        self._locks: Dict[Any, list] = {}
        self._guard = threading.Lock()

    @contextmanager
    def locked(self, chat_id):
        with self._guard:
            entry = self._locks.setdefault(chat_id, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                # Чаты без диалога не держат блокировку в памяти
                if entry[1] == 0 and chat_id not in self._states:
                    del self._locks[chat_id]

    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, chat_id):
        return self._states.get(chat_id)

    def set(self, chat_id, state):
        self._states[chat_id] = state

    def pop(self, chat_id):
        return self._states.pop(chat_id, None)

    def __contains__(self, chat_id):
        return chat_id in self._states

    def __len__(self):
        return len(self._states)


# ------------------ ПРОГРЕСС ЗАГРУЗКИ ------------------
class ProgressReporter:
    """Обновляет одно статусное сообщение во время загрузки.

    Проценты только растут: устаревшие или повторные значения отбрасываются,
    промежуточные обновления идут с шагом не меньше PROGRESS_STEP.
    После ``finish`` сообщение больше не редактируется.
    """

    def __init__(self, messenger, chat_id, handle):
        self.messenger = messenger
        self.chat_id = chat_id
        self.handle = handle
        self.percent = 0
        self.finished = False
        self._lock = threading.Lock()

    def update(self, sent: int, total: int) -> None:
        if total <= 0:
            return
        percent = min(100, round(sent * 100 / total))
        with self._lock:
            if self.finished or percent <= self.percent:
                return
            # Не чаще одного редактирования на PROGRESS_STEP процентов
            if percent < 100 and percent - self.percent < PROGRESS_STEP:
                return
            self.percent = percent
            try:
                self.messenger.edit(self.chat_id, self.handle, UPLOAD_STATUS.format(percent=percent))
            except Exception as e:
                logger.warning(f"Не удалось обновить прогресс загрузки: {e}")

    def finish(self, text: str) -> bool:
        with self._lock:
            if self.finished:
                return False
            self.finished = True
            try:
                self.messenger.edit(self.chat_id, self.handle, text)
            except Exception as e:
                logger.warning(f"Не удалось изменить статус загрузки, отправляю новым сообщением: {e}")
                self.messenger.send(self.chat_id, text)
            return True


# ------------------ ДВИЖОК ------------------
def parse_choice(text: Optional[str], count: int) -> Optional[int]:
    """Номер пункта 1..count из ответа -> индекс с нуля, иначе None."""
    try:
        number = int((text or "").strip())
    except ValueError:
        return None
    if 1 <= number <= count:
        return number - 1
    return None


def subject_list(header: str, subjects) -> str:
    lines = [header, ""]
    lines += [f"{i}. {s['name']}" for i, s in enumerate(subjects, start=1)]
    return "\n".join(lines) + "\n\nPlease reply with the subject number:"


class DialogueEngine:
    """Ведёт диалоги администратора и отправляет итоговые команды в каталог.

    ``catalog``: объект с интерфейсом ``CatalogClient``; ``messenger`` умеет
    ``send(chat_id, text) -> handle`` и ``edit(chat_id, handle, text)``.
    """

    def __init__(self, catalog, messenger, admin_ids, admin_username, store=None):
        self.catalog = catalog
        self.messenger = messenger
        self.admin_ids = {str(a) for a in admin_ids}
        self.admin_username = admin_username
        self.store = store if store is not None else DialogueStore()
        self._transitions: Dict[type, Callable] = {
            AwaitingSubjectName: self._subject_name,
            AwaitingSubjectDescription: self._subject_description,
            AwaitingContentSubject: self._content_subject,
            AwaitingContentType: self._content_type,
            AwaitingContentTitle: self._content_title,
            AwaitingContentDescription: self._content_description,
            AwaitingUploadSubject: self._upload_subject,
            AwaitingUploadType: self._upload_type,
            AwaitingUploadTitle: self._upload_title,
            AwaitingUploadDescription: self._upload_description,
        }

    def is_admin(self, sender_id) -> bool:
        return str(sender_id) in self.admin_ids

    def state_of(self, chat_id):
        return self.store.get(chat_id)

    def _send(self, chat_id, text):
        return self.messenger.send(chat_id, text)

    # ------------------ КОМАНДЫ ------------------
    def start(self, chat_id, sender_id):
        if self.is_admin(sender_id):
            self._send(chat_id,
                       "👋 Welcome to Mechanical Aspirants Admin Bot!\n\n"
                       "🤖 Available Admin Commands:\n"
                       "📚 /addsubject - Add new subject\n"
                       "📝 /addcontent - Add content to subject\n"
                       "📁 /upload - Upload file with categorization\n"
                       "📊 /stats - View platform statistics\n"
                       "🚫 /cancel - Cancel the current operation")
        else:
            self._send(chat_id,
                       "👋 Welcome to Mechanical Aspirants!\n\n"
                       "This bot is for admin use only. "
                       "Please visit our website for learning resources.")

    def show_stats(self, chat_id):
        try:
            stats = self.catalog.get_stats()
        except CatalogError as e:
            logger.error(f"Не удалось получить статистику: {e}")
            self._send(chat_id, "❌ Failed to fetch statistics")
            return
        self._send(chat_id,
                   "📊 Platform Statistics:\n\n"
                   f"📚 Subjects: {stats['subjects']}\n"
                   f"🎥 Videos: {stats['videos']}\n"
                   f"📁 Files: {stats['files']}\n"
                   f"👥 Active Users: {stats['users']}")

    def upload_instructions(self, chat_id, sender_id):
        if not self.is_admin(sender_id):
            self._send(chat_id, ADMIN_ONLY)
            return
        self._send(chat_id,
                   "📁 File Upload\n\n"
                   "Please send the file you want to upload.\n\n"
                   "After sending the file, you will be asked to:\n"
                   "1. Select subject\n"
                   "2. Enter content type\n"
                   "3. Add title and description")

    def cancel(self, chat_id, sender_id):
        with self.store.locked(chat_id):
            state = self.store.pop(chat_id)
        if state is None:
            self._send(chat_id, "Nothing to cancel.")
        else:
            logger.info(f"Диалог {state.command} в чате {chat_id} отменён")
            self._send(chat_id, "🚫 Current operation cancelled.")

    def start_add_subject(self, chat_id, sender_id):
        if not self.is_admin(sender_id):
            self._send(chat_id, ADMIN_ONLY)
            return
        with self.store.locked(chat_id):
            self.store.set(chat_id, AwaitingSubjectName())
            self._send(chat_id, "📚 Adding new subject\n\nPlease enter the subject name:")

    def start_add_content(self, chat_id, sender_id):
        if not self.is_admin(sender_id):
            self._send(chat_id, ADMIN_ONLY)
            return
        with self.store.locked(chat_id):
            self.store.pop(chat_id)
            try:
                subjects = self.catalog.list_subjects()
            except CatalogError as e:
                logger.error(f"Не удалось получить предметы: {e}")
                self._send(chat_id, "❌ Failed to fetch subjects")
                return
            if not subjects:
                self._send(chat_id, NO_SUBJECTS)
                return
            self.store.set(chat_id, AwaitingContentSubject(tuple(subjects)))
            self._send(chat_id, subject_list("📝 Select a subject for adding content:", subjects))

    def receive_document(self, chat_id, sender_id, file_name, fetch: Callable[[], bytes]):
        """Файл от администратора всегда начинает загрузку заново."""
        if not self.is_admin(sender_id):
            self._send(chat_id, UPLOAD_ADMIN_ONLY)
            return
        with self.store.locked(chat_id):
            self.store.pop(chat_id)
            try:
                data = fetch()
                subjects = self.catalog.list_subjects()
            except Exception as e:
                logger.exception(f"Ошибка при получении файла {file_name}: {e}")
                self._send(chat_id, "❌ Failed to process file upload")
                return
            if not subjects:
                self._send(chat_id, NO_SUBJECTS)
                return
            upload = UploadedFile(name=file_name or "file", data=data)
            logger.info(f"Получен файл {upload.name} ({upload.size} байт) в чате {chat_id}")
            self.store.set(chat_id, AwaitingUploadSubject(upload, tuple(subjects)))
            self._send(chat_id, subject_list("📚 Select subject for file categorization:", subjects))

    # ------------------ ОТВЕТЫ ------------------
    def handle_text(self, chat_id, sender_id, text) -> bool:
        """Передаёт ответ активному диалогу. False, если диалога нет."""
        with self.store.locked(chat_id):
            state = self.store.get(chat_id)
            if state is None or text is None:
                return False
            if not self.is_admin(sender_id):
                self._send(chat_id, ADMIN_ONLY)
                return True

            transition = self._transitions[type(state)]
            try:
                new_state = transition(chat_id, state, text)
            except Exception:
                logger.exception(f"Ошибка в диалоге {state.command} (шаг {state.step}), чат {chat_id}")
                self.store.pop(chat_id)
                self._send(chat_id, UNEXPECTED_ERROR)
                return True

            if new_state is None:
                self.store.pop(chat_id)
            else:
                self.store.set(chat_id, new_state)
            return True

    # addsubject
    def _subject_name(self, chat_id, state, text):
        self._send(chat_id, "Please enter the subject description:")
        return AwaitingSubjectDescription(name=text)

    def _subject_description(self, chat_id, state, text):
        try:
            self.catalog.create_subject(state.name, text, created_by=self.admin_username)
        except CatalogError as e:
            logger.error(f"Не удалось создать предмет '{state.name}': {e}")
            self._send(chat_id, "❌ Failed to add subject")
            return None
        logger.info(f"Через бота создан предмет '{state.name}'")
        self._send(chat_id, f'✅ Subject "{state.name}" added successfully!')
        return None

    # addcontent
    def _content_subject(self, chat_id, state, text):
        index = parse_choice(text, len(state.subjects))
        if index is None:
            self._send(chat_id, INVALID_SUBJECT)
            return state
        self._send(chat_id,
                   "📝 Select content type:\n\n"
                   "1. Video\n"
                   "2. File\n"
                   "3. Topic\n"
                   "4. Quiz\n"
                   "5. Tips\n\n"
                   "Please reply with the content type number:")
        return AwaitingContentType(subject=state.subjects[index])

    def _content_type(self, chat_id, state, text):
        content_type = CONTENT_TYPE_MENU.get(text.strip())
        if content_type is None:
            self._send(chat_id, INVALID_TYPE)
            return state
        self._send(chat_id, "Please enter the content title:")
        return AwaitingContentTitle(subject=state.subject, content_type=content_type)

    def _content_title(self, chat_id, state, text):
        if not text.strip():
            self._send(chat_id, EMPTY_TITLE)
            return state
        self._send(chat_id, "Please enter the content description:")
        return AwaitingContentDescription(state.subject, state.content_type, title=text)

    def _content_description(self, chat_id, state, text):
        try:
            self.catalog.create_content(
                state.subject["id"], state.content_type, state.title, text,
                uploaded_by=self.admin_username,
            )
        except CatalogError as e:
            logger.error(f"Не удалось добавить материал '{state.title}': {e}")
            self._send(chat_id, "❌ Failed to add content")
            return None
        self._send(chat_id,
                   "✅ Content added successfully!\n\n"
                   f"Subject: {state.subject['name']}\n"
                   f"Type: {state.content_type}\n"
                   f"Title: {state.title}")
        return None

    # upload
    def _upload_subject(self, chat_id, state, text):
        index = parse_choice(text, len(state.subjects))
        if index is None:
            self._send(chat_id, INVALID_SUBJECT)
            return state
        self._send(chat_id,
                   "📝 Select content type for the file:\n\n"
                   "1. Video\n"
                   "2. File\n"
                   "3. Study Material\n\n"
                   "Please reply with the content type number:")
        return AwaitingUploadType(file=state.file, subject=state.subjects[index])

    def _upload_type(self, chat_id, state, text):
        content_type = UPLOAD_TYPE_MENU.get(text.strip())
        if content_type is None:
            self._send(chat_id, INVALID_TYPE)
            return state
        self._send(chat_id, "Please enter the title for this file:")
        return AwaitingUploadTitle(state.file, state.subject, content_type)

    def _upload_title(self, chat_id, state, text):
        self._send(chat_id, "Please enter a description for this file:")
        return AwaitingUploadDescription(state.file, state.subject, state.content_type, title=text)

    def _upload_description(self, chat_id, state, text):
        handle = self._send(chat_id, UPLOAD_STATUS.format(percent=0))
        reporter = ProgressReporter(self.messenger, chat_id, handle)
        try:
            self.catalog.upload_content(
                state.subject["id"], state.content_type, state.title, text,
                uploaded_by=self.admin_username,
                file_bytes=state.file.data,
                file_name=state.file.name,
                progress=reporter.update,
            )
        except Exception as e:
            logger.exception(f"Не удалось загрузить файл {state.file.name}: {e}")
            reporter.finish("❌ Failed to upload file")
            return None
        logger.info(f"Файл {state.file.name} загружен в предмет '{state.subject['name']}'")
        reporter.finish("✅ File uploaded successfully!\n\n"
                        f"Subject: {state.subject['name']}\n"
                        f"File: {state.title}\n"
                        f"Type: {state.content_type}")
        return None

