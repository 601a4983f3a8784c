import pytest
from unittest.mock import MagicMock

from catalog_client import CatalogError
from dialogue import (
    ADMIN_ONLY,
    INVALID_SUBJECT,
    INVALID_TYPE,
    NO_SUBJECTS,
    UNEXPECTED_ERROR,
    UPLOAD_ADMIN_ONLY,
    AwaitingContentSubject,
    AwaitingContentType,
    AwaitingSubjectDescription,
    AwaitingUploadSubject,
    DialogueEngine,
    ProgressReporter,
    parse_choice,
)

ADMIN = 6056498996
STRANGER = 42
CHAT = 1001

SUBJECTS = [{"id": "s1", "name": "Thermodynamics"}, {"id": "s2", "name": "Fluid Mechanics"}]


class FakeMessenger:
    def __init__(self):
        self.sent = []
        self.edits = []
        self._next_id = 0

    def send(self, chat_id, text):
        self._next_id += 1
        self.sent.append((chat_id, text))
        return self._next_id

    def edit(self, chat_id, message_id, text):
        self.edits.append((chat_id, message_id, text))

    @property
    def texts(self):
        return [text for _, text in self.sent]


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def catalog():
    mock = MagicMock()
    mock.list_subjects.return_value = list(SUBJECTS)
    return mock


@pytest.fixture
def engine(catalog, messenger):
    return DialogueEngine(catalog, messenger, admin_ids=[ADMIN], admin_username="nk28")


def reply(engine, *texts, chat_id=CHAT, sender=ADMIN):
    for text in texts:
        engine.handle_text(chat_id, sender, text)


def start_upload(engine, data=b"file-bytes", name="notes.pdf"):
    engine.receive_document(CHAT, ADMIN, name, lambda: data)


# ------------------ БЕЗ ДИАЛОГА ------------------
def test_text_without_dialogue_is_ignored(engine, messenger, catalog):
    assert engine.handle_text(CHAT, ADMIN, "hello") is False
    assert messenger.sent == []
    assert engine.state_of(CHAT) is None
    assert catalog.method_calls == []


def test_parse_choice():
    assert parse_choice("1", 2) == 0
    assert parse_choice(" 2 ", 2) == 1
    for bad in ("0", "3", "abc", "", None, "1.5", "-1"):
        assert parse_choice(bad, 2) is None


# ------------------ /addsubject ------------------
def test_add_subject_flow(engine, catalog, messenger):
    engine.start_add_subject(CHAT, ADMIN)
    assert engine.state_of(CHAT).command == "addsubject"
    assert engine.state_of(CHAT).step == 1

    reply(engine, "Thermodynamics")
    assert engine.state_of(CHAT) == AwaitingSubjectDescription(name="Thermodynamics")

    reply(engine, "Intro to heat transfer")
    catalog.create_subject.assert_called_once_with("Thermodynamics", "Intro to heat transfer", created_by="nk28")
    assert engine.state_of(CHAT) is None
    assert messenger.texts[-1] == '✅ Subject "Thermodynamics" added successfully!'


def test_add_subject_failure_clears_state(engine, catalog, messenger):
    catalog.create_subject.side_effect = CatalogError("boom")
    engine.start_add_subject(CHAT, ADMIN)
    reply(engine, "Thermodynamics", "Intro to heat transfer")

    assert catalog.create_subject.call_count == 1
    assert engine.state_of(CHAT) is None
    assert messenger.texts[-1] == "❌ Failed to add subject"


def test_non_admin_add_subject_refused(engine, messenger):
    engine.start_add_subject(CHAT, STRANGER)
    assert engine.state_of(CHAT) is None
    assert messenger.texts == [ADMIN_ONLY]


def test_new_command_overwrites_dialogue(engine):
    engine.start_add_subject(CHAT, ADMIN)
    reply(engine, "Thermodynamics")
    engine.start_add_content(CHAT, ADMIN)
    assert isinstance(engine.state_of(CHAT), AwaitingContentSubject)


# ------------------ /addcontent ------------------
def test_add_content_without_subjects(engine, catalog, messenger):
    catalog.list_subjects.return_value = []
    engine.start_add_content(CHAT, ADMIN)
    assert engine.state_of(CHAT) is None
    assert messenger.texts == [NO_SUBJECTS]


def test_add_content_subjects_unavailable(engine, catalog, messenger):
    catalog.list_subjects.side_effect = CatalogError("down")
    engine.start_add_content(CHAT, ADMIN)
    assert engine.state_of(CHAT) is None
    assert messenger.texts == ["❌ Failed to fetch subjects"]


def test_add_content_lists_subjects(engine, messenger):
    engine.start_add_content(CHAT, ADMIN)
    prompt = messenger.texts[0]
    assert "1. Thermodynamics" in prompt
    assert "2. Fluid Mechanics" in prompt


@pytest.mark.parametrize("answer", ["0", "3", "abc", ""])
def test_add_content_rejects_bad_subject_number(engine, messenger, answer):
    engine.start_add_content(CHAT, ADMIN)
    before = engine.state_of(CHAT)

    reply(engine, answer)

    assert engine.state_of(CHAT) is before
    assert engine.state_of(CHAT).step == 1
    assert messenger.texts[-1] == INVALID_SUBJECT


def test_add_content_retries_until_valid(engine):
    engine.start_add_content(CHAT, ADMIN)
    reply(engine, "9", "x", "1")
    state = engine.state_of(CHAT)
    assert state == AwaitingContentType(subject=SUBJECTS[0])
    assert state.step == 2


def test_add_content_flow(engine, catalog, messenger):
    engine.start_add_content(CHAT, ADMIN)
    reply(engine, "2", "6")
    assert engine.state_of(CHAT).step == 2
    assert messenger.texts[-1] == INVALID_TYPE

    reply(engine, "4")
    assert engine.state_of(CHAT).content_type == "quiz"

    reply(engine, "   ")
    assert engine.state_of(CHAT).step == 3

    reply(engine, "Bernoulli quiz", "Ten questions")
    catalog.create_content.assert_called_once_with(
        "s2", "quiz", "Bernoulli quiz", "Ten questions", uploaded_by="nk28",
    )
    assert engine.state_of(CHAT) is None
    assert messenger.texts[-1] == (
        "✅ Content added successfully!\n\n"
        "Subject: Fluid Mechanics\n"
        "Type: quiz\n"
        "Title: Bernoulli quiz"
    )


def test_add_content_upstream_failure(engine, catalog, messenger):
    catalog.create_content.side_effect = CatalogError("500")
    engine.start_add_content(CHAT, ADMIN)
    reply(engine, "1", "1", "Title", "Description")
    assert engine.state_of(CHAT) is None
    assert messenger.texts[-1] == "❌ Failed to add content"


def test_unexpected_error_clears_state(engine, catalog, messenger):
    catalog.create_subject.side_effect = RuntimeError("bug")
    engine.start_add_subject(CHAT, ADMIN)
    reply(engine, "Name", "Description")
    assert engine.state_of(CHAT) is None
    assert messenger.texts[-1] == UNEXPECTED_ERROR


def test_dialogues_are_per_chat(engine):
    engine.start_add_subject(1, ADMIN)
    engine.start_add_content(2, ADMIN)
    reply(engine, "Physics", chat_id=1)
    assert engine.state_of(1).step == 2
    assert engine.state_of(2).step == 1


def test_cancel(engine, messenger):
    engine.start_add_subject(CHAT, ADMIN)
    engine.cancel(CHAT, ADMIN)
    assert engine.state_of(CHAT) is None
    assert messenger.texts[-1] == "🚫 Current operation cancelled."
    engine.cancel(CHAT, ADMIN)
    assert messenger.texts[-1] == "Nothing to cancel."


# ------------------ ЗАГРУЗКА ФАЙЛА ------------------
def test_document_from_non_admin_refused(engine, messenger):
    fetch = MagicMock()
    engine.receive_document(CHAT, STRANGER, "notes.pdf", fetch)
    fetch.assert_not_called()
    assert engine.state_of(CHAT) is None
    assert messenger.texts == [UPLOAD_ADMIN_ONLY]


def test_document_without_subjects(engine, catalog, messenger):
    catalog.list_subjects.return_value = []
    start_upload(engine)
    assert engine.state_of(CHAT) is None
    assert messenger.texts == [NO_SUBJECTS]


def test_document_download_failure(engine, messenger):
    def fetch():
        raise IOError("telegram timeout")

    engine.receive_document(CHAT, ADMIN, "notes.pdf", fetch)
    assert engine.state_of(CHAT) is None
    assert messenger.texts == ["❌ Failed to process file upload"]


def test_document_overwrites_active_dialogue(engine):
    engine.start_add_subject(CHAT, ADMIN)
    reply(engine, "Physics")
    start_upload(engine)
    state = engine.state_of(CHAT)
    assert isinstance(state, AwaitingUploadSubject)
    assert state.file.data == b"file-bytes"
    assert state.file.name == "notes.pdf"


@pytest.mark.parametrize("answer", ["2", "3"])
def test_upload_study_material_alias(engine, answer):
    start_upload(engine)
    reply(engine, "1", answer)
    assert engine.state_of(CHAT).content_type == "file"
    assert engine.state_of(CHAT).step == 3


def test_upload_rejects_topic_type(engine, messenger):
    start_upload(engine)
    reply(engine, "1", "4")
    assert engine.state_of(CHAT).step == 2
    assert messenger.texts[-1] == INVALID_TYPE


def test_upload_flow_reports_progress(engine, catalog, messenger):
    def upload(*args, progress=None, **kwargs):
        for sent in (25, 10, 50, 50, 100):
            progress(sent, 100)
        return {"id": "c1"}

    catalog.upload_content.side_effect = upload
    start_upload(engine)
    reply(engine, "1", "1", "Lecture video", "Chapter 3")

    kwargs = catalog.upload_content.call_args.kwargs
    assert catalog.upload_content.call_args.args == ("s1", "video", "Lecture video", "Chapter 3")
    assert kwargs["file_bytes"] == b"file-bytes"
    assert kwargs["file_name"] == "notes.pdf"
    assert kwargs["uploaded_by"] == "nk28"

    status_id = len(messenger.sent)
    assert messenger.texts[-1] == "📤 Uploading file... 0%"
    assert [text for _, mid, text in messenger.edits if mid == status_id] == [
        "📤 Uploading file... 25%",
        "📤 Uploading file... 50%",
        "📤 Uploading file... 100%",
        "✅ File uploaded successfully!\n\nSubject: Thermodynamics\nFile: Lecture video\nType: video",
    ]
    assert engine.state_of(CHAT) is None


def test_upload_failure_edits_status(engine, catalog, messenger):
    def upload(*args, progress=None, **kwargs):
        progress(30, 100)
        raise CatalogError("413")

    catalog.upload_content.side_effect = upload
    start_upload(engine)
    reply(engine, "2", "2", "Notes", "Week 1")

    edits = [text for _, _, text in messenger.edits]
    assert edits == ["📤 Uploading file... 30%", "❌ Failed to upload file"]
    assert not any(text.startswith("✅") for text in edits)
    assert engine.state_of(CHAT) is None


# ------------------ ПРОГРЕСС ------------------
def test_progress_reporter_single_terminal_edit(messenger):
    reporter = ProgressReporter(messenger, CHAT, 7)
    reporter.update(1, 2)
    assert reporter.finish("done") is True
    reporter.update(2, 2)
    assert reporter.finish("failed") is False
    assert [text for _, _, text in messenger.edits] == ["📤 Uploading file... 50%", "done"]


def test_progress_reporter_falls_back_to_new_message():
    messenger = MagicMock()
    messenger.edit.side_effect = RuntimeError("message to edit not found")
    reporter = ProgressReporter(messenger, CHAT, 7)
    reporter.update(10, 100)
    reporter.finish("✅ done")
    messenger.send.assert_called_once_with(CHAT, "✅ done")


def test_reply_from_non_admin_does_not_touch_dialogue(engine, messenger):
    engine.start_add_subject(CHAT, ADMIN)
    before = engine.state_of(CHAT)
    reply(engine, "Hijack", sender=STRANGER)
    assert engine.state_of(CHAT) is before
    assert messenger.texts[-1] == ADMIN_ONLY


def test_progress_reporter_edits_in_steps(messenger):
    reporter = ProgressReporter(messenger, CHAT, 7)
    for sent in range(1, 1001):
        reporter.update(sent, 1000)
    reporter.finish("done")

    percents = [int(text.rsplit(" ", 1)[1].rstrip("%")) for _, _, text in messenger.edits[:-1]]
    assert percents == list(range(5, 101, 5))
    assert messenger.edits[-1][2] == "done"


def test_progress_reporter_always_shows_completion(messenger):
    reporter = ProgressReporter(messenger, CHAT, 7)
    reporter.update(97, 100)
    reporter.update(99, 100)
    reporter.update(100, 100)
    assert [text for _, _, text in messenger.edits] == [
        "📤 Uploading file... 97%",
        "📤 Uploading file... 100%",
    ]


# ------------------ БЛОКИРОВКИ ЧАТОВ ------------------
def test_chats_without_dialogue_release_locks(engine):
    for chat_id in range(50):
        engine.handle_text(chat_id, STRANGER, "hello")
    assert engine.store.lock_count() == 0


def test_lock_kept_while_dialogue_active(engine):
    engine.start_add_subject(CHAT, ADMIN)
    assert engine.store.lock_count() == 1
    reply(engine, "Thermodynamics", "Intro to heat transfer")
    assert engine.state_of(CHAT) is None
    assert engine.store.lock_count() == 0
