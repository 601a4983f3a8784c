import io
import logging
import mimetypes
import threading

import requests
from urllib3.filepost import encode_multipart_formdata

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Ошибка обращения к бэкенду каталога."""


class ProgressBody:
    """Тело запроса, которое сообщает о каждом отправленном куске."""

    def __init__(self, data, callback=None, chunk_size=64 * 1024):
        self._stream = io.BytesIO(data)
        self._callback = callback
        self.chunk_size = chunk_size
        self.total = len(data)
        self.sent = 0

    def __len__(self):
        return self.total

    def read(self, size=-1):
        if size is None or size < 0:
            size = self.chunk_size
        chunk = self._stream.read(min(size, self.chunk_size))
        if chunk:
            self.sent += len(chunk)
            if self._callback is not None:
                self._callback(self.sent, self.total)
        return chunk


class CatalogClient:
    """HTTP-клиент бэкенда каталога, от имени администратора."""

    def __init__(self, base_url, username, password, timeout=30.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()
        self.token = None
        self._token_lock = threading.Lock()

    # ------------------ АВТОРИЗАЦИЯ ------------------
    def login(self):
        payload = self._request("POST", "/api/admin/login", json={
            "username": self.username,
            "password": self.password,
        })
        token = payload.get("token")
        if not token:
            raise CatalogError("Login response has no token")
        logger.info(f"Бот авторизован на бэкенде как {self.username}")
        return token

    def _auth_header(self):
        with self._token_lock:
            if self.token is None:
                self.token = self.login()
            return f"Bearer {self.token}"

    def _request(self, method, path, auth=False, make_body=None, **kwargs):
        url = self.base_url + path
        for attempt in (1, 2):
            headers = {}
            if auth:
                headers["Authorization"] = self._auth_header()
            if make_body is not None:
                kwargs["data"], headers["Content-Type"] = make_body()
            try:
                response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise CatalogError(f"{method} {path} failed: {e}") from e

            if response.status_code == 401 and auth and attempt == 1:
                logger.info("Сессия бота истекла, выполняется повторный вход")
                with self._token_lock:
                    self.token = None
                continue
            return self._unwrap(response, method, path)

    @staticmethod
    def _unwrap(response, method, path):
        try:
            payload = response.json()
        except ValueError:
            raise CatalogError(f"{method} {path}: non-JSON response ({response.status_code})")
        if not response.ok or not isinstance(payload, dict) or payload.get("success") is not True:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise CatalogError(f"{method} {path}: {error or response.status_code}")
        return payload

    # ------------------ КАТАЛОГ ------------------
    def list_subjects(self):
        return self._request("GET", "/api/subjects")["subjects"]

    def create_subject(self, name, description, created_by):
        payload = self._request("POST", "/api/admin/subjects", auth=True, json={
            "name": name,
            "description": description,
            "createdBy": created_by,
        })
        return payload["subject"]

    def create_content(self, subject_id, content_type, title, description, uploaded_by):
        payload = self._request("POST", "/api/admin/content", auth=True, json={
            "subjectId": subject_id,
            "type": content_type,
            "title": title,
            "description": description,
            "uploadedBy": uploaded_by,
        })
        return payload["content"]

    def upload_content(self, subject_id, content_type, title, description, uploaded_by,
                       file_bytes, file_name, progress=None):
        """Multipart-загрузка файла; progress(sent, total) вызывается по мере отправки."""
        mimetype = mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        fields = [
            ("subjectId", subject_id),
            ("type", content_type),
            ("title", title),
            ("description", description),
            ("uploadedBy", uploaded_by),
            ("file", (file_name, file_bytes, mimetype)),
        ]

        def make_body():
            body, content_type_header = encode_multipart_formdata(fields)
            return ProgressBody(body, progress), content_type_header

        payload = self._request("POST", "/api/admin/content", auth=True, make_body=make_body)
        return payload["content"]

    def get_stats(self):
        payload = self._request("GET", "/api/admin/stats", auth=True)
        return {key: payload.get(key, 0) for key in ("subjects", "videos", "files", "users", "totalContent")}
