import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from file_storage import LocalFileStorage, TelegramFileStorage
from schemas import (
    AdminInfo, ContentCreate, ContentOut, ContentUpdate, LoginRequest, Stats,
    StatusResponse, SubjectCreate, SubjectOut, VisitRequest, dump, dump_all,
)
from security import generate_session_token, get_password_hash, verify_password

logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


# --- Инициализация ---
def ensure_default_admin():
    """Создаёт администратора по умолчанию, если его ещё нет."""
    if database.get_admin_by_username(config.ADMIN_USERNAME):
        return
    database.create_admin(
        config.ADMIN_USERNAME,
        get_password_hash(config.ADMIN_PASSWORD),
        telegram_id=config.ADMIN_TELEGRAM_ID,
    )
    logger.info(f"✅ Создан администратор по умолчанию: {config.ADMIN_USERNAME}")


_storage = None


def get_storage():
    """Хранилище файлов: служебный чат Telegram или локальная папка."""
    global _storage
    if _storage is None:
        if config.STORAGE_CHAT_ID:
            from common_functions import create_bot
            _storage = TelegramFileStorage(create_bot(config.BOT_TOKEN), config.STORAGE_CHAT_ID)
        else:
            _storage = LocalFileStorage(config.UPLOAD_DIR)
    return _storage


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    ensure_default_admin()
    logger.info("🚀 Mechanical Aspirants API запущен")
    yield


app = FastAPI(title="Mechanical Aspirants API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Ошибки в едином формате ---
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": _format_errors(exc.errors())},
    )


def _format_errors(errors):
    return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in errors)


# --- Авторизация ---
def require_admin(authorization: Optional[str] = Header(default=None)):
    """Проверяет токен сессии из заголовка Authorization."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authentication required")
    admin = database.get_session_admin(_token_from_header(authorization))
    if admin is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return admin


def _token_from_header(authorization):
    return authorization.split(" ", 1)[1].strip() if authorization.lower().startswith("bearer ") else authorization.strip()


# --- Публичные эндпоинты ---
@app.get("/api/health")
def health():
    return {
        "success": True,
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "Mechanical Aspirants API",
    }


@app.get("/api/subjects")
def get_subjects():
    """Список предметов, новые сверху"""
    return {"success": True, "subjects": dump_all(database.get_all_subjects(), SubjectOut)}


@app.get("/api/content/{subject_id}/{content_type}")
def get_subject_content(subject_id: str, content_type: str):
    """Материалы предмета заданного типа"""
    subject = database.get_subject(subject_id)
    items = database.list_content(subject_id=subject_id, content_type=content_type)
    return {
        "success": True,
        "subjectName": subject.name if subject else "Unknown Subject",
        "items": dump_all(items, ContentOut),
    }


@app.post("/api/content/{content_id}/view")
def track_view(content_id: str):
    if not database.increment_views(content_id):
        raise HTTPException(status_code=404, detail="Content not found")
    return {"success": True}


@app.get("/api/files/{content_id}/download")
def download_file(content_id: str, storage=Depends(get_storage)):
    """Возвращает ссылку на файл и увеличивает счётчик скачиваний"""
    content = database.get_content(content_id)
    if content is None or not content.storage_ref:
        raise HTTPException(status_code=404, detail="File not found")
    try:
        url = storage.download_url(content.storage_ref)
    except Exception as e:
        logger.error(f"Не удалось получить ссылку на файл {content_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to get download URL")
    database.increment_downloads(content_id)
    return {"success": True, "downloadUrl": url}


@app.post("/api/users/visit")
def track_visit(req: VisitRequest):
    database.touch_user(req.username)
    return {"success": True}


# --- Администрирование ---
@app.post("/api/admin/login")
def login(req: LoginRequest):
    admin = database.get_admin_by_username(req.username)
    if admin is None or not verify_password(req.password, admin.password_hash):
        logger.info(f"Неудачный вход: {req.username}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = generate_session_token()
    database.create_session(admin.id, token)
    database.mark_admin_login(admin.id)
    logger.info(f"Вход администратора {admin.username}")
    return {"success": True, "token": token, "admin": dump(AdminInfo.model_validate(admin))}


@app.post("/api/admin/logout", response_model=StatusResponse)
def logout(authorization: str = Header(), admin=Depends(require_admin)):
    database.delete_session(_token_from_header(authorization))
    return StatusResponse(message="Logged out successfully")


@app.get("/api/admin/verify")
def verify(admin=Depends(require_admin)):
    return {"success": True, "admin": dump(AdminInfo.model_validate(admin))}


@app.post("/api/admin/subjects")
def add_subject(req: SubjectCreate, admin=Depends(require_admin)):
    subject = database.add_subject(req.name, req.description, created_by=admin.username)
    logger.info(f"Создан предмет '{subject.name}' ({subject.id})")
    return {"success": True, "subject": dump(SubjectOut.model_validate(subject))}


@app.delete("/api/admin/subjects/{subject_id}", response_model=StatusResponse)
def delete_subject(subject_id: str, admin=Depends(require_admin)):
    if not database.delete_subject(subject_id):
        raise HTTPException(status_code=404, detail="Subject not found")
    logger.info(f"Удалён предмет {subject_id} вместе с материалами")
    return StatusResponse(message="Subject deleted")


@app.post("/api/admin/content")
async def add_content(request: Request, admin=Depends(require_admin), storage=Depends(get_storage)):
    """Добавляет материал: JSON-тело или multipart с полем file"""
    upload = None
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        fields = {k: v for k, v in form.items() if k != "file"}
    else:
        try:
            fields = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        data = ContentCreate.model_validate(fields)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_format_errors(e.errors()))

    if await run_in_threadpool(database.get_subject, data.subject_id) is None:
        raise HTTPException(status_code=404, detail="Subject not found")

    storage_ref, metadata = data.storage_ref, dict(data.metadata)
    if isinstance(upload, UploadFile):
        payload = await upload.read()
        try:
            stored = await run_in_threadpool(storage.save, payload, upload.filename or "file")
        except Exception as e:
            logger.exception(f"Не удалось сохранить файл {upload.filename}: {e}")
            raise HTTPException(status_code=502, detail="Failed to store file")
        storage_ref = stored.ref
        metadata.update({
            "filename": stored.filename,
            "originalname": upload.filename,
            "size": stored.size,
            "mimetype": upload.content_type,
        })

    content = await run_in_threadpool(
        database.add_content,
        data.subject_id,
        data.type,
        data.title,
        data.description,
        storage_ref,
        metadata,
        admin.username,
    )
    logger.info(f"Добавлен материал '{content.title}' ({content.type}) в предмет {content.subject_id}")
    return {"success": True, "content": dump(ContentOut.model_validate(content))}


@app.get("/api/admin/content")
def list_admin_content(subjectId: Optional[str] = None, contentType: Optional[str] = None,
                       admin=Depends(require_admin)):
    items = database.list_content(subject_id=subjectId, content_type=contentType)
    return {"success": True, "count": len(items), "items": dump_all(items, ContentOut)}


@app.put("/api/admin/content/{content_id}")
def update_content(content_id: str, req: ContentUpdate, admin=Depends(require_admin)):
    changes = req.model_dump(exclude_unset=True)
    if "metadata" in changes:
        changes["meta"] = changes.pop("metadata")
    content = database.update_content(content_id, changes)
    if content is None:
        raise HTTPException(status_code=404, detail="Content not found")
    return {"success": True, "content": dump(ContentOut.model_validate(content))}


@app.delete("/api/admin/content/{content_id}", response_model=StatusResponse)
def delete_content(content_id: str, admin=Depends(require_admin)):
    if not database.delete_content(content_id):
        raise HTTPException(status_code=404, detail="Content not found")
    return StatusResponse(message="Content deleted")


@app.get("/api/admin/stats")
def get_stats(admin=Depends(require_admin)):
    stats = Stats(**database.get_stats())
    return {"success": True, **stats.model_dump()}


# Загруженные файлы при локальном хранении
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

if __name__ == "__main__":
    uvicorn.run("main_webapp:app", host="0.0.0.0", port=8000, reload=True)
