from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

import config

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("video", "file", "topic", "quiz", "tips")

# Предсказуемые имена ограничений для любой СУБД
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id():
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# ------------------ МОДЕЛИ ------------------
class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)

    contents: Mapped[list["Content"]] = relationship(
        "Content",
        back_populates="subject",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Content(Base):
    __tablename__ = "content"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    subject_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("subjects.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[str] = mapped_column(String(20), index=True)
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    storage_ref: Mapped[str | None] = mapped_column(String(500), default=None)
    # "metadata" зарезервировано у DeclarativeBase
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    uploaded_by: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    views: Mapped[int] = mapped_column(Integer, default=0)
    downloads: Mapped[int] = mapped_column(Integer, default=0)

    subject: Mapped[Subject] = relationship("Subject", back_populates="contents")


class Admin(Base):
    __tablename__ = "admins"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    telegram_id: Mapped[str | None] = mapped_column(String(50), default=None)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)


class AdminSession(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    admin_id: Mapped[str] = mapped_column(String(32), ForeignKey("admins.id", ondelete="CASCADE"), index=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    content_accessed: Mapped[int] = mapped_column(Integer, default=0)


# ------------------ ПОДКЛЮЧЕНИЕ ------------------
def _make_engine(url):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db():
    Base.metadata.create_all(bind=engine, checkfirst=True)


def drop_db():
    Base.metadata.drop_all(bind=engine)


# ------------------ ПРЕДМЕТЫ ------------------
def get_all_subjects():
    """Все предметы, новые сверху."""
    with SessionLocal() as db:
        stmt = select(Subject).order_by(Subject.created_at.desc())
        return list(db.scalars(stmt))


def get_subject(subject_id):
    with SessionLocal() as db:
        return db.get(Subject, subject_id)


def add_subject(name, description, created_by):
    with SessionLocal() as db:
        subject = Subject(name=name, description=description, created_by=created_by)
        db.add(subject)
        db.commit()
        db.refresh(subject)
        return subject


def delete_subject(subject_id):
    """Удаляет предмет вместе со всеми его материалами."""
    with SessionLocal() as db:
        subject = db.get(Subject, subject_id)
        if subject is None:
            return False
        # passive_deletes полагается на ON DELETE CASCADE, а SQLite без PRAGMA его не делает
        db.execute(delete(Content).where(Content.subject_id == subject_id))
        db.delete(subject)
        db.commit()
        return True


# ------------------ МАТЕРИАЛЫ ------------------
def list_content(subject_id=None, content_type=None):
    with SessionLocal() as db:
        stmt = select(Content)
        if subject_id:
            stmt = stmt.where(Content.subject_id == subject_id)
        if content_type:
            stmt = stmt.where(Content.type == content_type)
        stmt = stmt.order_by(Content.created_at.desc())
        return list(db.scalars(stmt))


def count_content(subject_id=None, content_type=None):
    with SessionLocal() as db:
        stmt = select(func.count()).select_from(Content)
        if subject_id:
            stmt = stmt.where(Content.subject_id == subject_id)
        if content_type:
            stmt = stmt.where(Content.type == content_type)
        return db.scalar(stmt) or 0


def get_content(content_id):
    with SessionLocal() as db:
        return db.get(Content, content_id)


def add_content(subject_id, content_type, title, description=None, storage_ref=None,
                metadata=None, uploaded_by=None):
    with SessionLocal() as db:
        content = Content(
            subject_id=subject_id,
            type=content_type,
            title=title,
            description=description,
            storage_ref=storage_ref,
            meta=metadata or {},
            uploaded_by=uploaded_by,
        )
        db.add(content)
        db.commit()
        db.refresh(content)
        return content


def update_content(content_id, changes):
    """Частичное обновление; возвращает None, если материала нет."""
    with SessionLocal() as db:
        content = db.get(Content, content_id)
        if content is None:
            return None
        for field, value in changes.items():
            setattr(content, field, value)
        db.commit()
        db.refresh(content)
        return content


def delete_content(content_id):
    with SessionLocal() as db:
        result = db.execute(delete(Content).where(Content.id == content_id))
        db.commit()
        return result.rowcount > 0


def _increment(content_id, column):
    with SessionLocal() as db:
        result = db.execute(
            update(Content).where(Content.id == content_id).values({column: getattr(Content, column) + 1})
        )
        db.commit()
        return result.rowcount > 0


def increment_views(content_id):
    return _increment(content_id, "views")


def increment_downloads(content_id):
    return _increment(content_id, "downloads")


# ------------------ СТАТИСТИКА ------------------
def get_stats():
    with SessionLocal() as db:
        subjects = db.scalar(select(func.count()).select_from(Subject)) or 0
        users = db.scalar(select(func.count()).select_from(User)) or 0
    return {
        "subjects": subjects,
        "videos": count_content(content_type="video"),
        "files": count_content(content_type="file"),
        "users": users,
        "totalContent": count_content(),
    }


def touch_user(username):
    """Отмечает активность посетителя, создавая запись при первом визите."""
    with SessionLocal() as db:
        user = db.scalar(select(User).where(User.username == username))
        if user is None:
            user = User(username=username)
            db.add(user)
        else:
            user.last_active = _utcnow()
        db.commit()
        db.refresh(user)
        return user


# ------------------ АДМИНИСТРАТОРЫ И СЕССИИ ------------------
def get_admin_by_username(username):
    with SessionLocal() as db:
        return db.scalar(select(Admin).where(Admin.username == username))


def create_admin(username, password_hash, telegram_id=None):
    with SessionLocal() as db:
        admin = Admin(username=username, password_hash=password_hash, telegram_id=telegram_id)
        db.add(admin)
        db.commit()
        db.refresh(admin)
        return admin


def mark_admin_login(admin_id):
    with SessionLocal() as db:
        db.execute(update(Admin).where(Admin.id == admin_id).values(last_login=_utcnow()))
        db.commit()


def create_session(admin_id, token):
    with SessionLocal() as db:
        session = AdminSession(admin_id=admin_id, token=token)
        db.add(session)
        db.commit()
        db.refresh(session)
        return session


def get_session_admin(token, ttl_seconds=None):
    """Администратор по токену сессии; просроченные сессии удаляются."""
    ttl = ttl_seconds if ttl_seconds is not None else config.SESSION_TTL_SECONDS
    cutoff = _utcnow() - timedelta(seconds=ttl)
    with SessionLocal() as db:
        purged = db.execute(delete(AdminSession).where(AdminSession.created_at < cutoff))
        if purged.rowcount:
            logger.info(f"Удалено просроченных сессий: {purged.rowcount}")
        db.commit()
        stmt = (
            select(Admin)
            .join(AdminSession, AdminSession.admin_id == Admin.id)
            .where(AdminSession.token == token)
        )
        return db.scalar(stmt)


def delete_session(token):
    with SessionLocal() as db:
        result = db.execute(delete(AdminSession).where(AdminSession.token == token))
        db.commit()
        return result.rowcount > 0
