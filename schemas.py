from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["video", "file", "topic", "quiz", "tips"]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class SubjectCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    created_by: Optional[str] = Field(default=None, alias="createdBy")


class SubjectOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    created_by: Optional[str] = Field(default=None, alias="createdBy")
    created_at: datetime = Field(alias="createdAt")


class ContentCreate(CamelModel):
    subject_id: str = Field(alias="subjectId")
    type: ContentType
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None
    storage_ref: Optional[str] = Field(default=None, alias="storageRef")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    uploaded_by: Optional[str] = Field(default=None, alias="uploadedBy")


class ContentUpdate(CamelModel):
    type: Optional[ContentType] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("type", "title", "metadata")
    @classmethod
    def not_null(cls, v):
        """Пропущенное поле не меняется, а явный null недопустим."""
        if v is None:
            raise ValueError("cannot be null")
        return v


class ContentOut(CamelModel):
    id: str
    subject_id: str = Field(alias="subjectId")
    type: str
    title: str
    description: Optional[str] = None
    storage_ref: Optional[str] = Field(default=None, alias="storageRef")
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    uploaded_by: Optional[str] = Field(default=None, alias="uploadedBy")
    created_at: datetime = Field(alias="createdAt")
    views: int = 0
    downloads: int = 0


class VisitRequest(BaseModel):
    username: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    username: str
    password: str


class AdminInfo(CamelModel):
    username: str
    telegram_id: Optional[str] = Field(default=None, alias="telegramId")


class Stats(BaseModel):
    subjects: int
    videos: int
    files: int
    users: int
    totalContent: int


class StatusResponse(BaseModel):
    success: bool = True
    message: str


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def dump_all(items: List[Any], schema) -> List[Dict[str, Any]]:
    return [dump(schema.model_validate(item)) for item in items]
