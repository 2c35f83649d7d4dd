from datetime import datetime, timezone
from enum import Enum
from typing import Any

from bson import ObjectId
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.utils.ledger_validation import NotFoundError, ensure_utc, to_storage_datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PyObjectId(ObjectId):
    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any):
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(cls.validate)

    @classmethod
    def validate(cls, value: Any) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        raise ValueError("Invalid ObjectId")


class UTCModel(BaseModel):
    """Base for documents read back from MongoDB, which returns naive UTC datetimes."""

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True
    )

    @field_validator("*", mode="after")
    @classmethod
    def _attach_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class MongoModel(UTCModel):
    id: PyObjectId = Field(default_factory=PyObjectId, alias="_id")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> dict:
        return to_mongo(self.model_dump(by_alias=True, mode="python"))


def parse_object_id(value: Any, entity: str) -> ObjectId:
    """Resolve an id from a caller; malformed ids cannot exist, so they are not found."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise NotFoundError(entity, str(value))


def to_mongo(value: Any) -> Any:
    """Recursively convert datetimes to naive UTC and enums to their values."""
    if isinstance(value, datetime):
        return to_storage_datetime(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_mongo(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_mongo(item) for item in value]
    return value
