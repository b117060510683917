"""
Database Schemas

MongoDB collection schemas and request payloads, as Pydantic models.
Each document model maps onto a collection named after it in lowercase
("user", "product"). Field names are camelCase both in storage and on the
wire; Python attributes are snake_case with aliases.
"""

from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

Role = Literal["buyer", "seller", "admin"]
SelfServiceRole = Literal["buyer", "seller"]

ROLES = ("buyer", "seller", "admin")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def parse_tags(raw) -> List[str]:
    """Split comma separated tag text into trimmed, unique, non-empty tags (first seen order)."""
    if raw is None:
        return []
    parts = raw if isinstance(raw, (list, tuple)) else [raw]
    tags: List[str] = []
    for part in parts:
        for tag in str(part).split(","):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
    return tags


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    def to_mongo(self) -> dict:
        return self.model_dump(by_alias=True)


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, lower-cased")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("buyer", description="Role: buyer | seller | admin")
    is_active: bool = Field(True, alias="isActive")
    phone: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class ProductImage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    public_id: str = Field(..., alias="publicId")


class Contact(BaseModel):
    email: str
    phone: Optional[str] = None


class Product(Document):
    title: str
    description: str
    price: float = Field(..., ge=0)
    images: List[ProductImage] = Field(default_factory=list)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    seller: ObjectId
    contact: Contact
    approved: bool = False
    featured: bool = False
    likes: int = 0
    liked_by: List[ObjectId] = Field(default_factory=list, alias="likedBy")
    location: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


# Request payloads

class RegisterInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: SelfServiceRole = "buyer"
    phone: Optional[str] = Field(None, max_length=32)
    location: Optional[str] = Field(None, max_length=120)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class AdminUserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=120)
    role: Optional[Role] = None
    is_active: Optional[bool] = Field(None, alias="isActive")
    email: Optional[EmailStr] = None

    @field_validator("email")
    @classmethod
    def _lower(cls, value: Optional[str]) -> Optional[str]:
        return normalize_email(value) if value is not None else value


class PasswordReset(BaseModel):
    password: str = Field(..., min_length=6, max_length=128)
