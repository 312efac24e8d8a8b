from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# Each model corresponds to a Mongo collection; unknown request keys are dropped
# so only the declared fields ever reach the store.

Role = Literal["user", "instructor", "admin"]


def normalize_email(value: Optional[str]) -> Optional[str]:
    """Canonical form used for storing and comparing emails."""
    if value is None:
        return None
    return value.strip().lower()


class Course(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    price: float = Field(ge=0)
    duration: Optional[Union[str, float]] = None
    description: str = ""
    image: Optional[str] = None
    instructorEmail: Optional[EmailStr] = None
    isFeatured: bool = False

    @field_validator("instructorEmail")
    @classmethod
    def canonical_instructor(cls, value):
        return normalize_email(value)


class CourseUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    duration: Optional[Union[str, float]] = None
    description: Optional[str] = None
    image: Optional[str] = None
    isFeatured: Optional[bool] = None

    @field_validator("title", "category", "price", "isFeatured")
    @classmethod
    def not_null(cls, value):
        # only optional presentation fields may be cleared
        if value is None:
            raise ValueError("may not be null")
        return value


class Enrollment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    courseId: str
    studentEmail: Optional[EmailStr] = None
    courseTitle: Optional[str] = None
    courseImage: Optional[str] = None

    @field_validator("studentEmail")
    @classmethod
    def canonical_student(cls, value):
        return normalize_email(value)


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: EmailStr
    name: Optional[str] = None
    photoURL: Optional[str] = None

    @field_validator("email")
    @classmethod
    def canonical_email(cls, value):
        return normalize_email(value)


class RoleUpdate(BaseModel):
    role: Role


class Count(BaseModel):
    count: int
