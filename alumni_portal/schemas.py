from pydantic import BaseModel, Field


class StudentRegister(BaseModel):
    name: str = Field(default="", max_length=120)
    email: str = Field(default="", max_length=180)
    password: str = Field(default="", max_length=120)
    course: str = Field(default="", max_length=120)
    department: str = Field(default="", max_length=120)
    year_of_study: int | str | None = None


class AdminRegister(BaseModel):
    name: str = Field(default="", max_length=120)
    email: str = Field(default="", max_length=180)
    password: str = Field(default="", max_length=120)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=180)
    password: str = Field(min_length=1, max_length=120)


class ClaimRequest(BaseModel):
    email: str = Field(min_length=1, max_length=180)
    password: str = Field(default="", max_length=120)


class NameUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=120)


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    course: str | None = None
    department: str | None = None
    batch: int | str | None = None
    company: str | None = None
    position: str | None = None
    domain: str | None = None
    experience: int | str | None = None
    location: str | None = None
    bio: str | None = None


class StudentProfileUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    course: str | None = None
    department: str | None = None
    year_of_study: int | str | None = None


class RequestResponse(BaseModel):
    status: str = Field(min_length=1, max_length=24)  # accepted | rejected


class ClaimDecision(BaseModel):
    action: str = Field(min_length=1, max_length=24)  # approve | reject


class MessageCreate(BaseModel):
    receiver_id: int
    message: str = Field(default="", max_length=4000)
