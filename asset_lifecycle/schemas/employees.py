from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.asset_models import Gender, Role


class RegisterEmployeeDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=60)
    gender: Gender
    contactNumber: str = Field(min_length=1, max_length=15)
    address: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=100, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=6, max_length=50)
    role: Optional[Role] = None


class EmployeeUpdateDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=60)
    gender: Gender
    contactNumber: str = Field(min_length=1, max_length=15)
    address: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=100, pattern=r"^[^@\s]+@[^@\s]+$")
    password: Optional[str] = None
    role: Optional[Role] = None


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    password: str
