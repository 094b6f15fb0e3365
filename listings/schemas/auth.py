from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from listings.schemas.common import CamelModel

class RegisterRequest(CamelModel):
    full_name: str = Field(..., min_length=2, max_length=100, validation_alias=AliasChoices("fullName", "full_name"))
    phone: str = Field(..., min_length=9)
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Optional[dict] = None

class ResetRequest(CamelModel):
    phone: str = Field(..., min_length=9)

class ResetConfirm(CamelModel):
    user_id: str
    token: str = Field(..., min_length=1)
    new_password: str

class ChangePasswordRequest(CamelModel):
    old_password: str = Field(..., min_length=1)
    new_password: str
