from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from .identity import Role


class NonceRequest(BaseModel):
    address: str


class NonceResponse(BaseModel):
    nonce: str
    expires_at: int


class VerifyRequest(BaseModel):
    address: str
    signature: str
    role: Optional[Role] = None
    chain_id: Optional[int] = None


class VerifyResponse(BaseModel):
    success: bool = True
    created: bool
    identity: Dict[str, Any]
    session_token: str
    expires_at: int


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_name: Optional[str] = None
    email: Optional[str] = None
    ens_name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    skills: Optional[List[str]] = None
    company: Optional[str] = None
    experience: Optional[str] = None


class ChainSwitch(BaseModel):
    chain_id: int = Field(gt=0)
