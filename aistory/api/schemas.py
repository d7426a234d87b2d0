"""Request bodies. The wire format is camelCase; Python attributes stay snake_case."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Auth ─────────────────────────────────────────────────────────────────

class SendCodeRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=254)
    purpose: Literal["register", "reset"] = "register"


class RegisterRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., max_length=128)
    code: str = Field(..., min_length=1, max_length=16)
    nickname: Optional[str] = Field(None, max_length=50)
    username: Optional[str] = Field(None, max_length=50)


class LoginRequest(CamelModel):
    username: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class ResetPasswordRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=254)
    code: str = Field(..., min_length=1, max_length=16)
    new_password: str = Field(..., max_length=128)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class DeviceLoginRequest(CamelModel):
    device_id: str = Field(..., max_length=256)


class ProfileUpdateRequest(CamelModel):
    nickname: Optional[str] = Field(None, max_length=50)
    avatar_seed: Optional[str] = Field(None, max_length=128)


# ── Plaza ────────────────────────────────────────────────────────────────

class PromptCreate(CamelModel):
    name: str = Field(..., max_length=50)
    description: str = Field("", max_length=500)
    prompts_json: str = Field(..., max_length=100_000)
    tags: list[str] = Field(default_factory=list)


class PromptUpdate(CamelModel):
    name: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    prompts_json: Optional[str] = Field(None, max_length=100_000)
    tags: Optional[list[str]] = None


class StoryCreate(CamelModel):
    title: str = Field(..., max_length=50)
    premise: str = Field(..., max_length=5000)
    genre: str = Field(..., max_length=50)
    protagonist_name: str = Field(..., max_length=50)
    protagonist_description: str = Field("", max_length=2000)
    protagonist_appearance: str = Field("", max_length=2000)
    difficulty: Optional[str] = Field(None, max_length=20)
    initial_pacing: Optional[str] = Field(None, max_length=20)
    extra_description: str = Field("", max_length=5000)
    tags: list[str] = Field(default_factory=list)


class StoryUpdate(CamelModel):
    title: Optional[str] = Field(None, max_length=50)
    premise: Optional[str] = Field(None, max_length=5000)
    genre: Optional[str] = Field(None, max_length=50)
    protagonist_name: Optional[str] = Field(None, max_length=50)
    protagonist_description: Optional[str] = Field(None, max_length=2000)
    protagonist_appearance: Optional[str] = Field(None, max_length=2000)
    difficulty: Optional[str] = Field(None, max_length=20)
    initial_pacing: Optional[str] = Field(None, max_length=20)
    extra_description: Optional[str] = Field(None, max_length=5000)
    tags: Optional[list[str]] = None


# ── Moderation & reports ─────────────────────────────────────────────────

class RejectRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ReportRequest(CamelModel):
    target_type: Literal["prompt", "story"]
    target_uuid: str = Field(..., min_length=8, max_length=128)
    reason_type: Literal["illegal", "sexual", "abuse", "spam", "other"]
    reason_text: Optional[str] = Field(None, max_length=500)
