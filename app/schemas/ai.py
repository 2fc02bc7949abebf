from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.tutor.types import AttachedFile, ChatMessage, ChatRole


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(max_length=50_000)

    def to_domain(self) -> ChatMessage:
        return ChatMessage(role=ChatRole(self.role), content=self.content)


class AttachedFileIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str = Field("", max_length=255, description="MIME type")
    content: str = Field("", description="Base64 payload or data: URL")
    size: int = Field(0, ge=0)

    def to_domain(self) -> AttachedFile:
        return AttachedFile(name=self.name, mime_type=self.type, base64_content=self.content, size_bytes=self.size)


class GuidanceRequest(BaseModel):
    query: str = Field("", max_length=20_000)
    files: list[AttachedFileIn] = Field(default_factory=list, max_length=10)
    conversation_history: list[ChatMessageIn] = Field(default_factory=list, max_length=100)
    preferred_provider: str | None = Field(None, max_length=50)


class ProviderInfo(BaseModel):
    name: str
    type: str
    model: str
    speed: str
    priority: int


class ProviderAttemptResponse(BaseModel):
    provider: str
    reason: str
    message: str
    elapsed_ms: int


class GuidanceResponse(BaseModel):
    success: bool = True
    guidance: str
    provider: str
    model: str
    speed: str
    response_time_ms: int
    query: str
    detected_subject: str
    problem_complexity: str
    conversation_length: int
    used_fallback: bool
    attempts: list[ProviderAttemptResponse] = []
    available_providers: list[ProviderInfo] = []
    created_at: datetime


class KeyUsage(BaseModel):
    key_number: int
    requests_used: int
    requests_limit: int
    requests_remaining: int
    is_blocked: bool
    resets_in_seconds: int
    key_preview: str


class KeyRotationStatus(BaseModel):
    total_keys: int
    current_key_index: int
    rotation_enabled: bool
    combined_capacity: str
    keys: list[KeyUsage]


class AiStatusResponse(BaseModel):
    providers: list[ProviderInfo]
    total_providers: int
    gemini_configured: bool
    cohere_configured: bool
    groq_configured: bool
    gemini_key_rotation: KeyRotationStatus | None = None
    fallback_mode: bool
    server_time: datetime


class ProviderProbeResult(BaseModel):
    name: str
    model: str
    status: Literal["success", "failed"]
    response: str | None = None
    error: str | None = None
    reason: str | None = None
    response_time_ms: int


class ProviderProbeResponse(BaseModel):
    results: list[ProviderProbeResult]
    total_providers: int
    working_providers: int
