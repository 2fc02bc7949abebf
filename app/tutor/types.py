"""Core types and DTOs for the AI tutoring router."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.tutor.adapters import BaseProviderAdapter


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProviderKind(str, Enum):
    """Supported completion providers."""

    GEMINI = "gemini"
    COHERE = "cohere"
    GROQ = "groq"


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class DispatchState(str, Enum):
    """Lifecycle of a single dispatch call."""

    PENDING = "pending"
    TRYING = "trying"
    SUCCESS = "success"
    ALL_FAILED = "all_failed"


class AttachmentKind(str, Enum):
    """Shape of a preprocessed attachment."""

    TEXT = "text"  # Extracted text fragment
    INLINE = "inline"  # Inline binary asset forwarded as-is
    NOTE = "note"  # Degraded processing note


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str


@dataclass(frozen=True)
class AttachedFile:
    """A file uploaded alongside a tutoring query.

    ``base64_content`` is either a bare base64 payload or a
    ``data:<mime>;base64,<payload>`` URL as sent by browsers.
    """

    name: str
    mime_type: str = ""
    base64_content: str = ""
    size_bytes: int = 0

    @property
    def label(self) -> str:
        return f"{self.name} ({self.mime_type or 'unknown type'})"


@dataclass(frozen=True)
class CompletionRequest:
    """Provider-agnostic completion request."""

    system_prompt: str = ""
    conversation_history: tuple[ChatMessage, ...] = ()
    current_message: str = ""
    attached_files: tuple[AttachedFile, ...] = ()
    temperature: float = 0.7
    max_tokens: int = 4096

    def without_attachments(self, note: str = "") -> CompletionRequest:
        """Copy with attachments dropped and ``note`` appended to the current message."""
        message = f"{self.current_message}\n\n{note}" if note else self.current_message
        return replace(self, attached_files=(), current_message=message)


# ---------------------------------------------------------------------------
# Response side
# ---------------------------------------------------------------------------


@dataclass
class CompletionResult:
    text: str
    provider_name: str
    model_id: str
    elapsed_ms: int = 0
    attempts: list[ProviderAttempt] = field(default_factory=list)  # Failures before this success


@dataclass
class ProcessedAttachment:
    """Outcome of preprocessing one attached file."""

    kind: AttachmentKind
    file_name: str
    text: str = ""  # Prompt fragment (TEXT/NOTE) or caption (INLINE)
    mime_type: str = ""
    data: str = ""  # Base64 payload for INLINE assets

    @property
    def is_degraded(self) -> bool:
        return self.kind == AttachmentKind.NOTE


# ---------------------------------------------------------------------------
# Provider descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderCapabilities:
    """What content a provider accepts."""

    supports_files: bool = False  # Receives attachments at all
    supports_images: bool = False  # Native vision (inline binary); otherwise OCR
    supports_pdfs: bool = False  # PDF text is extracted and forwarded
    supports_history: bool = True


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    kind: ProviderKind
    priority: int  # Lower = tried first
    capabilities: ProviderCapabilities
    model_id: str
    adapter: BaseProviderAdapter
    speed: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.kind.value,
            "model": self.model_id,
            "speed": self.speed,
            "priority": self.priority,
        }


# ---------------------------------------------------------------------------
# Inbound result
# ---------------------------------------------------------------------------


@dataclass
class ProviderAttempt:
    """One adapter attempt recorded by the dispatcher."""

    provider_name: str
    reason: str
    message: str
    elapsed_ms: int = 0


@dataclass
class GuidanceResult:
    guidance_text: str
    provider_name: str
    model_name: str
    elapsed_ms: int
    speed: str = ""
    detected_subject: str = "general"
    problem_complexity: str = "medium"
    conversation_length: int = 0
    attempts: list[ProviderAttempt] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def used_fallback(self) -> bool:
        return self.provider_name == "fallback"
