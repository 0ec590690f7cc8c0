# domain/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

AttachmentKind = Literal["html", "file"]
OutcomeStatus = Literal["completed", "duplicate", "failed"]

NO_SUBJECT = "[No Subject]"


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str
    kind: AttachmentKind = "file"


@dataclass
class ExtractionResult:
    body: str
    prefix: str
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class MailRecord:
    """Una fila por cuerpo o por adjunto de un correo procesado."""
    sender: str
    subject: str
    message_id: str
    received_at: datetime
    body: str = ""
    attachments_path: str = ""
    id: int | None = None

    @property
    def is_body(self) -> bool:
        return not self.attachments_path


@dataclass(frozen=True)
class ProcessingOutcome:
    status: OutcomeStatus
    message_id: str
    reason: str = ""
    records_saved: int = 0

    @classmethod
    def completed(cls, message_id: str, records_saved: int) -> "ProcessingOutcome":
        return cls("completed", message_id, records_saved=records_saved)

    @classmethod
    def duplicate(cls, message_id: str) -> "ProcessingOutcome":
        return cls("duplicate", message_id)

    @classmethod
    def failed(cls, message_id: str, reason: str, records_saved: int = 0) -> "ProcessingOutcome":
        return cls("failed", message_id, reason=reason, records_saved=records_saved)


@dataclass(frozen=True)
class MailboxMessage:
    number: int
    size: int = 0
