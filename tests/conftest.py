"""
Fixtures compartidas: correos de prueba construidos con email.mime,
un repositorio en memoria y directorios temporales de adjuntos/cuarentena.
"""

from __future__ import annotations
from dataclasses import replace
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from config.settings import Settings
from domain.errors import PersistenceError
from domain.models import MailRecord

# PNG mínimo (cabecera) para partes inline
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeMailRepository:
    """Repositorio en memoria con fallo configurable en el N-ésimo save."""

    def __init__(self, fail_on_save: int | None = None, fail_all: bool = False) -> None:
        self.records: list[MailRecord] = []
        self.fail_on_save = fail_on_save
        self.fail_all = fail_all
        self.save_calls = 0
        self.find_calls = 0

    def find_by_message_id(self, message_id: str) -> list[MailRecord]:
        self.find_calls += 1
        return [r for r in self.records if r.message_id == message_id]

    def save(self, record: MailRecord) -> MailRecord:
        self.save_calls += 1
        if self.fail_all or self.save_calls == self.fail_on_save:
            raise PersistenceError("database unavailable")
        saved = replace(record, id=len(self.records) + 1)
        self.records.append(saved)
        return saved


def build_message(
    *,
    message_id: str | None = "<abc-123@mail.example.com>",
    sender: str = "Jane Doe <jane@example.com>",
    subject: str | None = "Factura",
    body: str | None = "Hello",
    html: str | None = None,
    attachments: list[tuple[str, bytes]] | None = None,
    inline_image: bool = False,
    date: str = "Tue, 15 Oct 2024 10:30:00 +0000",
) -> bytes:
    msg = MIMEMultipart("mixed")
    if message_id is not None:
        msg["Message-ID"] = message_id
    msg["From"] = sender
    msg["To"] = "inbox@example.com"
    if subject is not None:
        msg["Subject"] = subject
    msg["Date"] = date

    if body is not None:
        msg.attach(MIMEText(body, "plain", "utf-8"))
    if html is not None:
        msg.attach(MIMEText(html, "html", "utf-8"))
    if inline_image:
        img = MIMEImage(PNG_BYTES, "png")
        img.add_header("Content-Disposition", "inline")
        msg.attach(img)
    for name, data in attachments or []:
        part = MIMEApplication(data)
        part.add_header("Content-Disposition", "attachment", filename=name)
        msg.attach(part)
    return msg.as_bytes()


@pytest.fixture
def repository() -> FakeMailRepository:
    return FakeMailRepository()


@pytest.fixture
def attachments_dir(tmp_path):
    d = tmp_path / "attachments"
    d.mkdir()
    return d


@pytest.fixture
def failed_dir(tmp_path):
    d = tmp_path / "failed"
    d.mkdir()
    return d


@pytest.fixture
def settings(attachments_dir, failed_dir) -> Settings:
    return Settings(
        MAIL_HOST="pop.example.com",
        MAIL_PORT=995,
        MAIL_USERNAME="user",
        MAIL_PASSWORD="secret",
        ATTACHMENTS_DIRECTORY=str(attachments_dir),
        FAILED_MESSAGES_DIRECTORY=str(failed_dir),
        POLL_INTERVAL_MS=60000,
        DELETE_INBOX_MESSAGES=False,
        STOP_AT_FIRST_DUPLICATE=False,
        MAX_MAILS_PER_LOOP=0,
        TZ="",
    )
