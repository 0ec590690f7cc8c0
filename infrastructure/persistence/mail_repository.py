# infrastructure/persistence/mail_repository.py
"""Pasarela de persistencia de MailRecord (consulta por message_id y guardado)."""

from __future__ import annotations
from dataclasses import replace
import logging
from typing import Protocol

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from domain.errors import PersistenceError
from domain.models import MailRecord

logger = logging.getLogger(__name__)

Base = declarative_base()


class MailRecordRow(Base):
    __tablename__ = "imail"
    __table_args__ = (Index("ix_imail_message_id", "message_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender = Column(String(512), nullable=False, default="")
    subject = Column(String(1024), nullable=True)
    message_id = Column(String(255), nullable=False)
    body = Column(Text, nullable=False, default="")
    attachments_path = Column(String(1024), nullable=False, default="")
    received_at = Column(DateTime, nullable=False)

    def to_record(self) -> MailRecord:
        return MailRecord(
            id=self.id,
            sender=self.sender,
            subject=self.subject,
            message_id=self.message_id,
            body=self.body,
            attachments_path=self.attachments_path,
            received_at=self.received_at,
        )


class MailRepository(Protocol):
    def find_by_message_id(self, message_id: str) -> list[MailRecord]: ...

    def save(self, record: MailRecord) -> MailRecord: ...


def create_session_factory(database_url: str) -> sessionmaker:
    engine = create_engine(database_url)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class SqlMailRepository:
    """Cada save es su propia transacción: un fallo no deshace los guardados previos."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def find_by_message_id(self, message_id: str) -> list[MailRecord]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(MailRecordRow)
                    .where(MailRecordRow.message_id == message_id)
                    .order_by(MailRecordRow.id)
                ).all()
                return [row.to_record() for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Error consultando message_id: {exc}") from exc

    def save(self, record: MailRecord) -> MailRecord:
        row = MailRecordRow(
            sender=record.sender,
            subject=record.subject,
            message_id=record.message_id,
            body=record.body,
            attachments_path=record.attachments_path,
            received_at=record.received_at,
        )
        try:
            with self.session_factory() as session, session.begin():
                session.add(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"No se pudo guardar el registro: {exc}") from exc
        return replace(record, id=row.id)
