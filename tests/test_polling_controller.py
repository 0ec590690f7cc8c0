"""Tests del ciclo de polling: orden, aislamiento de fallos, cuarentena y borrado."""

from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from conftest import FakeMailRepository, build_message
from domain.errors import MailConnectionError
from domain.models import MailboxMessage
from interface_adapters.controllers.polling_controller import PollingController


class FakeInbox:
    """Buzón en memoria con la misma interfaz que POP3Inbox."""

    def __init__(self, raws: list[bytes], fail_connect: bool = False, delete_messages: bool = False):
        self.raws = raws
        self.fail_connect = fail_connect
        self.delete_messages = delete_messages
        self.connects = 0
        self.closed_with: list[bool] = []
        self.fetched: list[int] = []
        self.deleted: list[int] = []

    def __enter__(self):
        self.connects += 1
        if self.fail_connect:
            raise MailConnectionError("down")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close(self.delete_messages)

    def close(self, expunge_deleted=False):
        self.closed_with.append(expunge_deleted)

    def list_messages(self):
        return [MailboxMessage(i + 1, len(r)) for i, r in enumerate(self.raws)]

    def fetch(self, message):
        self.fetched.append(message.number)
        return self.raws[message.number - 1]

    def mark_for_deletion(self, message, should_delete=True):
        if not (self.delete_messages and should_delete):
            return False
        self.deleted.append(message.number)
        return True


def _raw(n: int, **kwargs) -> bytes:
    return build_message(message_id=f"<msg-{n}@example.com>", body=f"cuerpo {n}", **kwargs)


def _controller(settings, repository, inbox):
    return PollingController(settings=settings, repository=repository, inbox=inbox)


class TestRunOnce:

    def test_processes_newest_first(self, settings, repository):
        inbox = FakeInbox([_raw(1), _raw(2), _raw(3)])
        outcomes = _controller(settings, repository, inbox).run_once()

        assert inbox.fetched == [3, 2, 1]
        assert [o.status for o in outcomes] == ["completed"] * 3
        assert [r.body for r in repository.records] == ["cuerpo 3", "cuerpo 2", "cuerpo 1"]
        assert inbox.closed_with == [False]

    def test_empty_mailbox(self, settings, repository):
        inbox = FakeInbox([])
        assert _controller(settings, repository, inbox).run_once() == []
        assert inbox.closed_with == [False]

    def test_connection_error_propagates(self, settings, repository):
        inbox = FakeInbox([_raw(1)], fail_connect=True)
        with pytest.raises(MailConnectionError):
            _controller(settings, repository, inbox).run_once()
        assert repository.records == []

    def test_fetch_error_aborts_cycle_but_closes(self, settings, repository):
        inbox = FakeInbox([_raw(1), _raw(2)])
        inbox.fetch = MagicMock(side_effect=MailConnectionError("reset"))
        with pytest.raises(MailConnectionError):
            _controller(settings, repository, inbox).run_once()
        assert inbox.closed_with == [False]

    def test_max_mails_per_loop(self, settings, repository):
        inbox = FakeInbox([_raw(1), _raw(2), _raw(3)])
        _controller(replace(settings, MAX_MAILS_PER_LOOP=2), repository, inbox).run_once()
        assert inbox.fetched == [3, 2]


class TestDuplicates:

    def test_second_cycle_is_all_duplicates(self, settings, repository):
        inbox = FakeInbox([_raw(1), _raw(2)])
        controller = _controller(settings, repository, inbox)
        controller.run_once()
        outcomes = controller.run_once()

        assert [o.status for o in outcomes] == ["duplicate", "duplicate"]
        assert len(repository.records) == 2

    def test_short_circuit_stops_at_first_duplicate(self, settings, repository):
        inbox = FakeInbox([_raw(1), _raw(2)])
        controller = _controller(replace(settings, STOP_AT_FIRST_DUPLICATE=True), repository, inbox)
        controller.run_once()
        inbox.raws.append(_raw(3))
        inbox.fetched.clear()

        outcomes = controller.run_once()

        assert [o.status for o in outcomes] == ["completed", "duplicate"]
        assert inbox.fetched == [3, 2]

    def test_without_short_circuit_older_messages_still_processed(self, settings, repository):
        controller = _controller(settings, repository, FakeInbox([_raw(2)]))
        controller.run_once()
        # un correo antiguo aparece por debajo de uno ya procesado
        controller.inbox = FakeInbox([_raw(1), _raw(2)])

        outcomes = controller.run_once()

        assert [o.status for o in outcomes] == ["duplicate", "completed"]


class TestFailureIsolation:

    def test_failed_message_is_quarantined_and_cycle_continues(self, settings, failed_dir):
        repository = FakeMailRepository(fail_on_save=1)
        inbox = FakeInbox([_raw(1), _raw(2, attachments=[("a.pdf", b"a")])])

        outcomes = _controller(settings, repository, inbox).run_once()

        assert [o.status for o in outcomes] == ["failed", "completed"]
        failed_id = outcomes[0].message_id
        assert failed_id == "msg2examplecom"
        assert not [r for r in repository.records if r.message_id == failed_id]
        quarantined = failed_dir / failed_id
        assert (quarantined / "message.eml").exists()
        assert "persistence" in (quarantined / "failure.log").read_text(encoding="utf-8")
        assert [r.body for r in repository.records] == ["cuerpo 1"]

    def test_unexpected_error_is_isolated(self, settings, repository, failed_dir):
        inbox = FakeInbox([_raw(1), _raw(2)])
        controller = _controller(settings, repository, inbox)
        original = controller.uc.process_mail
        calls = []

        def flaky(message, target_dir):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return original(message, target_dir)

        controller.uc.process_mail = flaky
        outcomes = controller.run_once()

        assert [o.status for o in outcomes] == ["failed", "completed"]
        assert len(list(failed_dir.iterdir())) == 1

    def test_nul_in_attachment_name_does_not_abort_cycle(self, settings, repository):
        hostile = (
            b"From: a@example.com\r\n"
            b"Subject: adjunto raro\r\n"
            b"Message-ID: <nul@example.com>\r\n"
            b"MIME-Version: 1.0\r\n"
            b"Content-Type: multipart/mixed; boundary=\"B\"\r\n"
            b"\r\n"
            b"--B\r\n"
            b"Content-Type: text/plain\r\n"
            b"\r\n"
            b"texto\r\n"
            b"--B\r\n"
            b"Content-Type: application/pdf\r\n"
            b"Content-Disposition: attachment; filename*=utf-8''a%00b.pdf\r\n"
            b"\r\n"
            b"PDF\r\n"
            b"--B--\r\n"
        )
        inbox = FakeInbox([_raw(1), hostile])

        outcomes = _controller(settings, repository, inbox).run_once()

        assert len(outcomes) == 2
        assert "cuerpo 1" in [r.body for r in repository.records]
        paths = [r.attachments_path for r in repository.records if r.attachments_path]
        assert all("\x00" not in p for p in paths)


class TestDeletion:

    def test_processed_and_duplicate_flagged_failed_kept(self, settings, failed_dir):
        repository = FakeMailRepository(fail_on_save=2)
        st = replace(settings, DELETE_INBOX_MESSAGES=True)
        inbox = FakeInbox([_raw(1), _raw(2)], delete_messages=True)

        _controller(st, repository, inbox).run_once()

        # #2 ok (save 1), #1 falla (save 2)
        assert inbox.deleted == [2]
        assert inbox.closed_with == [True]

    def test_shutdown_closes_inbox(self, settings, repository):
        inbox = FakeInbox([])
        _controller(settings, repository, inbox).shutdown()
        assert inbox.closed_with == [False]
