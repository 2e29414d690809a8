"""
Unit tests for mailsync/persistence.py: field defaults, idempotent inserts and
per-attachment failure isolation.
"""

import asyncio

import pytest

from mailsync.exceptions import CredentialError
from mailsync.models import AttachmentDescriptor, ExtractedContent, MessageRef
from mailsync.offloader import AttachmentOffloader
from mailsync.persistence import (
    DEFAULT_SENDER,
    DEFAULT_SUBJECT,
    MessagePersister,
    normalize,
)

from conftest import FIXED_NOW, FakeMailService, FakeObjectStore


def _content(**kwargs):
    defaults = dict(
        subject='Invoice',
        sender='Alice <alice@example.com>',
        recipients=['bob@example.com'],
        received_at=FIXED_NOW,
        snippet='Please find attached',
        body_text='Please find attached',
        labels=['INBOX', 'UNREAD'],
    )
    defaults.update(kwargs)
    return ExtractedContent(**defaults)


def _pdf(name, attachment_id):
    return AttachmentDescriptor(filename=name, mime_type='application/pdf', size=10, attachment_id=attachment_id)


class TestNormalize:

    def test_defaults_for_missing_fields(self):
        record = normalize(MessageRef('m1'), ExtractedContent(), 'user-1', now=FIXED_NOW)

        assert record.subject == DEFAULT_SUBJECT
        assert record.sender == DEFAULT_SENDER
        assert record.thread_id == 'm1'
        assert record.recipients == []
        assert record.received_at == FIXED_NOW
        assert record.body_text is None

    def test_read_flag_follows_unread_label(self):
        unread = normalize(MessageRef('m1', 't1'), _content(), 'user-1')
        read = normalize(MessageRef('m2', 't2'), _content(labels=['INBOX']), 'user-1')
        assert unread.is_read is False
        assert read.is_read is True


class TestStore:

    def test_stores_new_message(self, storage, principal):
        persister = MessagePersister(storage)
        result = asyncio.run(persister.store(MessageRef('m1', 't1'), _content(), principal))

        assert result.created
        row = storage.get_email_by_message_id('m1')
        assert row['subject'] == 'Invoice'
        assert row['thread_id'] == 't1'
        assert row['recipients'] == ['bob@example.com']
        assert row['is_read'] is False

    def test_second_store_is_a_no_op(self, storage, principal):
        persister = MessagePersister(storage)
        first = asyncio.run(persister.store(MessageRef('m1', 't1'), _content(), principal))
        second = asyncio.run(persister.store(
            MessageRef('m1', 't1'), _content(subject='Changed'), principal
        ))

        assert not second.created
        assert second.email['id'] == first.email['id']
        assert storage.get_email_by_message_id('m1')['subject'] == 'Invoice'
        assert len(storage.get_emails(principal)) == 1

    def test_failed_attachment_is_isolated(self, storage, principal):
        mail = FakeMailService()
        mail.attachments[('m1', 'a1')] = b'first'
        mail.attachments[('m1', 'a2')] = b'second'
        store = FakeObjectStore()
        store.fail_uploads_for.add('second.pdf')
        persister = MessagePersister(storage, offloader=AttachmentOffloader(mail, store), mail=mail)

        content = _content(attachments=[_pdf('first.pdf', 'a1'), _pdf('second.pdf', 'a2')])
        result = asyncio.run(persister.store(MessageRef('m1', 't1'), content, principal))

        assert result.created
        assert result.attachment_errors == 1
        row = storage.get_email_by_message_id('m1')
        attachments = storage.get_attachments(row['id'])
        assert [a['file_name'] for a in attachments] == ['first.pdf']
        assert row['attachment_links'] == [attachments[0]['drive_link']]

    def test_existing_message_does_not_reupload(self, storage, principal):
        mail = FakeMailService()
        mail.attachments[('m1', 'a1')] = b'first'
        store = FakeObjectStore()
        persister = MessagePersister(storage, offloader=AttachmentOffloader(mail, store), mail=mail)
        content = _content(attachments=[_pdf('first.pdf', 'a1')])

        asyncio.run(persister.store(MessageRef('m1', 't1'), content, principal))
        asyncio.run(persister.store(MessageRef('m1', 't1'), content, principal))

        assert len(store.uploads) == 1

    def test_mark_as_read_removes_unread_label(self, storage, principal):
        mail = FakeMailService()
        persister = MessagePersister(storage, mail=mail, mark_as_read=True)

        asyncio.run(persister.store(MessageRef('m1', 't1'), _content(), principal))
        asyncio.run(persister.store(MessageRef('m2', 't2'), _content(labels=['INBOX']), principal))

        assert mail.modified == [('m1', ('UNREAD',))]

    def test_mark_as_read_is_off_by_default(self, storage, principal):
        mail = FakeMailService()
        asyncio.run(MessagePersister(storage, mail=mail).store(MessageRef('m1', 't1'), _content(), principal))
        assert mail.modified == []

    def test_credential_error_during_offload_propagates(self, storage, principal):
        mail = FakeMailService()
        mail.attachments[('m1', 'a1')] = b'first'
        store = FakeObjectStore()
        store.find_error = CredentialError("find folder: HTTP 403 insufficientPermissions")
        persister = MessagePersister(storage, offloader=AttachmentOffloader(mail, store), mail=mail)
        content = _content(attachments=[_pdf('first.pdf', 'a1')])

        with pytest.raises(CredentialError):
            asyncio.run(persister.store(MessageRef('m1', 't1'), content, principal))

        # nothing left behind that a later run would skip
        assert storage.get_email_by_message_id('m1') is None

    def test_retry_after_credential_error_offloads(self, storage, principal):
        mail = FakeMailService()
        mail.attachments[('m1', 'a1')] = b'first'
        store = FakeObjectStore()
        store.find_error = CredentialError("find folder: HTTP 403 insufficientPermissions")
        content = _content(attachments=[_pdf('first.pdf', 'a1')])

        with pytest.raises(CredentialError):
            asyncio.run(MessagePersister(
                storage, offloader=AttachmentOffloader(mail, store), mail=mail
            ).store(MessageRef('m1', 't1'), content, principal))

        store.find_error = None
        result = asyncio.run(MessagePersister(
            storage, offloader=AttachmentOffloader(mail, store), mail=mail
        ).store(MessageRef('m1', 't1'), content, principal))

        assert result.created
        assert len(result.attachments) == 1
