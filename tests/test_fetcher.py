"""
Unit tests for mailsync/fetcher.py: per-item failure isolation and batching.
"""

import asyncio

import pytest

from mailsync.exceptions import CredentialError, RemoteServiceError
from mailsync.fetcher import MessageFetcher, batches
from mailsync.models import MessageRef

from conftest import FakeMailService, make_message


def _refs(*ids):
    return [MessageRef(message_id=i, thread_id=f"thread-{i}") for i in ids]


def test_fetches_every_message_in_order():
    service = FakeMailService([make_message('a'), make_message('b'), make_message('c')])
    outcomes = asyncio.run(MessageFetcher(service).fetch_batch(_refs('a', 'b', 'c')))

    assert [o.ref.message_id for o in outcomes] == ['a', 'b', 'c']
    assert all(o.ok for o in outcomes)
    assert outcomes[1].message['id'] == 'b'


def test_single_failure_does_not_abort_batch():
    service = FakeMailService([make_message('a'), make_message('c')])
    # 'b' was deleted between listing and fetching
    outcomes = asyncio.run(MessageFetcher(service).fetch_batch(_refs('a', 'b', 'c')))

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, RemoteServiceError)
    assert outcomes[1].message is None


def test_timeout_is_a_per_item_failure():
    service = FakeMailService([make_message('slow')])
    service.get_delay = 0.3
    fetcher = MessageFetcher(service, timeout=0.05)

    outcomes = asyncio.run(fetcher.fetch_batch(_refs('slow')))

    assert not outcomes[0].ok
    assert 'timed out' in str(outcomes[0].error)


def test_credential_error_fails_the_whole_batch():
    service = FakeMailService([make_message('a'), make_message('b')])
    service.get_errors['b'] = CredentialError("HTTP 401 unauthorized")

    with pytest.raises(CredentialError):
        asyncio.run(MessageFetcher(service).fetch_batch(_refs('a', 'b')))


def test_concurrency_is_bounded():
    active = []
    peak = []

    class CountingService(FakeMailService):
        def get_message(self, message_id):
            active.append(message_id)
            peak.append(len(active))
            try:
                import time
                time.sleep(0.02)
                return super().get_message(message_id)
            finally:
                active.remove(message_id)

    ids = [f"m{i}" for i in range(10)]
    service = CountingService([make_message(i) for i in ids])
    outcomes = asyncio.run(MessageFetcher(service, concurrency=3).fetch_batch(_refs(*ids)))

    assert all(o.ok for o in outcomes)
    assert max(peak) <= 3


def test_batches_split_in_order():
    refs = _refs(*[str(i) for i in range(7)])
    chunks = list(batches(refs, 3))
    assert [len(c) for c in chunks] == [3, 3, 1]
    assert chunks[2][0].message_id == '6'
