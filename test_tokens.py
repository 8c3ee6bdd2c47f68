import threading

import pytest

from conftest import NOW
from strava_calendar.errors import ExchangeFailedError, NoCredentialError, RefreshFailedError
from strava_calendar.models import Credential
from strava_calendar.storage import MemoryCredentialStore
from strava_calendar.tokens import TokenManager


def make_manager(provider, credential):
    store = MemoryCredentialStore(credential)
    return TokenManager(provider, store, clock=lambda: NOW), store


@pytest.mark.parametrize('seconds_left', [11, 600, 21600])
def test_fresh_credential_is_returned_without_refresh(provider, seconds_left):
    stored = Credential('a', 'r', NOW + seconds_left)
    manager, store = make_manager(provider, stored)

    assert manager.ensure_fresh() is stored
    assert provider.refresh_calls == 0
    assert store.load() is stored


@pytest.mark.parametrize('seconds_left', [10, 9, 1, 0, -3600])
def test_expiring_credential_is_refreshed_and_saved(provider, seconds_left):
    manager, store = make_manager(provider, Credential('a', 'r', NOW + seconds_left))

    assert manager.ensure_fresh() == provider.refreshed
    assert provider.refresh_calls == 1
    assert store.load() == provider.refreshed


def test_second_call_reuses_refreshed_credential(provider):
    manager, _ = make_manager(provider, Credential('a', 'r', NOW))

    manager.ensure_fresh()
    manager.ensure_fresh()

    assert provider.refresh_calls == 1


def test_missing_credential_raises(provider):
    manager, _ = make_manager(provider, None)

    with pytest.raises(NoCredentialError):
        manager.ensure_fresh()
    assert provider.refresh_calls == 0


def test_refresh_failure_leaves_stored_credential(provider):
    stored = Credential('a', 'r', NOW - 1)
    manager, store = make_manager(provider, stored)
    provider.fail_refresh = True

    with pytest.raises(RefreshFailedError):
        manager.ensure_fresh()
    assert store.load() is stored


def test_concurrent_callers_share_one_refresh(provider):
    manager, _ = make_manager(provider, Credential('a', 'r', NOW + 5))
    provider.refresh_delay = 0.05

    workers = 8
    barrier = threading.Barrier(workers)
    results = []

    def call():
        barrier.wait()
        results.append(manager.ensure_fresh())

    threads = [threading.Thread(target=call) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert provider.refresh_calls == 1
    assert results == [provider.refreshed] * workers


def test_exchange_stores_credential(provider):
    manager, store = make_manager(provider, None)

    assert manager.exchange('auth-code') == provider.exchanged
    assert store.load() == provider.exchanged


def test_exchange_rejects_empty_code(provider):
    manager, store = make_manager(provider, None)

    with pytest.raises(ExchangeFailedError):
        manager.exchange('')
    assert store.load() is None
