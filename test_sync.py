import pytest

from conftest import NOW
from strava_calendar.errors import (
    FetchActivityFailedError,
    FetchAllFailedError,
    NoCredentialError,
    StorageFailedError,
    SyncTimeoutError,
    VerificationRejectedError,
)
from strava_calendar.models import Credential, WebhookEvent
from strava_calendar.storage import MemoryActivityStore


def event(aspect, object_id=42, object_type='activity'):
    return WebhookEvent(aspect=aspect, object_type=object_type, object_id=object_id, owner_id=7)


# --- Verification handshake ---

def test_verify_echoes_challenge(services):
    assert services.sync.verify('test-verify-token', 'abc123') == 'abc123'


@pytest.mark.parametrize('token', ['wrong', '', None])
def test_verify_rejects_bad_token(services, token):
    with pytest.raises(VerificationRejectedError):
        services.sync.verify(token, 'abc123')


# --- Change notifications ---

def test_create_fetches_and_stores(services, provider, activity_store, make_activity):
    provider.remote[42] = make_activity(42)

    assert services.sync.apply(event('create')) == 'upserted'
    assert activity_store.list() == [provider.remote[42]]
    assert provider.fetch_calls == [('stored-access', 42)]


def test_create_then_update_keeps_one_latest_record(services, provider, activity_store, make_activity):
    provider.remote[42] = make_activity(42, name='Morning Run')
    services.sync.apply(event('create'))

    provider.remote[42] = make_activity(42, name='Renamed Run')
    services.sync.apply(event('update'))

    stored = activity_store.list()
    assert len(stored) == 1
    assert stored[0].name == 'Renamed Run'


def test_duplicate_create_is_idempotent(services, provider, activity_store, make_activity):
    provider.remote[42] = make_activity(42)

    services.sync.apply(event('create'))
    services.sync.apply(event('create'))

    assert activity_store.list() == [provider.remote[42]]


def test_delete_twice_matches_delete_once(services, activity_store, make_activity):
    activity_store.replace_all([make_activity(42), make_activity(43)])

    assert services.sync.apply(event('delete')) == 'removed'
    once = activity_store.list()
    services.sync.apply(event('delete'))

    assert activity_store.list() == once == [make_activity(43)]


def test_delete_unknown_id_is_noop(services, provider, activity_store, make_activity):
    activity_store.upsert(make_activity(43))

    services.sync.apply(event('delete', object_id=999))

    assert activity_store.list() == [make_activity(43)]
    assert provider.fetch_calls == []


def test_delete_does_not_need_credential(services, credential_store, activity_store, make_activity):
    credential_store.save(None)
    activity_store.upsert(make_activity(42))

    services.sync.apply(event('delete'))

    assert activity_store.list() == []


def test_athlete_events_are_ignored(services, provider, activity_store, make_activity):
    activity_store.upsert(make_activity(42))

    assert services.sync.apply(event('update', object_type='athlete')) == 'ignored'
    assert services.sync.apply(event('delete', object_type='athlete')) == 'ignored'

    assert activity_store.list() == [make_activity(42)]
    assert provider.fetch_calls == []


def test_fetch_failure_leaves_store_untouched(services, provider, activity_store, make_activity):
    activity_store.upsert(make_activity(42, name='Before'))
    provider.fail_fetch = True

    with pytest.raises(FetchActivityFailedError):
        services.sync.apply(event('update'))

    assert activity_store.list() == [make_activity(42, name='Before')]


def test_create_without_credential_fails(services, credential_store, provider, make_activity):
    credential_store.save(None)
    provider.remote[42] = make_activity(42)

    with pytest.raises(NoCredentialError):
        services.sync.apply(event('create'))
    assert provider.fetch_calls == []


def test_create_refreshes_expired_token_first(services, provider, credential_store, make_activity):
    credential_store.save(Credential('old', 'old-refresh', NOW - 60))
    provider.remote[42] = make_activity(42)

    services.sync.apply(event('create'))

    assert provider.refresh_calls == 1
    assert provider.fetch_calls == [('fresh-access', 42)]


# --- Full resync ---

def test_resync_replaces_store(services, provider, activity_store, make_activity):
    activity_store.replace_all([make_activity(1), make_activity(2)])
    provider.remote = {3: make_activity(3), 4: make_activity(4)}

    assert services.sync.resync_all() == 2
    assert sorted(a.id for a in activity_store.list()) == [3, 4]


def test_resync_with_no_activities_keeps_store(services, provider, activity_store, make_activity):
    activity_store.replace_all([make_activity(1)])
    provider.remote = {}

    assert services.sync.resync_all() == 0
    assert activity_store.list() == [make_activity(1)]


def test_resync_failure_keeps_store(services, provider, activity_store, make_activity):
    activity_store.replace_all([make_activity(1)])
    provider.remote = {3: make_activity(3)}
    provider.fail_fetch_all = True

    with pytest.raises(FetchAllFailedError):
        services.sync.resync_all()
    assert activity_store.list() == [make_activity(1)]


def test_resync_timeout_keeps_store(services, provider, activity_store, make_activity):
    activity_store.replace_all([make_activity(1)])

    def slow_listing(access_token, page_size=200, deadline=None, clock=None):
        raise SyncTimeoutError("deadline passed")

    provider.fetch_activities = slow_listing

    with pytest.raises(SyncTimeoutError):
        services.sync.resync_all(timeout=0.01)
    assert activity_store.list() == [make_activity(1)]


def test_resync_passes_deadline(services, provider, make_activity):
    provider.remote = {1: make_activity(1)}
    seen = {}
    services.sync.clock = lambda: 100.0

    def listing(access_token, page_size=200, deadline=None, clock=None):
        seen['deadline'] = deadline
        return [make_activity(1)]

    provider.fetch_activities = listing
    services.sync.resync_all(timeout=30)

    assert seen['deadline'] == 130.0


def test_resync_past_deadline_keeps_mirror(services, provider, activity_store, make_activity):
    activity_store.upsert(make_activity(1))
    ticks = iter([100.0, 200.0])
    services.sync.clock = lambda: next(ticks)
    # the last page comes back after the deadline has already passed
    provider.fetch_activities = lambda *args, **kwargs: [make_activity(2), make_activity(3)]

    with pytest.raises(SyncTimeoutError):
        services.sync.resync_all(timeout=30)
    assert activity_store.list() == [make_activity(1)]


def test_resync_deduplicates_ids(services, provider, activity_store, make_activity):
    provider.fetch_activities = lambda *args, **kwargs: [
        make_activity(1, name='old'), make_activity(2), make_activity(1, name='new')]

    assert services.sync.resync_all() == 2
    names = {a.id: a.name for a in activity_store.list()}
    assert names[1] == 'new'


def test_resync_storage_failure_propagates(services, provider, make_activity):
    class BrokenStore(MemoryActivityStore):
        def replace_all(self, activities):
            raise StorageFailedError("disk full")

    services.sync.store = BrokenStore()
    provider.remote = {1: make_activity(1)}

    with pytest.raises(StorageFailedError):
        services.sync.resync_all()
