import threading
import time
from datetime import datetime

import pytest
import pytz

from strava_calendar import Config, build_services
from strava_calendar.errors import FetchActivityFailedError, FetchAllFailedError, RefreshFailedError
from strava_calendar.models import Activity, Credential
from strava_calendar.storage import MemoryActivityStore, MemoryCredentialStore

NOW = 1_700_000_000


class FakeProvider:
    """In-memory stand-in for ProviderClient that records every call."""

    def __init__(self):
        self.remote = {}
        self.refreshed = Credential('fresh-access', 'fresh-refresh', NOW + 21600)
        self.exchanged = Credential('new-access', 'new-refresh', NOW + 21600)
        self.refresh_calls = 0
        self.fetch_calls = []
        self.refresh_delay = 0
        self.fail_refresh = False
        self.fail_fetch = False
        self.fail_fetch_all = False
        self.subscriptions = []
        self.next_subscription_id = 1001
        self._lock = threading.Lock()

    def authorize_url(self, redirect_uri, scope='activity:read_all'):
        return f"https://www.strava.com/oauth/authorize?redirect_uri={redirect_uri}&scope={scope}"

    def exchange_code(self, code):
        return self.exchanged

    def refresh_token(self, refresh_token):
        with self._lock:
            self.refresh_calls += 1
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if self.fail_refresh:
            raise RefreshFailedError("refresh rejected")
        return self.refreshed

    def fetch_activity(self, access_token, activity_id):
        self.fetch_calls.append((access_token, activity_id))
        if self.fail_fetch or activity_id not in self.remote:
            raise FetchActivityFailedError(f"activity {activity_id} unavailable")
        return self.remote[activity_id]

    def fetch_activities(self, access_token, page_size=200, deadline=None, clock=time.monotonic):
        if self.fail_fetch_all:
            raise FetchAllFailedError("listing failed")
        return list(self.remote.values())

    def register_subscription(self, callback_url, verify_token):
        subscription_id = self.next_subscription_id
        self.subscriptions.append(subscription_id)
        return subscription_id

    def list_subscriptions(self):
        return list(self.subscriptions)

    def unregister_subscription(self, subscription_id):
        self.subscriptions.remove(subscription_id)


@pytest.fixture
def make_activity():
    def factory(activity_id=42, **overrides):
        fields = {
            'id': activity_id,
            'name': 'Morning Run',
            'activity_type': 'Run',
            'start_time': datetime(2024, 1, 1, 7, 0, 0, tzinfo=pytz.utc),
            'elapsed_time': 1500,
            'distance': 5000.0,
            'elevation_gain': 30.0,
            'average_speed': 5000 / 1500,
            'average_watts': 0.0,
            'average_cadence': 0.0,
            'timezone': '(GMT+00:00) Europe/London',
        }
        fields.update(overrides)
        return Activity(**fields)
    return factory


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def credential_store():
    return MemoryCredentialStore(Credential('stored-access', 'stored-refresh', NOW + 3600))


@pytest.fixture
def activity_store():
    return MemoryActivityStore()


@pytest.fixture
def config():
    return Config(
        client_id='12345',
        client_secret='shh',
        app_address='https://cal.example.com',
        verify_token='test-verify-token',
        storage_backend='memory',
    )


@pytest.fixture
def services(config, provider, credential_store, activity_store):
    services = build_services(config, provider=provider, credential_store=credential_store,
                              activity_store=activity_store)
    services.tokens.clock = lambda: NOW
    return services
