"""
Mirror Strava activities into a subscribable iCalendar feed.

This package provides:
- OAuth credential storage and single-flight token refresh
- Webhook-driven activity sync plus full resync sweeps
- iCalendar generation from the mirrored activities
- Memory, JSON file and SQLite storage backends

Usage:
    # Serve webhook, auth and calendar endpoints
    python3 strava_webhook.py

    # Pull every past activity into the mirror
    python3 sync_activities.py resync
"""

from dataclasses import dataclass

from .config import Config, setup_logger
from .generator import FeedGenerator
from .provider import ProviderClient
from .storage import build_stores
from .subscription import SubscriptionManager
from .sync import SyncEngine
from .tokens import TokenManager


@dataclass
class Services:
    config: Config
    provider: ProviderClient
    credential_store: object
    activity_store: object
    tokens: TokenManager
    sync: SyncEngine
    feed: FeedGenerator
    subscriptions: SubscriptionManager


def build_services(config, provider=None, credential_store=None, activity_store=None):
    """Wire every component once; any collaborator can be swapped for a fake."""
    provider = provider or ProviderClient(
        config.client_id, config.client_secret, timeout=config.request_timeout)
    if credential_store is None or activity_store is None:
        default_credentials, default_activities = build_stores(
            config.storage_backend, config.storage_path)
        if credential_store is None:
            credential_store = default_credentials
        if activity_store is None:
            activity_store = default_activities

    tokens = TokenManager(provider, credential_store)
    return Services(
        config=config,
        provider=provider,
        credential_store=credential_store,
        activity_store=activity_store,
        tokens=tokens,
        sync=SyncEngine(tokens, provider, activity_store, config.verify_token),
        feed=FeedGenerator(config.calendar_name),
        subscriptions=SubscriptionManager(
            provider, credential_store, config.callback_url, config.verify_token),
    )


__all__ = ['Config', 'Services', 'build_services', 'setup_logger', 'FeedGenerator',
           'ProviderClient', 'SubscriptionManager', 'SyncEngine', 'TokenManager']
__version__ = '1.0.0'
