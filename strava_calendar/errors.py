"""
Error taxonomy shared by the token, sync and storage layers.
"""


class StravaCalendarError(Exception):
    """Base class for every error raised by strava_calendar."""


class ConfigError(StravaCalendarError):
    """Startup configuration is missing or invalid."""


class NoCredentialError(StravaCalendarError):
    """No credential has been stored yet; the user must authorize first."""


class ExchangeFailedError(StravaCalendarError):
    """Strava rejected the authorization-code exchange."""


class RefreshFailedError(StravaCalendarError):
    """Strava rejected the refresh token."""


class FetchActivityFailedError(StravaCalendarError):
    """A single activity could not be fetched. Safe to retry."""


class FetchAllFailedError(StravaCalendarError):
    """The activity listing could not be fetched. Safe to retry."""


class VerificationRejectedError(StravaCalendarError):
    """Webhook handshake used the wrong verify token."""


class StorageFailedError(StravaCalendarError):
    """A store backend failed; nothing was committed."""


class SyncTimeoutError(StravaCalendarError):
    """A resync ran past its deadline; the store was left untouched."""


class SubscriptionFailedError(StravaCalendarError):
    """Registering, listing or removing the push subscription failed."""
