"""
Outbound calls to the Strava API.

ProviderClient is stateless apart from the HTTP session and the app's client
credentials. Raw Strava payloads are validated with pydantic and turned into
the canonical models here, so no other module sees Strava field names.
"""

import time
from urllib.parse import urlencode

import requests
from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import (
    ExchangeFailedError,
    FetchActivityFailedError,
    FetchAllFailedError,
    RefreshFailedError,
    SubscriptionFailedError,
    SyncTimeoutError,
)
from .models import Activity, Credential, format_activity_type, parse_start_time

OAUTH_URL = "https://www.strava.com/oauth"
API_URL = "https://www.strava.com/api/v3"
DEFAULT_PAGE_SIZE = 200  # Strava max is 200 per page


class TokenPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    access_token: str
    refresh_token: str
    expires_at: int

    def to_credential(self):
        return Credential(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )


class RawActivity(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int
    name: str | None = None
    distance: float | None = None
    total_elevation_gain: float | None = None
    elapsed_time: int | None = None
    average_speed: float | None = None
    average_watts: float | None = None
    average_cadence: float | None = None
    timezone: str | None = None
    sport_type: str | None = None
    type: str | None = None
    # kept as text: a bad timestamp maps to EPOCH instead of failing validation
    start_date: str | None = None

    def to_activity(self):
        return Activity(
            id=self.id,
            name=self.name or '',
            activity_type=format_activity_type(self.sport_type or self.type),
            start_time=parse_start_time(self.start_date),
            elapsed_time=self.elapsed_time or 0,
            distance=self.distance or 0.0,
            elevation_gain=self.total_elevation_gain or 0.0,
            average_speed=self.average_speed or 0.0,
            average_watts=self.average_watts or 0.0,
            average_cadence=self.average_cadence or 0.0,
            timezone=self.timezone or '',
        )


class SubscriptionPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int


class ProviderClient:
    def __init__(self, client_id, client_secret, oauth_url=OAUTH_URL, api_url=API_URL,
                 timeout=15, session=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.oauth_url = oauth_url.rstrip('/')
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method, url, error_cls, expected=(200,), timeout=None, **kwargs):
        """Send one request and return the response, or raise error_cls."""
        try:
            resp = self.session.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise error_cls(f"{method} {url} failed: {e}") from e

        if resp.status_code not in expected:
            logger.error(f"{method} {url} returned {resp.status_code}: {resp.text}")
            raise error_cls(f"{method} {url} returned status {resp.status_code}")
        return resp

    @staticmethod
    def _json(resp, error_cls):
        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"response body is not JSON: {e}") from e

    def _auth_headers(self, access_token):
        return {'Authorization': f"Bearer {access_token}"}

    def _client_params(self, **extra):
        params = {'client_id': self.client_id, 'client_secret': self.client_secret}
        params.update(extra)
        return params

    # --- OAuth ---

    def authorize_url(self, redirect_uri, scope='activity:read_all'):
        query = urlencode({
            'client_id': self.client_id,
            'response_type': 'code',
            'redirect_uri': redirect_uri,
            'approval_prompt': 'auto',
            'scope': scope,
        })
        return f"{self.oauth_url}/authorize?{query}"

    def _token_call(self, data, error_cls):
        resp = self._request('POST', f"{self.oauth_url}/token", error_cls, data=data)
        try:
            return TokenPayload.model_validate(self._json(resp, error_cls)).to_credential()
        except ValidationError as e:
            raise error_cls(f"unexpected token payload: {e}") from e

    def exchange_code(self, code):
        data = self._client_params(code=code, grant_type='authorization_code')
        return self._token_call(data, ExchangeFailedError)

    def refresh_token(self, refresh_token):
        data = self._client_params(refresh_token=refresh_token, grant_type='refresh_token')
        return self._token_call(data, RefreshFailedError)

    # --- Activities ---

    def fetch_activity(self, access_token, activity_id):
        url = f"{self.api_url}/activities/{activity_id}"
        resp = self._request('GET', url, FetchActivityFailedError,
                             headers=self._auth_headers(access_token))
        try:
            raw = RawActivity.model_validate(self._json(resp, FetchActivityFailedError))
        except ValidationError as e:
            raise FetchActivityFailedError(f"unexpected activity payload: {e}") from e
        return raw.to_activity()

    def fetch_activities(self, access_token, page_size=DEFAULT_PAGE_SIZE, deadline=None,
                         clock=time.monotonic):
        """Fetch every page of the athlete's activities.

        deadline is an absolute clock() value; once it passes, SyncTimeoutError
        is raised and nothing fetched so far is returned.
        """
        activities = []
        page = 1
        while True:
            timeout = self.timeout
            if deadline is not None:
                remaining = deadline - clock()
                if remaining <= 0:
                    raise SyncTimeoutError(f"deadline passed before page {page}")
                timeout = min(timeout, remaining)

            try:
                resp = self._request(
                    'GET', f"{self.api_url}/athlete/activities", FetchAllFailedError,
                    timeout=timeout,
                    headers=self._auth_headers(access_token),
                    params={'per_page': page_size, 'page': page},
                )
            except FetchAllFailedError as e:
                if deadline is not None and isinstance(e.__cause__, requests.Timeout) \
                        and clock() >= deadline:
                    raise SyncTimeoutError(f"deadline passed while fetching page {page}") from e
                raise

            payload = self._json(resp, FetchAllFailedError)
            if not isinstance(payload, list):
                raise FetchAllFailedError(f"expected a list of activities, got {type(payload).__name__}")
            try:
                activities.extend(RawActivity.model_validate(raw).to_activity() for raw in payload)
            except ValidationError as e:
                raise FetchAllFailedError(f"unexpected activity payload on page {page}: {e}") from e

            logger.debug(f"Fetched page {page} with {len(payload)} activities")
            if len(payload) < page_size:
                break
            page += 1

        return activities

    # --- Push subscriptions ---

    def register_subscription(self, callback_url, verify_token):
        data = self._client_params(callback_url=callback_url, verify_token=verify_token)
        resp = self._request('POST', f"{self.api_url}/push_subscriptions",
                             SubscriptionFailedError, expected=(201,), data=data)
        try:
            return SubscriptionPayload.model_validate(self._json(resp, SubscriptionFailedError)).id
        except ValidationError as e:
            raise SubscriptionFailedError(f"unexpected subscription payload: {e}") from e

    def list_subscriptions(self):
        resp = self._request('GET', f"{self.api_url}/push_subscriptions",
                             SubscriptionFailedError, params=self._client_params())
        payload = self._json(resp, SubscriptionFailedError)
        if not isinstance(payload, list):
            raise SubscriptionFailedError("expected a list of subscriptions")
        try:
            return [SubscriptionPayload.model_validate(item).id for item in payload]
        except ValidationError as e:
            raise SubscriptionFailedError(f"unexpected subscription payload: {e}") from e

    def unregister_subscription(self, subscription_id):
        self._request('DELETE', f"{self.api_url}/push_subscriptions/{subscription_id}",
                      SubscriptionFailedError, expected=(204,), params=self._client_params())
