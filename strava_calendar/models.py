"""
Canonical credential, activity and webhook event shapes.

Everything outside strava_calendar.provider works with these types only;
Strava's own field names stop at the provider boundary.
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone

import pytz

EPOCH = datetime(1970, 1, 1, tzinfo=pytz.utc)

# Strava sport_type codes -> calendar labels. Unknown codes pass through.
ACTIVITY_TYPES = {
    'AlpineSki': 'Alpine Ski',
    'BackcountrySki': 'Backcountry Ski',
    'Badminton': 'Badminton',
    'Canoeing': 'Canoeing',
    'Crossfit': 'Crossfit',
    'EBikeRide': 'E-Bike Ride',
    'Elliptical': 'Elliptical',
    'EMountainBikeRide': 'E-Mountain Bike Ride',
    'Golf': 'Golf',
    'GravelRide': 'Gravel Ride',
    'Handcycle': 'Handcycle',
    'HighIntensityIntervalTraining': 'High Intensity Interval Training',
    'Hike': 'Hike',
    'IceSkate': 'Ice Skate',
    'InlineSkate': 'Inline Skate',
    'Kayaking': 'Kayaking',
    'Kitesurf': 'Kitesurf',
    'MountainBikeRide': 'Mountain Bike Ride',
    'NordicSki': 'Nordic Ski',
    'Pickleball': 'Pickleball',
    'Pilates': 'Pilates',
    'Racquetball': 'Racquetball',
    'Ride': 'Ride',
    'RockClimbing': 'Rock Climbing',
    'RollerSki': 'Roller Ski',
    'Rowing': 'Rowing',
    'Run': 'Run',
    'Sail': 'Sail',
    'Skateboard': 'Skateboard',
    'Snowboard': 'Snowboard',
    'Snowshoe': 'Snowshoe',
    'Soccer': 'Soccer',
    'Squash': 'Squash',
    'StairStepper': 'Stair Stepper',
    'StandUpPaddling': 'Stand Up Paddling',
    'Surfing': 'Surfing',
    'Swim': 'Swim',
    'TableTennis': 'Table Tennis',
    'Tennis': 'Tennis',
    'TrailRun': 'Trail Run',
    'Velomobile': 'Velomobile',
    'VirtualRide': 'Virtual Ride',
    'VirtualRow': 'Virtual Row',
    'VirtualRun': 'Virtual Run',
    'Walk': 'Walk',
    'WeightTraining': 'Weight Training',
    'Wheelchair': 'Wheelchair',
    'Windsurf': 'Windsurf',
    'Workout': 'Workout',
    'Yoga': 'Yoga',
}

ASPECTS = ('create', 'update', 'delete')
OBJECT_TYPES = ('activity', 'athlete')


def format_activity_type(code):
    """Map a raw Strava sport code to its label, e.g. TrailRun -> Trail Run."""
    if code is None:
        return ''
    return ACTIVITY_TYPES.get(code, code)


RFC3339_PATTERN = re.compile(
    r'(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})', re.ASCII)


def parse_start_time(value):
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Anything missing, malformed or without an offset becomes EPOCH so one
    bad record never aborts a whole sync. Basic-format and minute-precision
    ISO 8601 strings are not RFC 3339 and also become EPOCH.
    """
    if not value or not isinstance(value, str):
        return EPOCH
    match = RFC3339_PATTERN.fullmatch(value)
    if match is None:
        return EPOCH
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    microsecond = int((fraction or '0')[:6].ljust(6, '0'))
    try:
        if offset == 'Z':
            tz = timezone.utc
        else:
            sign = -1 if offset[0] == '-' else 1
            tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6])))
        parsed = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second),
                          microsecond, tzinfo=tz)
    except ValueError:
        return EPOCH
    return parsed.astimezone(pytz.utc)


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    expires_at: int

    def is_expired(self, now, skew=10):
        return now >= self.expires_at - skew

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            access_token=data['access_token'],
            refresh_token=data['refresh_token'],
            expires_at=int(data['expires_at']),
        )


@dataclass(frozen=True)
class Activity:
    id: int
    name: str
    activity_type: str
    start_time: datetime
    elapsed_time: int = 0
    distance: float = 0.0
    elevation_gain: float = 0.0
    average_speed: float = 0.0
    average_watts: float = 0.0
    average_cadence: float = 0.0
    timezone: str = ''
    end_time: datetime = field(default=None)

    def __post_init__(self):
        # frozen, so derived fields go through object.__setattr__
        if self.elapsed_time < 0:
            object.__setattr__(self, 'elapsed_time', 0)
        if self.end_time is None:
            object.__setattr__(self, 'end_time', self.start_time + timedelta(seconds=self.elapsed_time))

    @property
    def url(self):
        return f"strava.com/activities/{self.id}"

    def to_dict(self):
        data = asdict(self)
        data['start_time'] = self.start_time.isoformat()
        data['end_time'] = self.end_time.isoformat()
        return data

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data['start_time'] = parse_start_time(data.get('start_time'))
        end_time = data.get('end_time')
        data['end_time'] = parse_start_time(end_time) if end_time else None
        return cls(**data)


@dataclass(frozen=True)
class WebhookEvent:
    """One push notification from Strava. Applied, never stored."""

    aspect: str
    object_type: str
    object_id: int
    owner_id: int
    event_time: int = None
    subscription_id: int = None
    updates: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload):
        """Build an event from the webhook JSON body; ValueError if malformed."""
        if not isinstance(payload, dict):
            raise ValueError("webhook payload must be a JSON object")

        aspect = payload.get('aspect_type')
        object_type = payload.get('object_type')
        if aspect not in ASPECTS:
            raise ValueError(f"unknown aspect_type: {aspect!r}")
        if object_type not in OBJECT_TYPES:
            raise ValueError(f"unknown object_type: {object_type!r}")

        try:
            object_id = int(payload['object_id'])
            owner_id = int(payload['owner_id'])
        except (KeyError, TypeError, ValueError):
            raise ValueError("object_id and owner_id must be integers") from None

        return cls(
            aspect=aspect,
            object_type=object_type,
            object_id=object_id,
            owner_id=owner_id,
            event_time=payload.get('event_time'),
            subscription_id=payload.get('subscription_id'),
            updates=payload.get('updates') or {},
        )
