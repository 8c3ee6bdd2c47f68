"""
Generate the iCalendar feed from mirrored Strava activities.
"""

from datetime import datetime

from icalendar import Calendar, Event, vText
import pytz

UID_DOMAIN = 'strava-calendar'


def escape_text(text):
    """Escape a TEXT value: backslash first, then ';', ',' and newlines."""
    text = text.replace('\r\n', '\n')
    text = text.replace('\\', '\\\\')
    text = text.replace(';', '\\;')
    text = text.replace(',', '\\,')
    return text.replace('\n', '\\n')


class EscapedText(vText):
    """TEXT property written with escape_text instead of icalendar's escaping.

    icalendar rewrites a literal backslash-N to a newline before escaping,
    which corrupts names like C:\\New.
    """

    def to_ical(self):
        return escape_text(str(self)).encode(self.encoding)


def format_duration(seconds):
    """Compact duration like 1h2m3s, 25m0s or 45s."""
    seconds = max(int(seconds), 0)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def build_summary(activity):
    return f"{activity.activity_type} | {activity.name}"


def build_description(activity):
    """Plain-text event description; escaped by EscapedText on output."""
    desc_parts = [
        f"Duration: {format_duration(activity.elapsed_time)}",
        f"Distance: {activity.distance / 1000:.2f}km | Elevation: {activity.elevation_gain:.0f}m",
    ]
    if activity.average_speed > 0:
        desc_parts.append(f"Average Speed: {activity.average_speed * 3.6:.2f}km/h")
    if activity.average_watts > 0:
        desc_parts.append(f"Average Power: {activity.average_watts:.0f}W")
    if activity.average_cadence > 0:
        desc_parts.append(f"Average Cadence: {activity.average_cadence:.0f}rpm")
    desc_parts.append(activity.url)
    return '\n'.join(desc_parts)


def _utc(dt):
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


class FeedGenerator:
    def __init__(self, calendar_name=None):
        self.calendar_name = calendar_name

    def build_calendar(self, activities, now=None):
        """Build the Calendar; events ordered by start time, then id."""
        now = _utc(now or datetime.now(pytz.utc))

        cal = Calendar()
        cal.add('prodid', '-//Strava Calendar//EN')
        cal.add('version', '2.0')
        if self.calendar_name:
            cal.add('x-wr-calname', self.calendar_name)

        for activity in sorted(activities, key=lambda a: (a.start_time, a.id)):
            cal.add_component(self._create_event(activity, now))

        return cal

    def render(self, activities, now=None):
        """Render the feed as text. Same activities and `now` give identical output."""
        return self.build_calendar(activities, now).to_ical().decode('utf-8')

    def _create_event(self, activity, now):
        event = Event()
        event.add('uid', f"{activity.id}@{UID_DOMAIN}")
        event.add('dtstamp', now)
        event.add('dtstart', _utc(activity.start_time))
        event.add('dtend', _utc(activity.end_time))
        event.add('summary', EscapedText(build_summary(activity)))
        event.add('description', EscapedText(build_description(activity)))
        return event
