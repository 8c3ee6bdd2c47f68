#!/usr/bin/env python3
"""
Command-line tool for manual resyncs and webhook subscription management.

Usage:
    python sync_activities.py resync [--timeout 60]
    python sync_activities.py subscribe
    python sync_activities.py unsubscribe
    python sync_activities.py subscription
    python sync_activities.py calendar --output strava.ics
"""

import argparse
import sys

from loguru import logger

from strava_calendar import Config, build_services, setup_logger
from strava_calendar.errors import StravaCalendarError


def cmd_resync(services, args):
    timeout = args.timeout if args.timeout is not None else services.config.resync_timeout
    count = services.sync.resync_all(timeout=timeout)
    if count:
        print(f"✓ Synced {count} activities")
    else:
        print("No activities returned by Strava; existing mirror kept")


def cmd_subscribe(services, args):
    subscription_id = services.subscriptions.register()
    print(f"✓ Webhook registered (subscription {subscription_id})")


def cmd_unsubscribe(services, args):
    subscription_id = services.subscriptions.unregister()
    if subscription_id is None:
        print("No webhook subscription found")
    else:
        print(f"✓ Webhook unregistered (subscription {subscription_id})")


def cmd_subscription(services, args):
    subscription_id = services.subscriptions.current()
    if subscription_id is None:
        print("No webhook subscription registered")
    else:
        print(f"Active subscription: {subscription_id}")


def cmd_calendar(services, args):
    ics = services.feed.render(services.activity_store.list())
    with open(args.output, 'w', newline='') as f:
        f.write(ics)
    print(f"✓ Calendar written: {args.output}")


def build_parser():
    parser = argparse.ArgumentParser(description='Sync Strava activities to the calendar mirror')
    subparsers = parser.add_subparsers(dest='command', required=True)

    resync = subparsers.add_parser('resync', help='Replace the mirror with every Strava activity')
    resync.add_argument('--timeout', type=float, default=None,
                        help='Give up after this many seconds (default: RESYNC_TIMEOUT or none)')
    resync.set_defaults(func=cmd_resync)

    subparsers.add_parser('subscribe', help='Register the Strava webhook').set_defaults(func=cmd_subscribe)
    subparsers.add_parser('unsubscribe', help='Remove the Strava webhook').set_defaults(func=cmd_unsubscribe)
    subparsers.add_parser('subscription', help='Show the active webhook').set_defaults(func=cmd_subscription)

    calendar = subparsers.add_parser('calendar', help='Write the calendar feed to a file')
    calendar.add_argument('--output', default='strava.ics',
                          help='Output path (default: strava.ics)')
    calendar.set_defaults(func=cmd_calendar)
    return parser


def main(argv=None, services=None):
    args = build_parser().parse_args(argv)

    try:
        if services is None:
            config = Config.from_env()
            setup_logger(config.log_level)
            services = build_services(config)
        args.func(services, args)
    except StravaCalendarError as e:
        logger.error(f"{args.command} failed: {e!r}")
        print(f"✗ {type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
