"""
Keep the local activity mirror in step with Strava.

Webhook deliveries are at-least-once and may arrive out of order, so every
change is applied as an idempotent upsert or remove keyed by activity id,
always using the activity as Strava reports it now rather than the event
contents. A full resync fetches everything first and swaps the mirror in one
store call.
"""

import hmac
import time

from loguru import logger

from .errors import SyncTimeoutError, VerificationRejectedError
from .provider import DEFAULT_PAGE_SIZE


class SyncEngine:
    def __init__(self, token_manager, provider, activity_store, verify_token,
                 page_size=DEFAULT_PAGE_SIZE, clock=time.monotonic):
        self.tokens = token_manager
        self.provider = provider
        self.store = activity_store
        self.verify_token = verify_token
        self.page_size = page_size
        self.clock = clock

    def verify(self, verify_token, challenge):
        """Answer Strava's subscription handshake with the challenge."""
        if not verify_token or not hmac.compare_digest(
                str(verify_token).encode(), self.verify_token.encode()):
            raise VerificationRejectedError("verify token does not match")
        return challenge

    def apply(self, event):
        """Apply one webhook event and return what happened."""
        if event.object_type != 'activity':
            logger.debug(f"Ignoring {event.object_type} {event.aspect} event for {event.object_id}")
            return 'ignored'

        if event.aspect == 'delete':
            logger.info(f"Activity deleted webhook received: {event.object_id}")
            self.store.remove(event.object_id)
            return 'removed'

        logger.info(f"Activity {event.aspect} webhook received: {event.object_id}")
        credential = self.tokens.ensure_fresh()
        activity = self.provider.fetch_activity(credential.access_token, event.object_id)
        self.store.upsert(activity)
        return 'upserted'

    def resync_all(self, timeout=None):
        """Replace the mirror with every activity Strava has.

        Returns the number of activities stored. An empty listing leaves the
        mirror untouched and returns 0.
        """
        deadline = self.clock() + timeout if timeout is not None else None

        logger.info("Starting to fetch past activities")
        credential = self.tokens.ensure_fresh()
        activities = self.provider.fetch_activities(
            credential.access_token, page_size=self.page_size, deadline=deadline, clock=self.clock)
        logger.info(f"Successfully fetched past activities: {len(activities)}")

        if not activities:
            logger.warning("Strava returned no activities; keeping the existing mirror")
            return 0

        # last occurrence wins if a page boundary shifted mid-sweep
        unique = list({a.id: a for a in activities}.values())
        if deadline is not None and self.clock() >= deadline:
            raise SyncTimeoutError(f"Resync exceeded {timeout}s before the mirror was replaced")
        self.store.replace_all(unique)
        return len(unique)
