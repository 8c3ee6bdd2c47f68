"""
Manage the single Strava push subscription that points at our /hook.
"""

from loguru import logger


class SubscriptionManager:
    def __init__(self, provider, credential_store, callback_url, verify_token):
        self.provider = provider
        self.store = credential_store
        self.callback_url = callback_url
        self.verify_token = verify_token

    def register(self):
        logger.info(f"Registering webhook subscription for {self.callback_url}")
        subscription_id = self.provider.register_subscription(self.callback_url, self.verify_token)
        self.store.save_subscription_id(subscription_id)
        logger.info(f"Webhook registered with subscription id {subscription_id}")
        return subscription_id

    def current(self):
        """Id of the active subscription: the stored one if Strava still lists it."""
        listed = self.provider.list_subscriptions()
        stored = self.store.load_subscription_id()
        if stored is not None and stored in listed:
            return stored
        return listed[0] if listed else None

    def unregister(self):
        """Remove the subscription; returns its id, or None if there was none."""
        subscription_id = self.store.load_subscription_id()
        if subscription_id is None:
            subscription_id = self.current()
        if subscription_id is None:
            logger.info("No webhook subscription to unregister")
            return None

        logger.info(f"Unregistering webhook, subscription id {subscription_id}")
        self.provider.unregister_subscription(subscription_id)
        self.store.clear_subscription_id()
        return subscription_id
