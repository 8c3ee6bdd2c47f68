#!/usr/bin/env python3
"""
Flask app: Strava OAuth, webhook receiver, resync trigger and calendar feed.

Usage:
    python3 strava_webhook.py [port]

Default port: 8080
"""

import sys

from flask import Flask, Response, jsonify, redirect, request
from loguru import logger

from strava_calendar import Config, build_services, setup_logger
from strava_calendar.errors import (
    ConfigError,
    ExchangeFailedError,
    FetchActivityFailedError,
    FetchAllFailedError,
    NoCredentialError,
    RefreshFailedError,
    StorageFailedError,
    StravaCalendarError,
    SubscriptionFailedError,
    SyncTimeoutError,
    VerificationRejectedError,
)
from strava_calendar.models import WebhookEvent

# Non-2xx on webhook failures makes Strava redeliver the event.
ERROR_STATUS = {
    VerificationRejectedError: 403,
    NoCredentialError: 401,
    ExchangeFailedError: 502,
    RefreshFailedError: 502,
    FetchActivityFailedError: 502,
    FetchAllFailedError: 502,
    SubscriptionFailedError: 502,
    SyncTimeoutError: 504,
    StorageFailedError: 500,
}


def status_for(error):
    for error_cls, status in ERROR_STATUS.items():
        if isinstance(error, error_cls):
            return status
    return 500


def create_app(services):
    app = Flask(__name__)
    app.config['SERVICES'] = services

    @app.errorhandler(StravaCalendarError)
    def handle_error(error):
        status = status_for(error)
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {error!r}")
        else:
            logger.warning(f"{request.method} {request.path} rejected: {error!r}")
        return jsonify({"error": type(error).__name__, "message": str(error)}), status

    # --- Status ---

    @app.route('/')
    def index():
        return jsonify({
            "authorized": services.credential_store.load() is not None,
            "activities": len(services.activity_store.list()),
            "subscription_id": services.credential_store.load_subscription_id(),
        })

    @app.route('/health')
    def health():
        return jsonify({"status": "ok"})

    # --- OAuth ---

    @app.route('/auth/start')
    def auth_start():
        return redirect(services.provider.authorize_url(services.config.redirect_uri))

    @app.route('/auth')
    def auth():
        code = request.args.get('code')
        if not code:
            return jsonify({"error": "Missing code parameter"}), 400
        services.tokens.exchange(code)
        return redirect('/')

    # --- Webhook ---

    @app.route('/hook', methods=['GET', 'POST'])
    def hook():
        if request.method == 'GET':
            logger.info("Webhook verification request received")
            # Strava sends hub.* names; bare names are accepted too
            prefix = 'hub.' if any(k.startswith('hub.') for k in request.args) else ''
            challenge = services.sync.verify(
                request.args.get(prefix + 'verify_token'),
                request.args.get(prefix + 'challenge'),
            )
            if not challenge:
                return jsonify({"error": "Missing challenge parameter"}), 400
            return jsonify({prefix + 'challenge': challenge})

        payload = request.get_json(silent=True)
        logger.debug(f"Received webhook event: {payload}")
        try:
            event = WebhookEvent.from_payload(payload)
        except ValueError as e:
            logger.warning(f"Malformed webhook event: {e}")
            return jsonify({"error": "Failed to parse webhook data", "message": str(e)}), 400

        outcome = services.sync.apply(event)
        return jsonify({"status": outcome})

    # --- Resync ---

    @app.route('/fetch', methods=['GET', 'POST'])
    def fetch():
        count = services.sync.resync_all(timeout=services.config.resync_timeout)
        return jsonify({"status": "activities fetched", "count": count})

    # --- Calendar feed ---

    @app.route('/calendar')
    def calendar():
        ics = services.feed.render(services.activity_store.list())
        resp = Response(ics, status=200, mimetype='text/calendar')
        resp.headers['Content-Type'] = 'text/calendar; charset=utf-8'
        resp.headers['Content-Disposition'] = 'attachment; filename="strava.ics"'
        resp.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        return resp

    # --- Push subscription ---

    @app.route('/subscriptions', methods=['GET', 'POST', 'DELETE'])
    def subscriptions():
        if request.method == 'POST':
            subscription_id = services.subscriptions.register()
            return jsonify({"status": "webhook registered", "subscription_id": subscription_id}), 201
        if request.method == 'DELETE':
            subscription_id = services.subscriptions.unregister()
            if subscription_id is None:
                return jsonify({"status": "no webhook registered"})
            return jsonify({"status": "webhook unregistered", "subscription_id": subscription_id})
        return jsonify({"subscription_id": services.subscriptions.current()})

    return app


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    port = 8080
    if argv:
        try:
            port = int(argv[0])
        except ValueError:
            print(f"Invalid port: {argv[0]}")
            print("Usage: python3 strava_webhook.py [port]")
            sys.exit(1)

    try:
        config = Config.from_env()
    except ConfigError as e:
        print(f"✗ {e}")
        sys.exit(1)

    setup_logger(config.log_level)
    logger.info(f"Strava Calendar is starting with {config.storage_backend} storage")
    app = create_app(build_services(config))
    app.run(host='0.0.0.0', port=port, threaded=True)


if __name__ == '__main__':
    main()
