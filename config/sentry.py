# coding: utf-8
"""
Sentry configuration for error monitoring
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT, SESSION_COOKIE_NAME

# Headers that carry credentials
FILTERED_HEADERS = ("Authorization", "Cookie", "X-API-Key", "X-Api-Key")


def init_sentry() -> None:
    """
    Initialize Sentry SDK (no-op when SENTRY_DSN is empty)
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                AioHttpIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Strip session cookies and upstream credentials from events
    """
    request = event.get("request")
    if request:
        headers = request.get("headers", {})
        for name in FILTERED_HEADERS:
            if name in headers:
                headers[name] = "[Filtered]"

        cookies = request.get("cookies")
        if isinstance(cookies, dict) and SESSION_COOKIE_NAME in cookies:
            cookies[SESSION_COOKIE_NAME] = "[Filtered]"

    return event


def set_user_context(user_id: int, username: str = None):
    """
    Attach the authenticated user to subsequent Sentry events

    Args:
        user_id: Database user ID
        username: Login name (optional)
    """
    sentry_sdk.set_user({
        "id": str(user_id),
        "username": username or f"user_{user_id}",
    })
