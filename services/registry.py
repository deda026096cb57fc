"""
services/registry.py -- Pick the live or disabled implementation of every
optional provider once, at startup.

build_services() is called from the api/main.py lifespan and from the CLI.
The result is stored on app.state.services; route handlers and background
tasks receive the individual adapters from there. Nothing in this package
reads Settings on its own.

Selection:
  temp store    Upstash REST  > SQLite (TEMP_STORE_URL)  > disabled
  rate limits   RATELIMIT_STORAGE_URI                    > disabled (None limiters)
  job queue     QStash                                   > disabled stub
  email         Resend                                   > disabled (raises)
  mailing list  Unsend                                   > disabled no-op
  passkeys      Hanko                                    > disabled (raises)
  slack         SlackClient                              > None
"""

import logging
from dataclasses import dataclass
from typing import Optional

from auth.passkeys import DisabledPasskeys, HankoPasskeys, Passkeys
from core.config import Settings
from integrations.slack.client import SlackClient, SlackNotConfigured
from services.email import DisabledEmailSender, EmailSender, ResendEmailSender
from services.kv import DisabledTempStore, SQLiteTempStore, TempStore, UpstashRedisStore
from services.mailing_list import DisabledMailingList, MailingList, UnsendMailingList
from services.queue import DisabledQueue, JobQueue, QStashQueue, QStashReceiver
from services.ratelimit import RateLimits

logger = logging.getLogger("docroom.services")


@dataclass
class Services:
    temp_store: TempStore
    rate_limits: RateLimits
    queue: JobQueue
    receiver: QStashReceiver
    email: EmailSender
    mailing_list: MailingList
    passkeys: Passkeys
    slack_client: Optional[SlackClient] = None

    def components(self) -> dict[str, str]:
        """Return {component: "enabled" | "disabled"} for the health endpoint."""

        def state(on: bool) -> str:
            return "enabled" if on else "disabled"

        return {
            "temp_store": state(self.temp_store.available),
            "rate_limits": state(self.rate_limits.enabled),
            "queue": state(self.queue.available),
            "email": state(self.email.available),
            "mailing_list": state(self.mailing_list.available),
            "passkeys": state(self.passkeys.is_configured()),
            "slack": state(self.slack_client is not None),
        }

    def close(self) -> None:
        for adapter in (self.temp_store, self.queue, self.email, self.mailing_list, self.passkeys):
            try:
                adapter.close()
            except Exception as e:
                logger.warning("Error closing %s: %s", type(adapter).__name__, e)


def _build_temp_store(settings: Settings) -> TempStore:
    if settings.redis_configured:
        return UpstashRedisStore(settings.upstash_redis_rest_url, settings.upstash_redis_rest_token)
    if settings.temp_store_url:
        return SQLiteTempStore(settings.temp_store_url)
    logger.warning("No temporary store configured -- email change is unavailable")
    return DisabledTempStore()


def build_services(settings: Settings) -> Services:
    temp_store = _build_temp_store(settings)

    if settings.qstash_configured:
        queue: JobQueue = QStashQueue(settings.qstash_token, settings.qstash_url)
    else:
        queue = DisabledQueue()

    if settings.resend_configured:
        email: EmailSender = ResendEmailSender(
            settings.resend_api_key,
            from_system=settings.email_from_system,
            from_marketing=settings.email_from_marketing,
        )
    else:
        logger.warning("RESEND_API_KEY not set -- outgoing email is disabled")
        email = DisabledEmailSender()

    if settings.unsend_configured:
        mailing_list: MailingList = UnsendMailingList(
            settings.unsend_api_key, settings.unsend_contact_book_id, settings.unsend_base_url
        )
    else:
        mailing_list = DisabledMailingList()

    if settings.hanko_configured:
        passkeys: Passkeys = HankoPasskeys(settings.hanko_api_url, settings.hanko_tenant_id, settings.hanko_api_key)
    else:
        passkeys = DisabledPasskeys()

    try:
        slack_client: Optional[SlackClient] = SlackClient(settings)
    except SlackNotConfigured as e:
        logger.info("%s -- Slack notifications disabled", e)
        slack_client = None

    services = Services(
        temp_store=temp_store,
        rate_limits=RateLimits(settings.ratelimit_storage_uri),
        queue=queue,
        receiver=QStashReceiver(settings.qstash_current_signing_key, settings.qstash_next_signing_key),
        email=email,
        mailing_list=mailing_list,
        passkeys=passkeys,
        slack_client=slack_client,
    )
    logger.info("Services initialized: %s", services.components())
    return services
