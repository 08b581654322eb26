"""
Delivery dispatcher: user ids -> validated tokens -> provider batches.
A failed batch is recorded and the next batch still goes out.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from app.core.exceptions import PushGatewayError
from app.core.push_gateway import DEVICE_NOT_REGISTERED, PushGateway, PushMessage
from app.core.token_store import PushTokenStore, ValidatedPushToken
from app.core.utils import chunked, token_preview

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


@dataclass
class DispatchResult:
    success: bool = False
    messages_sent: int = 0
    errors: list[str] = field(default_factory=list)
    failed_tokens: list[str] = field(default_factory=list)
    # users whose delivery may succeed on a later attempt
    failed_user_ids: list[str] = field(default_factory=list)
    invalid_tokens: list[str] = field(default_factory=list)
    missing_users: list[str] = field(default_factory=list)
    batches_sent: int = 0
    tokens_found: int = 0


class PushDispatcher:
    def __init__(
        self,
        token_store: PushTokenStore,
        gateway: PushGateway,
        *,
        batch_size: int = MAX_BATCH_SIZE,
        batch_delay: float = 0.1,
        default_ttl: int = 3600,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.token_store = token_store
        self.gateway = gateway
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.batch_delay = batch_delay
        self.default_ttl = default_ttl
        self._sleep = sleep

    def _build_message(
        self,
        token: ValidatedPushToken,
        title: str,
        body: str,
        data: dict[str, Any] | None,
        options: dict[str, Any],
    ) -> PushMessage:
        return PushMessage(
            to=token.token,
            title=title,
            body=body,
            data={**(data or {}), "user_id": token.user_id, "platform": token.platform},
            sound=options.get("sound") or "default",
            badge=options.get("badge"),
            priority=options.get("priority") or "high",
            ttl=options.get("ttl") or self.default_ttl,
            channel_id=options.get("channel_id"),
        )

    async def send_to_users(
        self,
        user_ids: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> DispatchResult:
        result = DispatchResult()
        options = options or {}
        logger.info("Sending push notification to %d users", len(user_ids))

        lookup = await self.token_store.get_active_tokens_for_users(user_ids)
        result.invalid_tokens = list(lookup.invalid_tokens)
        result.missing_users = list(lookup.missing_users)
        result.tokens_found = len(lookup.tokens)
        if not lookup.tokens:
            logger.info("No active push tokens found for %d users", len(user_ids))
            result.errors.append("No active push tokens found")
            return result

        pairs = [(t, self._build_message(t, title, body, data, options)) for t in lookup.tokens]
        batches = list(chunked(pairs, self.batch_size))
        delivered: list[str] = []
        retryable: dict[str, None] = {}

        for index, batch in enumerate(batches, start=1):
            logger.debug("Sending batch %d/%d with %d messages", index, len(batches), len(batch))
            result.batches_sent += 1
            try:
                tickets = await self.gateway.send([message for _, message in batch])
            except PushGatewayError as e:
                logger.error("Push batch %d/%d failed: %s", index, len(batches), e)
                result.errors.append(f"Batch {index}: {e}")
                for token, _ in batch:
                    result.failed_tokens.append(token.token)
                    retryable[token.user_id] = None
            else:
                sent, failed = await self._apply_tickets(batch, tickets, result, retryable)
                delivered.extend(sent)
                logger.info("Batch %d results: %d sent, %d errors", index, len(sent), failed)

            if index < len(batches) and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

        result.messages_sent = len(delivered)
        result.success = result.messages_sent > 0
        result.failed_user_ids = list(retryable)
        if delivered:
            await self.token_store.mark_tokens_used(delivered)

        logger.info(
            "Push notification results: sent=%d errors=%d batches=%d",
            result.messages_sent, len(result.errors), result.batches_sent,
        )
        return result

    async def _apply_tickets(self, batch, tickets, result: DispatchResult, retryable: dict[str, None]) -> tuple[list[str], int]:
        sent: list[str] = []
        failed = 0
        for position, (token, _) in enumerate(batch):
            ticket = tickets[position] if position < len(tickets) else None
            if ticket is not None and ticket.ok:
                sent.append(token.token)
                continue

            failed += 1
            reason = (ticket and ticket.message) or "No ticket returned for message"
            result.errors.append(f"Token {token_preview(token.token)}: {reason}")
            result.failed_tokens.append(token.token)
            if ticket is not None and ticket.error == DEVICE_NOT_REGISTERED:
                await self.token_store.mark_token_invalid(token.token, f"Provider error: {DEVICE_NOT_REGISTERED}")
            else:
                await self.token_store.record_delivery_failure(token.token, reason)
                retryable[token.user_id] = None
        return sent, failed

