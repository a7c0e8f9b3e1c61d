# notifier/services/gate.py
"""
Send policy for outbound channels.

A live send must pass every check, in order: mode, explicit live flag,
environment, recipient allowlist, then the sliding 60-second rate limit.
The first failing check is reported back to the caller.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from notifier.models import Channel, GateDecision
from notifier.services.formatting import normalize_digits
from notifier.settings import SendMode, Settings

WINDOW_SECONDS = 60.0


class ChannelPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: SendMode = "off"
    allow_live: bool = False
    allow_non_prod: bool = False
    allowlist: Tuple[str, ...] = ()
    max_per_minute: int = 0


def policies_from_settings(settings: Settings) -> Dict[Channel, ChannelPolicy]:
    return {
        Channel.SMS: ChannelPolicy(
            mode=settings.sms_mode,
            allow_live=settings.sms_allow_live,
            allow_non_prod=settings.sms_allow_non_prod,
            allowlist=settings.sms_allowlist_numbers,
            max_per_minute=settings.sms_max_per_minute,
        ),
        Channel.EMAIL: ChannelPolicy(
            mode=settings.email_mode,
            allow_live=settings.email_allow_live,
            allow_non_prod=settings.email_allow_non_prod,
            allowlist=settings.email_allowlist_addresses,
            max_per_minute=settings.email_max_per_minute,
        ),
    }


def normalize_recipient(channel: Channel, recipient: Optional[str]) -> str:
    value = str(recipient or "").strip()
    if channel == Channel.SMS:
        return normalize_digits(value)
    return value.lower()


class SlidingWindowRateLimiter:
    """
    At most `max_events` acquisitions in any trailing `window` seconds.
    max_events == 0 disables the limit. Not persisted; resets on restart.
    """

    def __init__(self, max_events: int, window: float = WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.max_events = max_events
        self.window = window
        self.clock = clock
        self._stamps: Deque[float] = deque()

    def _evict(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= self.window:
            self._stamps.popleft()

    def try_acquire(self) -> bool:
        if not self.max_events:
            return True
        now = self.clock()
        self._evict(now)
        if len(self._stamps) >= self.max_events:
            return False
        # recorded at attempt time, not on confirmed delivery
        self._stamps.append(now)
        return True

    def in_window(self) -> int:
        self._evict(self.clock())
        return len(self._stamps)


class NotificationGate:
    """
    can_send() mutates nothing but the limiter windows. All callers share one
    event loop, which serialises access to those windows.
    """

    def __init__(
        self,
        policies: Dict[Channel, ChannelPolicy],
        *,
        is_production: bool,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies = policies
        self.is_production = is_production
        self._limiters = {
            channel: SlidingWindowRateLimiter(policy.max_per_minute, clock=clock)
            for channel, policy in policies.items()
        }

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "NotificationGate":
        return cls(policies_from_settings(settings), is_production=settings.is_production, clock=clock)

    def mode(self, channel: Channel) -> SendMode:
        return self.policies.get(channel, ChannelPolicy()).mode

    def can_send(self, channel: Channel, recipient: Optional[str]) -> GateDecision:
        policy = self.policies.get(channel)
        if policy is None:
            return GateDecision.block(f"no policy for channel {channel.value}")

        if policy.mode != "live":
            return GateDecision.block(f"mode is {policy.mode}")
        if not policy.allow_live:
            return GateDecision.block("live sends not allowed (allow-live flag unset)")
        if not self.is_production and not policy.allow_non_prod:
            return GateDecision.block("non-production environment (allow-non-prod flag unset)")

        normalized = normalize_recipient(channel, recipient)
        if not normalized:
            return GateDecision.block("empty recipient")
        if policy.allowlist and normalized not in policy.allowlist:
            return GateDecision.block(f"recipient {normalized} not in allowlist")

        if not self._limiters[channel].try_acquire():
            return GateDecision.block(
                f"rate limit reached ({policy.max_per_minute}/{int(WINDOW_SECONDS)}s)"
            )
        return GateDecision.allow()
