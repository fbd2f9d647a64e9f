from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional

from signal_relay.utils.logger import audit, get_logger

USER_WINDOW = timedelta(hours=1)


@dataclass
class UsageCounters:
    day_key: date
    model_calls_today: int = 0
    messages_sent_today: int = 0


@dataclass
class UserWindow:
    window_start: datetime
    request_count: int = 0


@dataclass
class UsageLimits:
    max_daily_model_calls: int = 20
    max_daily_messages: int = 50
    max_user_requests_per_hour: int = 5


class UsageTracker:
    """
    In-memory quota state for one process.

    - Daily counters (model calls, messages, reservations) reset on date rollover.
    - Per-user hourly windows reset once more than an hour has elapsed.
      Expired windows are dropped when a new user shows up.
    - Model calls are reserved before the call and only counted after a
      confirmed success; a failed call releases its reservation.

    Nothing here is shared across processes: N instances allow N x quota.
    """

    def __init__(self, limits: Optional[UsageLimits] = None, clock: Callable[[], datetime] = datetime.now):
        self.limits = limits or UsageLimits()
        self.clock = clock
        self.counters = UsageCounters(day_key=self.clock().date())
        self.in_flight = 0
        self.users: Dict[str, UserWindow] = {}
        self.logger = get_logger("usage.audit")

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = datetime.now):
        limits = UsageLimits(
            max_daily_model_calls=settings.max_daily_model_calls,
            max_daily_messages=settings.max_daily_messages,
            max_user_requests_per_hour=settings.max_user_requests_per_hour,
        )
        return cls(limits, clock=clock)

    # -------------------------
    # Rollover
    # -------------------------
    def reset_if_new_day(self) -> bool:
        today = self.clock().date()
        if self.counters.day_key == today:
            return False
        old = self.counters.day_key
        self.counters = UsageCounters(day_key=today)
        self.in_flight = 0
        audit(self.logger, "RESET", scope="daily", reason=f"New Day: {old} -> {today}")
        return True

    def prune_expired_windows(self) -> int:
        now = self.clock()
        expired = [uid for uid, w in self.users.items() if now - w.window_start > USER_WINDOW]
        for uid in expired:
            del self.users[uid]
        return len(expired)

    def reset_if_window_expired(self, user_id: str) -> UserWindow:
        now = self.clock()
        window = self.users.get(user_id)
        if window is None:
            self.prune_expired_windows()
            window = self.users[user_id] = UserWindow(window_start=now)
        elif now - window.window_start > USER_WINDOW:
            window.request_count = 0
            window.window_start = now
        return window

    # -------------------------
    # Global model-call quota
    # -------------------------
    def check_and_reserve_global_call(self) -> bool:
        """Permit a model call; does not count it (see record_global_call_success)."""
        self.reset_if_new_day()
        used = self.counters.model_calls_today + self.in_flight
        if used >= self.limits.max_daily_model_calls:
            audit(self.logger, "REJECT", scope="global",
                  call_count=self.counters.model_calls_today, in_flight=self.in_flight,
                  cap_limit=self.limits.max_daily_model_calls, reason="DAILY_CAP_EXCEEDED")
            return False
        self.in_flight += 1
        return True

    def release_global_call(self) -> None:
        if self.in_flight > 0:
            self.in_flight -= 1

    def record_global_call_success(self, reserved: bool = True) -> None:
        self.reset_if_new_day()
        if reserved:
            self.release_global_call()
        self.counters.model_calls_today += 1

    # -------------------------
    # Per-user hourly quota
    # -------------------------
    def check_and_reserve_user_request(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        window = self.reset_if_window_expired(user_id)
        if window.request_count >= self.limits.max_user_requests_per_hour:
            audit(self.logger, "REJECT", scope="user", user_id=user_id,
                  request_count=window.request_count, reason="HOURLY_USER_CAP")
            return False
        window.request_count += 1
        return True

    # -------------------------
    # Daily message quota
    # -------------------------
    def can_send_message(self) -> bool:
        self.reset_if_new_day()
        return self.counters.messages_sent_today < self.limits.max_daily_messages

    def record_message_sent(self) -> None:
        self.reset_if_new_day()
        self.counters.messages_sent_today += 1

    def remaining_messages(self) -> int:
        self.reset_if_new_day()
        return max(0, self.limits.max_daily_messages - self.counters.messages_sent_today)

    # -------------------------
    # Status
    # -------------------------
    def snapshot(self) -> dict:
        self.reset_if_new_day()
        self.prune_expired_windows()

        def _usage(used, limit):
            return {
                "used": used,
                "limit": limit,
                "percentage": round(used / limit * 100) if limit else 0,
            }

        return {
            "day": self.counters.day_key.isoformat(),
            "model_calls": _usage(self.counters.model_calls_today, self.limits.max_daily_model_calls),
            "messages": _usage(self.counters.messages_sent_today, self.limits.max_daily_messages),
            "tracked_users": len(self.users),
        }
