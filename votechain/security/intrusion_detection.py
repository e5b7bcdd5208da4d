# votechain/security/intrusion_detection.py

import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone

# Brute-force throttling for authentication factors. Failed attempts are
# counted per key (username + client address + factor), so passing one factor
# never resets the count of another. Too many failures inside the window lock
# the key out for a while. Stale keys are pruned every `prune_every` failures.


class IntrusionDetection:
    def __init__(self, max_attempts=5, window_minutes=15, lockout_minutes=5,
                 base_delay_seconds=1, max_delay_seconds=60, prune_every=100):
        """
        max_attempts: failures within `window_minutes` that trigger lockout
        window_minutes: sliding window to count failures
        lockout_minutes: duration of the lockout once max_attempts is reached
        base_delay_seconds: delay suggested after the first failure
        max_delay_seconds: cap for the exponential backoff delay
        prune_every: failures between sweeps of expired keys
        """
        self.failures = defaultdict(list)  # key -> list[datetime]
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self.lockout_duration = timedelta(minutes=lockout_minutes)
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds

        self.locks = {}  # key -> locked_until
        self.prune_every = prune_every
        self._failures_since_prune = 0
        self._mutex = threading.Lock()

    @staticmethod
    def make_key(username, remote_addr=None, factor="password"):
        return f"{(username or '').lower()}|{remote_addr or '-'}|{factor}"

    def _now(self):
        # extracted for easier monkeypatching in tests
        return datetime.now(timezone.utc)

    def record_failure(self, key):
        """Record a failed attempt for `key`.

        Returns the number of seconds the client should wait. While a lockout
        is in effect that is the remaining lockout time.
        """
        now = self._now()
        with self._mutex:
            self._failures_since_prune += 1
            if self._failures_since_prune >= self.prune_every:
                self._prune(now)

            locked_until = self.locks.get(key)
            if locked_until and now < locked_until:
                return int((locked_until - now).total_seconds())

            attempts = [t for t in self.failures[key] if now - t <= self.window]
            attempts.append(now)
            self.failures[key] = attempts

            if len(attempts) >= self.max_attempts:
                self.locks[key] = now + self.lockout_duration
                self.failures.pop(key, None)
                return int(self.lockout_duration.total_seconds())

            return int(min(self.base_delay_seconds * (2 ** (len(attempts) - 1)),
                           self.max_delay_seconds))

    def record_success(self, key):
        with self._mutex:
            self.failures.pop(key, None)

    def is_locked(self, key):
        now = self._now()
        with self._mutex:
            locked_until = self.locks.get(key)
            if locked_until and now < locked_until:
                return True
            self.locks.pop(key, None)
            return False

    def retry_after(self, key):
        locked_until = self.locks.get(key)
        if not locked_until:
            return 0
        return max(0, int((locked_until - self._now()).total_seconds()))

    def clear_old_records(self):
        with self._mutex:
            self._prune(self._now())

    def _prune(self, now):
        # caller holds _mutex
        for key, attempts in list(self.failures.items()):
            pruned = [t for t in attempts if now - t <= self.window]
            if pruned:
                self.failures[key] = pruned
            else:
                del self.failures[key]
        for key, locked_until in list(self.locks.items()):
            if now >= locked_until:
                del self.locks[key]
        self._failures_since_prune = 0
