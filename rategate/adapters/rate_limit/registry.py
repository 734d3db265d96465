"""In-memory registry of traffic group policies.

Read on every admission check, written rarely (startup and admin updates).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class GroupPolicy:
    """Capacity policy of one traffic group.

    Attributes:
        name: Traffic class identifier (e.g., "login", "withdraw").
        max: Maximum weighted events allowed per window.
        window_seconds: Rolling window length in seconds.
    """

    name: str
    max: int
    window_seconds: float

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("group name must be a non-empty string")
        if self.max < 0:
            raise ValueError("max must be >= 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

    @property
    def window_ms(self) -> int:
        return int(self.window_seconds * 1000)


def zero_policy(name: str) -> GroupPolicy:
    """Fail-closed policy for groups nobody registered: every weight > 0 is rejected."""
    return GroupPolicy(name=name, max=0, window_seconds=1)


class GroupRegistry:
    """Thread-safe mapping from group name to its policy."""

    def __init__(self, policies: list[GroupPolicy] | None = None) -> None:
        self._lock = threading.Lock()
        self._policies: dict[str, GroupPolicy] = {}
        for policy in policies or []:
            self.register(policy)

    def register(self, policy: GroupPolicy) -> None:
        """Install ``policy``, replacing any earlier one with the same name."""
        with self._lock:
            self._policies[policy.name] = policy

    def register_group(self, name: str, max: int, window_seconds: float) -> GroupPolicy:
        """Build a policy from its parts and install it.

        Args:
            name: Traffic group name.
            max: Maximum weighted events per window (0 rejects everything).
            window_seconds: Rolling window length in seconds.

        Returns:
            The installed policy.

        Raises:
            ValueError: If the name is empty, max is negative or the window
                is not positive. The registry is left unchanged.
        """
        policy = GroupPolicy(name=name, max=max, window_seconds=window_seconds)
        self.register(policy)
        return policy

    def lookup(self, group: str) -> GroupPolicy:
        """Return the policy of ``group``, or the zero policy if none is registered.

        Never does I/O; called on every admission check.
        """
        with self._lock:
            policy = self._policies.get(group)
        return policy if policy is not None else zero_policy(group)

    def groups(self) -> list[GroupPolicy]:
        """Snapshot of all registered policies, sorted by name."""
        with self._lock:
            return sorted(self._policies.values(), key=lambda p: p.name)
