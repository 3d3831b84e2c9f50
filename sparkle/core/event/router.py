"""
Wildcard event-name matching.

Supported Patterns
------------------
- Exact:    "trade.completed" matches only itself
- Global:   "*" matches any event
- Prefix:   "realtime.*" matches "realtime.level_up", "realtime.trade_proposed"
- Suffix:   "*.completed" matches "trade.completed", "quest.completed"
- Sandwich: "quest.*.done" matches "quest.daily.done"

Matching is case-sensitive; repeated wildcards collapse to one.
"""

from __future__ import annotations


class EventRouter:
    """
    Stateless pattern matcher.

    >>> EventRouter().matches("realtime.level_up", "realtime.*")
    True
    >>> EventRouter().matches("trade.completed", "quest.*")
    False
    """

    def matches(self, event_name: str, pattern: str) -> bool:
        if pattern == "*":
            return True
        if "*" not in pattern:
            return event_name == pattern

        while "**" in pattern:
            pattern = pattern.replace("**", "*")

        head, *middle, tail = pattern.split("*")
        if not event_name.startswith(head) or not event_name.endswith(tail):
            return False
        if len(head) + len(tail) > len(event_name):
            return False

        cursor = len(head)
        limit = len(event_name) - len(tail)
        for piece in middle:
            found = event_name.find(piece, cursor, limit)
            if found == -1:
                return False
            cursor = found + len(piece)

        return True
