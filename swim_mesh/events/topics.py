"""SMF-style topic matching

Topics are ``/``-separated levels. In a subscription pattern:

- ``*`` on its own matches exactly one level
- ``abc*`` matches one level starting with ``abc``
- ``>`` as the last level matches one or more remaining levels
"""

import re
from typing import Any, Dict

TOPIC_PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_]+)\}")


def topic_matches(pattern: str, topic: str) -> bool:
    pattern_levels = pattern.split("/")
    topic_levels = topic.split("/")

    for index, level in enumerate(pattern_levels):
        if level == ">" and index == len(pattern_levels) - 1:
            return len(topic_levels) > index
        if index >= len(topic_levels):
            return False
        actual = topic_levels[index]
        if level == "*":
            if not actual:
                return False
            continue
        if level.endswith("*"):
            if not actual.startswith(level[:-1]):
                return False
            continue
        if level != actual:
            return False

    return len(pattern_levels) == len(topic_levels)


def render_topic(template: str, values: Dict[str, Any]) -> str:
    """Fill ``{name}`` placeholders; unknown names are left as-is."""
    def substitute(match):
        value = values.get(match.group(1))
        return str(value) if value not in (None, "") else match.group(0)

    return TOPIC_PLACEHOLDER.sub(substitute, template)
