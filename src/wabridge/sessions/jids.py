"""Routing identifier (JID) categories and the ignore filter."""

import re
from typing import Any

from wabridge.config import IgnoreRules

STATUS_BROADCAST_JID = "status@broadcast"

_BOT_USER_PATTERN = re.compile(r"^1313555\d{4}$|^131655500\d{2}$")


def is_group(jid: str) -> bool:
    return jid.endswith("@g.us")


def is_status_broadcast(jid: str) -> bool:
    return jid == STATUS_BROADCAST_JID


def is_broadcast(jid: str) -> bool:
    return jid.endswith("@broadcast")


def is_newsletter(jid: str) -> bool:
    return jid.endswith("@newsletter")


def is_bot(jid: str) -> bool:
    return jid.endswith("@c.us") and bool(_BOT_USER_PATTERN.match(jid.split("@")[0]))


def is_meta_ai(jid: str) -> bool:
    return jid.endswith("@bot")


def should_ignore_jid(jid: str, rules: IgnoreRules) -> bool:
    """Return True if traffic on ``jid`` must not produce a webhook."""
    if not jid:
        return False
    if rules.groups and is_group(jid):
        return True
    if rules.status and is_status_broadcast(jid):
        return True
    if rules.broadcasts and is_broadcast(jid) and not is_status_broadcast(jid):
        return True
    if rules.newsletters and is_newsletter(jid):
        return True
    if rules.bots and is_bot(jid):
        return True
    if rules.meta_ai and is_meta_ai(jid):
        return True
    return False


def routing_jid(item: Any) -> str:
    """Best-effort ``key.remoteJid`` of a message, update or receipt entry."""
    if not isinstance(item, dict):
        return ""
    key = item.get("key")
    if isinstance(key, dict):
        return key.get("remoteJid") or ""
    return ""


def filter_ignored(items: list[Any], rules: IgnoreRules) -> list[Any]:
    """Drop entries routed through an ignored JID."""
    return [item for item in items if not should_ignore_jid(routing_jid(item), rules)]
