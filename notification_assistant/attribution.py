"""Sender attribution: decide who sent a notification and who the thread is with."""

import logging
from typing import Callable, Dict, Mapping, NamedTuple, Optional

from .models import SourceApp

logger = logging.getLogger(__name__)

# Extra carrying the phone owner's display name (Instagram encodes it here)
SELF_DISPLAY_NAME_EXTRA = "android.selfDisplayName"

UNKNOWN_DISPLAY_NAME = "Unknown"


class Attribution(NamedTuple):
    """
    Result of resolving one notification.

    display_name is empty for outgoing messages, meaning "do not overwrite
    the conversation's display name".
    """
    is_outgoing: bool
    speaker: str
    display_name: str


AttributionRule = Callable[[str, Optional[str], Mapping[str, str], str], Attribution]


def _outgoing(self_label: str) -> Attribution:
    return Attribution(True, self_label, "")


def _incoming(name: str) -> Attribution:
    name = (name or "").strip()
    if not name:
        return Attribution(False, UNKNOWN_DISPLAY_NAME, UNKNOWN_DISPLAY_NAME)
    return Attribution(False, name, name)


def resolve_default(
    title: str,
    sub_text: Optional[str],
    extras: Mapping[str, str],
    self_label: str,
) -> Attribution:
    """Title equal to the self label means outgoing; otherwise sub-text or title is the sender."""
    if title.strip().lower() == self_label.lower():
        return _outgoing(self_label)
    return _incoming(sub_text or title)


def resolve_instagram(
    title: str,
    sub_text: Optional[str],
    extras: Mapping[str, str],
    self_label: str,
) -> Attribution:
    """
    Instagram titles look like "<handle>: <name>".

    The name after the last colon is compared with the owner's display name
    carried in the extras; a match means the owner sent the message.
    """
    self_name = (extras.get(SELF_DISPLAY_NAME_EXTRA) or "").strip()

    colon = title.rfind(":")
    if colon != -1 and colon < len(title) - 1:
        name_in_title = title[colon + 1:].strip()
        if self_name and name_in_title.lower() == self_name.lower():
            return _outgoing(self_label)
        return _incoming(name_in_title)

    if self_name and title.strip().lower() == self_name.lower():
        return _outgoing(self_label)
    return _incoming(title)


# Every SourceApp maps to a rule; apps without a quirk use the default
ATTRIBUTION_RULES: Dict[SourceApp, AttributionRule] = {
    app: resolve_default for app in SourceApp
}
ATTRIBUTION_RULES[SourceApp.INSTAGRAM] = resolve_instagram


def resolve(
    source_app: str,
    title: str,
    sub_text: Optional[str] = None,
    extras: Optional[Mapping[str, str]] = None,
    self_label: str = "You",
) -> Attribution:
    """
    Attribute one notification.

    Args:
        source_app: Package name of the posting app.
        title: Notification title.
        sub_text: Optional sender hint.
        extras: Source-provided key/value extras.
        self_label: Sentinel used for the phone owner.

    Returns:
        An Attribution. Never raises; unresolvable input degrades to
        "incoming from <title>" (or "Unknown" when the title is blank).
    """
    app = SourceApp.from_package(source_app)
    rule = ATTRIBUTION_RULES[app]
    try:
        return rule(title or "", sub_text or None, extras or {}, self_label)
    except Exception as e:
        logger.warning(f"Attribution failed for {source_app}: {e}")
        return _incoming(title or "")
