"""SMS bodies sent by the scheduler, the conversation engine and grading."""

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Pack, Prop, SmsRule

logger = logging.getLogger(__name__)

PACK_OPEN_TRIGGER = "pack_open"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops tzinfo)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def pack_link(base_url: str, pack: Pack) -> str:
    return f"{base_url.rstrip('/')}/packs/{pack.url}"


def render_template(template: str, variables: dict[str, object]) -> str:
    """Replace ``{name}`` placeholders in one pass; unknown ones are left as-is.

    Substituted values are never scanned again, so a title containing
    ``{packUrl}`` stays literal.
    """

    def substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(substitute, template or "")


def humanize_time_left(close_time: datetime | None, now: datetime) -> str:
    """Short description of how long a pack stays open."""
    close_time = as_utc(close_time)
    if close_time is None:
        return ""

    seconds = int((close_time - now).total_seconds())
    if seconds <= 0:
        return "Closing now"

    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60

    if days:
        return f"{days}d {hours}h left"
    if hours:
        return f"{hours}h {minutes}m left"
    return f"{max(minutes, 1)}m left"


def prop_prompt(prop: Prop, position: int, total: int) -> str:
    """Prompt for one prop; ``position`` is 1-based."""
    return (
        f"{position}/{total} {prop.prop_short}\n"
        f"Reply A) {prop.side_a_label} or B) {prop.side_b_label}"
    )


def seed_prompt(pack: Pack, prop: Prop, total: int) -> str:
    """First message of an SMS conversation."""
    return f"Pack: {pack.title}\n" + prop_prompt(prop, 1, total)


def closing_message(pack: Pack, base_url: str) -> str:
    return (
        f"Thanks! Your takes on {pack.title} are in. "
        f"Track them here: {pack_link(base_url, pack)}"
    )


def graded_message(pack: Pack, base_url: str) -> str:
    return f"{pack.title} has been graded! See your results: {pack_link(base_url, pack)}"


async def resolve_pack_open_template(
    session: AsyncSession,
    league: str | None,
    default_template: str,
) -> str:
    """
    Find the active pack-open template.

    Preference: rule for the pack's league, then the league-agnostic rule
    (newest first within each), then ``default_template``.
    """
    league_key = (league or "").lower() or None

    query = (
        select(SmsRule)
        .where(
            SmsRule.trigger_type == PACK_OPEN_TRIGGER,
            SmsRule.active.is_(True),
        )
        .order_by(SmsRule.updated_at.desc())
    )
    rules = (await session.execute(query)).scalars().all()

    if league_key:
        for rule in rules:
            if rule.league and rule.league.lower() == league_key:
                return rule.template
    for rule in rules:
        if rule.league is None:
            return rule.template

    return default_template


def pack_open_message(
    template: str,
    pack: Pack,
    base_url: str,
    now: datetime,
) -> str:
    return render_template(
        template,
        {
            "packTitle": pack.title or "New Pack",
            "packUrl": pack_link(base_url, pack),
            "league": (pack.league or "").lower(),
            "timeLeft": humanize_time_left(pack.close_time, now),
        },
    )
