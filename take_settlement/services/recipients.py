"""Resolves who hears about a pack opening."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Event,
    NotificationPreference,
    Pack,
    Profile,
    Prop,
    packs_events,
    props_teams,
)

logger = logging.getLogger(__name__)

PACK_OPEN_CATEGORY = "pack_open"


@dataclass
class Recipient:
    profile_id: UUID
    phone: str


async def pack_team_ids(session: AsyncSession, pack: Pack) -> set[UUID]:
    """Teams linked to the pack through its events or its props."""
    event_ids: set[UUID] = set()
    if pack.event_id:
        event_ids.add(pack.event_id)

    linked = await session.execute(
        select(packs_events.c.event_id).where(packs_events.c.pack_id == pack.id)
    )
    event_ids.update(linked.scalars().all())

    team_ids: set[UUID] = set()
    if event_ids:
        rows = await session.execute(
            select(Event.home_team_id, Event.away_team_id).where(Event.id.in_(event_ids))
        )
        for home, away in rows.all():
            team_ids.update(t for t in (home, away) if t)

    prop_teams = await session.execute(
        select(props_teams.c.team_id)
        .join(Prop, Prop.id == props_teams.c.prop_id)
        .where(Prop.pack_id == pack.id)
    )
    team_ids.update(prop_teams.scalars().all())

    return team_ids


async def resolve_pack_open_recipients(
    session: AsyncSession,
    pack: Pack,
) -> list[Recipient]:
    """
    Profiles opted into ``pack_open`` for the pack's league or any of its
    teams, minus globally opted-out and phoneless profiles, one per phone.
    """
    scopes = []
    if pack.league:
        scopes.append(func.lower(NotificationPreference.league) == pack.league.lower())

    team_ids = await pack_team_ids(session, pack)
    if team_ids:
        scopes.append(NotificationPreference.team_id.in_(team_ids))

    if not scopes:
        logger.info(f"Pack {pack.url} has no league or teams; no recipients")
        return []

    query = (
        select(Profile.id, Profile.mobile_e164)
        .join(NotificationPreference, NotificationPreference.profile_id == Profile.id)
        .where(
            NotificationPreference.category == PACK_OPEN_CATEGORY,
            NotificationPreference.opted_in.is_(True),
            Profile.sms_opt_out_all.is_(False),
            Profile.mobile_e164.is_not(None),
            Profile.mobile_e164 != "",
            or_(*scopes),
        )
        .order_by(Profile.created_at, Profile.id)
    )
    rows = (await session.execute(query)).all()

    recipients: list[Recipient] = []
    seen: set[str] = set()
    for profile_id, phone in rows:
        if phone in seen:
            continue
        seen.add(phone)
        recipients.append(Recipient(profile_id=profile_id, phone=phone))

    return recipients
