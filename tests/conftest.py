"""Shared fixtures: in-memory database, store factory, recording SMS transport."""

import os

# Settings are cached on first import, so the test environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PUBLIC_BASE_URL", "https://takes.example.com")

from datetime import datetime, timezone
from uuid import UUID

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from take_settlement.models import (
    Base,
    DropStrategy,
    Event,
    NotificationPreference,
    Pack,
    PackStatus,
    Profile,
    Prop,
    PropStatus,
    SmsRule,
    Team,
    packs_events,
    props_teams,
)
from take_settlement.services.grading_engine import GradingCascadeEngine, SettlementConfig
from take_settlement.services.notification_service import (
    NotificationDispatcher,
    OutboundSms,
    SmsTransport,
)
from take_settlement.services.pack_scheduler import PackScheduler, SchedulerConfig
from take_settlement.services.sms_conversation import SmsConversationEngine

BASE_URL = "https://takes.example.com"
NOW = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)


# =============================================================================
# DATABASE
# =============================================================================


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# SMS TRANSPORT
# =============================================================================


class RecordingTransport(SmsTransport):
    """Keeps every message instead of sending it; can fail chosen numbers."""

    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[OutboundSms] = []
        self.fail_for = fail_for or set()

    async def send(self, to: str, body: str) -> None:
        if to in self.fail_for:
            raise RuntimeError("carrier rejected")
        self.sent.append(OutboundSms(to=to, body=body))

    def bodies_for(self, to: str) -> list[str]:
        return [m.body for m in self.sent if m.to == to]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport) -> NotificationDispatcher:
    return NotificationDispatcher(transport, concurrency=3)


# =============================================================================
# ENGINES
# =============================================================================


@pytest.fixture
def conversation(session_factory, dispatcher) -> SmsConversationEngine:
    return SmsConversationEngine(session_factory, dispatcher, BASE_URL)


@pytest.fixture
def grading_engine(session_factory, dispatcher) -> GradingCascadeEngine:
    return GradingCascadeEngine(
        session_factory,
        dispatcher,
        BASE_URL,
        SettlementConfig(push_points=100, token_conversion_rate=0.05),
    )


@pytest.fixture
def scheduler(session_factory, dispatcher, conversation) -> PackScheduler:
    return PackScheduler(
        session_factory,
        dispatcher,
        conversation,
        SchedulerConfig(public_base_url=BASE_URL),
    )


# =============================================================================
# STORE FACTORY
# =============================================================================


class StoreFactory:
    """Creates committed rows for tests."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._counter = 0

    async def add(self, *objects):
        async with self._session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects

    async def pack(self, **kwargs) -> Pack:
        self._counter += 1
        defaults = {
            "url": f"pack-{self._counter}",
            "title": f"Pack {self._counter}",
            "league": "mlb",
            "status": PackStatus.DRAFT,
            "drop_strategy": DropStrategy.LINK,
        }
        return await self.add(Pack(**{**defaults, **kwargs}))

    async def set_pack_status(self, pack: Pack, status: PackStatus) -> None:
        async with self._session_factory() as session:
            await session.execute(update(Pack).where(Pack.id == pack.id).values(status=status))
            await session.commit()

    async def prop(self, pack: Pack, **kwargs) -> Prop:
        self._counter += 1
        defaults = {
            "pack_id": pack.id,
            "prop_short": f"Question {self._counter}?",
            "side_a_label": "Yes",
            "side_b_label": "No",
            "side_a_value": 10,
            "side_b_value": 20,
            "status": PropStatus.OPEN,
            "order_index": self._counter,
        }
        return await self.add(Prop(**{**defaults, **kwargs}))

    async def props(self, pack: Pack, count: int) -> list[Prop]:
        return [await self.prop(pack, order_index=i) for i in range(count)]

    async def team(self, name: str, league: str = "mlb") -> Team:
        return await self.add(Team(name=name, short_name=name[:3].upper(), league=league))

    async def event(self, home: Team, away: Team) -> Event:
        return await self.add(
            Event(
                title=f"{away.name} at {home.name}",
                league=home.league,
                home_team_id=home.id,
                away_team_id=away.id,
            )
        )

    async def link_event(self, pack: Pack, event: Event) -> None:
        async with self._session_factory() as session:
            await session.execute(
                packs_events.insert().values(pack_id=pack.id, event_id=event.id)
            )
            await session.commit()

    async def link_prop_team(self, prop: Prop, team: Team) -> None:
        async with self._session_factory() as session:
            await session.execute(
                props_teams.insert().values(prop_id=prop.id, team_id=team.id)
            )
            await session.commit()

    async def profile(
        self,
        phone: str | None,
        league: str | None = None,
        team_id: UUID | None = None,
        opted_in: bool = True,
        opt_out_all: bool = False,
        category: str = "pack_open",
    ) -> Profile:
        profile = await self.add(Profile(mobile_e164=phone, sms_opt_out_all=opt_out_all))
        if league or team_id:
            await self.add(
                NotificationPreference(
                    profile_id=profile.id,
                    category=category,
                    league=league,
                    team_id=team_id,
                    opted_in=opted_in,
                )
            )
        return profile

    async def sms_rule(self, template: str, league: str | None = None, active: bool = True) -> SmsRule:
        return await self.add(
            SmsRule(trigger_type="pack_open", league=league, template=template, active=active)
        )


@pytest.fixture
def store(session_factory) -> StoreFactory:
    return StoreFactory(session_factory)


@pytest.fixture
def now() -> datetime:
    return NOW


# =============================================================================
# HTTP CLIENT
# =============================================================================


@pytest_asyncio.fixture
async def client(session_factory, transport):
    from take_settlement.core.database import get_session, get_session_factory
    from take_settlement.core.dependencies import get_dispatcher
    from take_settlement.main import app

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_dispatcher():
        yield NotificationDispatcher(transport, concurrency=3)

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dispatcher] = override_get_dispatcher

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
