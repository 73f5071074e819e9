import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from finnova.chat.registry import SessionRegistry
from finnova.chat.session import ChatSessionManager, ChatStatus
from finnova.identity import Identity


def _run(coro):
    return asyncio.run(coro)


class EmptyStore:
    async def list_by_owner(self, collection, owner_id):
        return []


class CountingProvider:
    def __init__(self):
        self.sessions = 0

    def start_chat(self, seed_instruction, acknowledgment):
        self.sessions += 1
        return object()

    async def stream_message(self, session, text):
        yield "ok"


def _registry(provider):
    return SessionRegistry(lambda: ChatSessionManager(EmptyStore(), provider))


def test_activate_reuses_manager_for_same_identity() -> None:
    provider = CountingProvider()
    registry = _registry(provider)
    identity = Identity(id=uuid4(), email="a@example.com")

    async def scenario():
        first = await registry.activate(identity)
        await first.submit("hello")
        second = await registry.activate(identity)
        return first, second

    first, second = _run(scenario())

    assert first is second
    assert provider.sessions == 1
    assert len(second.messages) == 3
    assert len(registry) == 1


def test_each_identity_gets_its_own_manager() -> None:
    registry = _registry(CountingProvider())
    alice = Identity(id=uuid4(), email="alice@example.com")
    bob = Identity(id=uuid4(), email="bob@example.com")

    async def scenario():
        return await registry.activate(alice), await registry.activate(bob)

    alice_manager, bob_manager = _run(scenario())

    assert alice_manager is not bob_manager
    assert registry.get(alice.id) is alice_manager
    assert registry.get(bob.id) is bob_manager


def test_deactivate_tears_down_session() -> None:
    registry = _registry(CountingProvider())
    identity = Identity(id=uuid4(), email="a@example.com")

    async def scenario():
        manager = await registry.activate(identity)
        await registry.deactivate(identity.id)
        await registry.deactivate(identity.id)
        return manager

    manager = _run(scenario())

    assert registry.get(identity.id) is None
    assert manager.status is ChatStatus.NO_SESSION
    assert manager.messages == []
    assert manager.session is None


def test_close_all_drops_every_manager() -> None:
    registry = _registry(CountingProvider())

    async def scenario():
        for _ in range(3):
            await registry.activate(Identity(id=uuid4(), email="x@example.com"))
        await registry.close_all()

    _run(scenario())

    assert len(registry) == 0


def _clock(start):
    now = [start]
    return now, lambda: now[0]


def test_manager_is_closed_once_its_token_expires() -> None:
    now, clock = _clock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    registry = SessionRegistry(lambda: ChatSessionManager(EmptyStore(), CountingProvider()), clock=clock)
    identity = Identity(id=uuid4(), email="a@example.com", expires_at=now[0] + timedelta(hours=1))

    manager = _run(registry.activate(identity))
    _run(manager.submit("hello"))
    now[0] += timedelta(hours=2)

    assert registry.get(identity.id) is None
    assert len(registry) == 0
    assert manager.messages == []
    assert manager.status is ChatStatus.NO_SESSION


def test_newer_token_extends_session_lifetime() -> None:
    now, clock = _clock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    provider = CountingProvider()
    registry = SessionRegistry(lambda: ChatSessionManager(EmptyStore(), provider), clock=clock)
    user_id = uuid4()

    manager = _run(registry.activate(Identity(id=user_id, email="a@example.com", expires_at=now[0] + timedelta(hours=1))))
    _run(manager.submit("hello"))
    _run(registry.activate(Identity(id=user_id, email="a@example.com", expires_at=now[0] + timedelta(hours=3))))
    now[0] += timedelta(hours=2)

    assert registry.get(user_id) is manager
    assert len(manager.messages) == 3
    assert provider.sessions == 1


def test_expired_sessions_do_not_accumulate() -> None:
    now, clock = _clock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    registry = SessionRegistry(lambda: ChatSessionManager(EmptyStore(), CountingProvider()), clock=clock)

    for _ in range(3):
        _run(registry.activate(Identity(id=uuid4(), email="x@example.com", expires_at=now[0] + timedelta(minutes=5))))
    now[0] += timedelta(minutes=10)
    fresh = Identity(id=uuid4(), email="y@example.com", expires_at=now[0] + timedelta(minutes=5))
    _run(registry.activate(fresh))

    assert len(registry) == 1
    assert registry.get(fresh.id) is not None
