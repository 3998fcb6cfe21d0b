"""Contention tests: two sessions racing on the same row through a real file database."""
from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from core.db import Base
from core.models import Contract, ContractStatus, Lead, LeadStatus, User, UserRole
from services.contract import ContractLifecycle
from services.conversation import ConversationStore
from services.identity import SqlIdentityDirectory
from services.marketplace import LeadMatchingService
from services.notification import NotificationDispatcher

from conftest import FakeStorage


@pytest.fixture
def file_engine(tmp_path):
    """SQLite engine on disk so each session gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(file_engine) -> sessionmaker:
    return sessionmaker(bind=file_engine, autoflush=False)


@pytest.fixture
def seeded(session_factory) -> Dict[str, int]:
    """One owner and two D04 agents, committed."""
    with session_factory() as session:
        owner = User(email="owner@race.test", role=UserRole.OWNER.value)
        first = User(email="first@race.test", role=UserRole.AGENT.value, primary_area_code="D04")
        second = User(email="second@race.test", role=UserRole.AGENT.value, primary_area_code="D04")
        session.add_all([owner, first, second])
        session.commit()
        return {"owner": owner.id, "first": first.id, "second": second.id}


def _wire(session: Session) -> Dict[str, Any]:
    identity = SqlIdentityDirectory(session)
    notifier = NotificationDispatcher(session, identity=identity, relay=None)
    conversations = ConversationStore(session)
    return {
        "conversations": conversations,
        "marketplace": LeadMatchingService(session, conversations, notifier, identity),
        "contracts": ContractLifecycle(session, conversations, notifier, FakeStorage()),
    }


def _race(session_factory, calls: List[Callable[[Dict[str, Any]], Any]]):
    """Run each call in its own thread and session, released together."""
    barrier = threading.Barrier(len(calls))
    results: List[Any] = [None] * len(calls)
    errors: List[BaseException] = []

    def worker(index: int, call: Callable[[Dict[str, Any]], Any]) -> None:
        session = session_factory()
        try:
            services = _wire(session)
            barrier.wait(timeout=10)
            results[index] = call(services)
            session.commit()
        except BaseException as exc:
            session.rollback()
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    return results, errors


class TestConcurrentClaim:
    """Two agents claim the same listing at once."""

    def test_exactly_one_winner(self, session_factory, seeded):
        with session_factory() as session:
            posted = _wire(session)["marketplace"].post_lead(seeded["owner"], "Shared lot", "D04")
            session.commit()

        results, errors = _race(session_factory, [
            lambda s: s["marketplace"].claim(posted.listing_id, seeded["first"]),
            lambda s: s["marketplace"].claim(posted.listing_id, seeded["second"]),
        ])

        assert errors == []
        assert sorted(r.claimed for r in results) == [False, True]
        assert all(r.conversation_id for r in results)
        assert results[0].conversation_id != results[1].conversation_id

        winner = next(r for r in results if r.claimed)
        with session_factory() as session:
            lead = session.get(Lead, posted.lead_id)
            assert lead.status == LeadStatus.CLAIMED.value
            assert lead.assignee_user_id in (seeded["first"], seeded["second"])
            assert all(r.assignee_user_id == lead.assignee_user_id for r in results)
            assert winner.assignee_user_id == lead.assignee_user_id


class TestConcurrentSigning:
    """The last two signers sign at the same time."""

    def test_contract_ends_signed(self, session_factory, seeded):
        with session_factory() as session:
            services = _wire(session)
            thread = services["conversations"].create(seeded["owner"], [seeded["first"], seeded["second"]])
            draft = services["contracts"].create(seeded["owner"], "Purchase agreement")
            services["contracts"].send(
                draft.contract_id, seeded["owner"], thread, [seeded["first"], seeded["second"]],
            )
            services["contracts"].sign(draft.contract_id, seeded["owner"])
            session.commit()

        results, errors = _race(session_factory, [
            lambda s: s["contracts"].sign(draft.contract_id, seeded["first"]),
            lambda s: s["contracts"].sign(draft.contract_id, seeded["second"]),
        ])

        assert errors == []
        assert all(r is not None for r in results)

        with session_factory() as session:
            contract = session.get(Contract, draft.contract_id)
            assert contract.status == ContractStatus.SIGNED.value
            assert contract.signed_at is not None
