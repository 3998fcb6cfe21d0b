"""Tests for the conversation store."""
from __future__ import annotations

import pytest

from core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from core.models import Conversation, ConversationLink, ParticipantRole


class TestCreate:
    """Conversation creation rules."""

    def test_creator_is_owner_and_seed_message_is_read(self, conversations, owner, agent_a):
        conversation_id = conversations.create(
            owner.id, [agent_a.id], subject="  Kitchen remodel  ", initial_body="Hello there",
        )

        detail = conversations.get(conversation_id, owner.id)
        assert detail.conversation.subject == "Kitchen remodel"
        roles = {p.user_id: p.role for p in detail.participants}
        assert roles == {owner.id: ParticipantRole.OWNER.value, agent_a.id: ParticipantRole.MEMBER.value}
        assert [m.body for m in detail.messages] == ["Hello there"]

        assert conversations.unread_count(conversation_id, owner.id) == 0
        assert conversations.unread_count(conversation_id, agent_a.id) == 1

    def test_requires_another_participant(self, conversations, owner):
        with pytest.raises(InvalidInputError):
            conversations.create(owner.id, [])
        with pytest.raises(InvalidInputError):
            conversations.create(owner.id, [owner.id])

    def test_unknown_participant_rejected(self, conversations, owner):
        with pytest.raises(InvalidInputError):
            conversations.create(owner.id, [987654])

    def test_duplicate_ids_collapse(self, conversations, owner, agent_a):
        conversation_id = conversations.create(owner.id, [agent_a.id, agent_a.id, owner.id])

        detail = conversations.get(conversation_id, agent_a.id)
        assert sorted(p.user_id for p in detail.participants) == sorted([owner.id, agent_a.id])
        assert detail.messages == []


class TestUnreadMonotonicity:
    """Read positions only advance and own messages never count as unread."""

    def test_post_and_mark_read_sequence(self, conversations, owner, agent_a, agent_b):
        cid = conversations.create(owner.id, [agent_a.id, agent_b.id])

        conversations.post_message(cid, owner.id, "one")
        assert conversations.unread_count(cid, owner.id) == 0
        assert conversations.unread_count(cid, agent_a.id) == 1

        conversations.post_message(cid, agent_b.id, "two")
        assert conversations.unread_count(cid, owner.id) == 1
        assert conversations.unread_count(cid, agent_a.id) == 2

        conversations.post_message(cid, agent_a.id, "three")
        assert conversations.unread_count(cid, agent_a.id) == 0
        assert conversations.unread_count(cid, owner.id) == 2

        last_id = conversations.mark_read(cid, owner.id)
        assert conversations.unread_count(cid, owner.id) == 0
        assert last_id == conversations.get(cid, owner.id).messages[-1].id

    def test_mark_read_empty_thread(self, conversations, owner, agent_a):
        cid = conversations.create(owner.id, [agent_a.id])
        assert conversations.mark_read(cid, agent_a.id) == 0

    def test_read_position_never_moves_back(self, db_session, conversations, owner, agent_a):
        cid = conversations.create(owner.id, [agent_a.id])
        first = conversations.post_message(cid, owner.id, "first")
        second = conversations.post_message(cid, owner.id, "second")

        conversations.mark_read(cid, agent_a.id)
        participant = conversations._participant(cid, agent_a.id)
        conversations._advance_read_position(participant, first)

        db_session.refresh(participant)
        assert participant.last_read_message_id == second

    def test_list_for_user_summaries(self, conversations, owner, agent_a, agent_c):
        older = conversations.create(owner.id, [agent_a.id], subject="Older", initial_body="hi")
        newer = conversations.create(agent_c.id, [agent_a.id], subject="Newer")
        conversations.post_message(newer, agent_c.id, "ping")
        conversations.post_message(newer, agent_c.id, "ping again")

        summaries = conversations.list_for_user(agent_a.id)
        by_id = {s.id: s for s in summaries}

        assert [s.id for s in summaries] == [newer, older]
        assert by_id[newer].last_message == "ping again"
        assert by_id[newer].unread_count == 2
        assert by_id[older].last_message == "hi"
        assert by_id[older].unread_count == 1

        assert [s.id for s in conversations.list_for_user(owner.id)] == [older]


class TestMembershipGating:
    """Non-participants can neither read nor write."""

    def test_outsider_cannot_read(self, conversations, owner, agent_a, agent_c):
        cid = conversations.create(owner.id, [agent_a.id], initial_body="private")

        with pytest.raises(NotFoundError):
            conversations.get(cid, agent_c.id)
        with pytest.raises(NotFoundError):
            conversations.mark_read(cid, agent_c.id)
        with pytest.raises(NotFoundError):
            conversations.unread_count(cid, agent_c.id)

    def test_outsider_cannot_post(self, conversations, owner, agent_a, agent_c):
        cid = conversations.create(owner.id, [agent_a.id])

        with pytest.raises(ForbiddenError):
            conversations.post_message(cid, agent_c.id, "let me in")
        assert conversations.get(cid, owner.id).messages == []

    def test_missing_conversation_looks_like_non_membership(self, conversations, owner):
        with pytest.raises(NotFoundError):
            conversations.get(424242, owner.id)

    def test_blank_body_rejected(self, conversations, owner, agent_a):
        cid = conversations.create(owner.id, [agent_a.id])

        with pytest.raises(InvalidInputError):
            conversations.post_message(cid, owner.id, "   ")

    def test_is_participant(self, conversations, owner, agent_a, agent_c):
        cid = conversations.create(owner.id, [agent_a.id])

        assert conversations.is_participant(cid, agent_a.id) is True
        assert conversations.is_participant(cid, agent_c.id) is False


class TestLinkedConversations:
    """find_or_create_linked reuses one thread per (purpose, party key)."""

    def test_second_call_reuses(self, db_session, conversations, agent_a, agent_b):
        first, created = conversations.find_or_create_linked(
            "referral", "1:2", agent_a.id, [agent_b.id], subject="Referral", initial_body="hi",
        )
        again, created_again = conversations.find_or_create_linked(
            "referral", "1:2", agent_b.id, [agent_a.id], subject="Referral", initial_body="hello",
        )

        assert created is True
        assert created_again is False
        assert again == first
        assert [m.body for m in conversations.get(first, agent_a.id).messages] == ["hi"]

    def test_lost_race_discards_orphan(self, db_session, conversations, agent_a, agent_b):
        winner = conversations.create(agent_b.id, [agent_a.id], subject="Winner")
        db_session.add(ConversationLink(purpose="referral", party_key="race", conversation_id=winner))
        db_session.flush()

        # Simulate a caller that read "no link yet" before the winner committed
        conversations._linked_conversation_id = _first_call_misses(conversations._linked_conversation_id)
        conversation_id, created = conversations.find_or_create_linked(
            "referral", "race", agent_a.id, [agent_b.id], subject="Loser",
        )

        assert (conversation_id, created) == (winner, False)
        subjects = [c.subject for c in db_session.query(Conversation).all()]
        assert "Loser" not in subjects


def _first_call_misses(lookup):
    calls = {"n": 0}

    def wrapper(purpose, party_key):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return lookup(purpose, party_key)

    return wrapper
