"""Tests for the contract lifecycle."""
from __future__ import annotations

import re
from itertools import permutations

import pytest

from core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    StorageUnavailableError,
)
from core.models import ContractStatus, Notification, NotificationType, SignerRole
from services.contract import ContractLifecycle, build_contract_key

from conftest import FakeStorage, RecordingRelay


@pytest.fixture
def thread(conversations, owner, agent_a, agent_b):
    """Conversation shared by the owner and both D04 agents."""
    return conversations.create(owner.id, [agent_a.id, agent_b.id], subject="Deal room")


@pytest.fixture
def sent_contract(contracts, thread, owner, agent_a, agent_b):
    """Contract created by the owner and sent with signers {owner, a, b}."""
    draft = contracts.create(owner.id, "Purchase agreement")
    contracts.send(draft.contract_id, owner.id, thread, [agent_a.id, agent_b.id])
    return draft.contract_id


def _notifications(db_session, user_id, event_type):
    return (
        db_session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.type == event_type.value)
        .all()
    )


class TestCreate:
    """Drafts and their storage keys."""

    def test_key_format(self):
        key = build_contract_key(7)
        assert re.fullmatch(r"contracts/7/\d{13}_[0-9a-f]{8}\.pdf", key)

    def test_create_returns_upload_handle(self, contracts, storage, owner):
        draft = contracts.create(owner.id, "  Listing agreement  ")

        assert draft.file_key.startswith(f"contracts/{owner.id}/")
        assert draft.upload_url == f"https://storage.test/put/{draft.file_key}"
        assert storage.uploads == [draft.file_key]

        view = contracts.get(draft.contract_id, owner.id)
        assert view.contract.title == "Listing agreement"
        assert view.contract.type == "custom"
        assert view.contract.status == ContractStatus.DRAFT.value
        assert view.signers == []

    def test_title_required(self, contracts, owner):
        with pytest.raises(InvalidInputError):
            contracts.create(owner.id, "   ")

    def test_storage_failure_surfaces(self, db_session, conversations, notifier, owner):
        lifecycle = ContractLifecycle(db_session, conversations, notifier, FakeStorage(fail=True))

        with pytest.raises(StorageUnavailableError):
            lifecycle.create(owner.id, "Agreement")


class TestSend:
    """Attaching a contract to a thread."""

    def test_send_adds_signers_and_posts_attachment(
        self, db_session, contracts, conversations, thread, owner, agent_a, agent_b,
    ):
        draft = contracts.create(owner.id, "Purchase agreement")

        view = contracts.send(draft.contract_id, owner.id, thread, [agent_a.id, agent_b.id])

        assert view.contract.status == ContractStatus.SENT.value
        assert view.contract.conversation_id == thread
        assert view.contract.sent_at is not None
        roles = {s.user_id: s.role for s in view.signers}
        assert roles == {
            owner.id: SignerRole.SENDER.value,
            agent_a.id: SignerRole.SIGNER.value,
            agent_b.id: SignerRole.SIGNER.value,
        }

        messages = conversations.get(thread, agent_a.id).messages
        assert messages[-1].body == "Contract sent: Purchase agreement"
        assert messages[-1].attachment_key == draft.file_key

        assert len(_notifications(db_session, agent_a.id, NotificationType.CONTRACT_SENT)) == 1
        assert _notifications(db_session, owner.id, NotificationType.CONTRACT_SENT) == []

    def test_sender_must_be_participant(self, contracts, conversations, owner, agent_a, agent_c):
        other_thread = conversations.create(agent_a.id, [agent_c.id])
        draft = contracts.create(owner.id, "Agreement")

        with pytest.raises(ForbiddenError):
            contracts.send(draft.contract_id, owner.id, other_thread, [agent_a.id])

    def test_any_participant_may_send(self, contracts, thread, owner, agent_a, agent_b):
        draft = contracts.create(owner.id, "Agreement")

        view = contracts.send(draft.contract_id, agent_a.id, thread, [agent_b.id])

        assert view.contract.status == ContractStatus.SENT.value
        assert view.contract.conversation_id == thread
        roles = {s.user_id: s.role for s in view.signers}
        assert roles == {agent_a.id: SignerRole.SENDER.value, agent_b.id: SignerRole.SIGNER.value}

    def test_unknown_signer_rejected(self, contracts, thread, owner):
        draft = contracts.create(owner.id, "Agreement")

        with pytest.raises(InvalidInputError):
            contracts.send(draft.contract_id, owner.id, thread, [555555])

    def test_unknown_contract(self, contracts, thread, owner):
        with pytest.raises(NotFoundError):
            contracts.send(777777, owner.id, thread, [])

    def test_resend_keeps_existing_signatures(self, contracts, make_user, thread, sent_contract, owner, agent_a):
        contracts.sign(sent_contract, agent_a.id)
        late = make_user()
        before = {s.user_id: s.signed_at for s in contracts.get(sent_contract, owner.id).signers}

        view = contracts.send(sent_contract, owner.id, thread, [late.id])

        after = {s.user_id: s.signed_at for s in view.signers}
        assert after[agent_a.id] == before[agent_a.id]
        assert after[late.id] is None
        assert view.contract.status == ContractStatus.SENT.value

    def test_cannot_send_signed_contract(self, contracts, thread, sent_contract, owner, agent_a, agent_b):
        for user in (owner, agent_a, agent_b):
            contracts.sign(sent_contract, user.id)

        with pytest.raises(ConflictError):
            contracts.send(sent_contract, owner.id, thread, [])


class TestSign:
    """Signature completeness."""

    def test_signers_in_sequence(self, contracts, sent_contract, owner, agent_a, agent_b):
        assert contracts.sign(sent_contract, agent_a.id).contract.status == ContractStatus.SENT.value
        assert contracts.sign(sent_contract, agent_b.id).contract.status == ContractStatus.SENT.value

        final = contracts.sign(sent_contract, owner.id)
        assert final.contract.status == ContractStatus.SIGNED.value
        assert final.contract.signed_at is not None
        assert all(s.signed_at is not None for s in final.signers)

    @pytest.mark.parametrize("order", list(permutations(range(3))))
    def test_status_flips_only_after_last_signature(self, contracts, sent_contract, owner, agent_a, agent_b, order):
        users = [owner, agent_a, agent_b]

        statuses = [contracts.sign(sent_contract, users[i].id).contract.status for i in order]

        assert statuses == [
            ContractStatus.SENT.value,
            ContractStatus.SENT.value,
            ContractStatus.SIGNED.value,
        ]

    def test_double_sign_is_noop(self, contracts, sent_contract, agent_a):
        first = contracts.sign(sent_contract, agent_a.id)
        first_signed_at = {s.user_id: s.signed_at for s in first.signers}[agent_a.id]

        second = contracts.sign(sent_contract, agent_a.id)

        assert {s.user_id: s.signed_at for s in second.signers}[agent_a.id] == first_signed_at
        assert second.contract.status == ContractStatus.SENT.value

    def test_non_signer_forbidden(self, contracts, sent_contract, agent_c):
        with pytest.raises(ForbiddenError):
            contracts.sign(sent_contract, agent_c.id)

    def test_final_signature_notifies_other_signers(self, db_session, contracts, sent_contract, owner, agent_a, agent_b):
        contracts.sign(sent_contract, agent_a.id)
        contracts.sign(sent_contract, agent_b.id)
        contracts.sign(sent_contract, owner.id)

        assert len(_notifications(db_session, agent_a.id, NotificationType.CONTRACT_SIGNED)) == 1
        assert len(_notifications(db_session, agent_b.id, NotificationType.CONTRACT_SIGNED)) == 1
        assert _notifications(db_session, owner.id, NotificationType.CONTRACT_SIGNED) == []

    def test_signing_succeeds_when_relay_fails(
        self, db_session, conversations, identity, storage, thread, owner, agent_a, agent_b,
    ):
        from services.notification import NotificationDispatcher

        dispatcher = NotificationDispatcher(db_session, identity=identity, relay=RecordingRelay(fail=True))
        lifecycle = ContractLifecycle(db_session, conversations, dispatcher, storage)
        draft = lifecycle.create(owner.id, "Agreement")
        lifecycle.send(draft.contract_id, owner.id, thread, [agent_a.id])

        lifecycle.sign(draft.contract_id, agent_a.id)
        view = lifecycle.sign(draft.contract_id, owner.id)

        assert view.contract.status == ContractStatus.SIGNED.value
        signed = _notifications(db_session, agent_a.id, NotificationType.CONTRACT_SIGNED)
        assert len(signed) == 1
        assert signed[0].channel == "inapp"
        assert signed[0].delivered_at is None


class TestVisibility:
    """Who may read a contract and its file."""

    def test_outsider_forbidden(self, contracts, sent_contract, agent_c):
        with pytest.raises(ForbiddenError):
            contracts.get(sent_contract, agent_c.id)
        with pytest.raises(ForbiddenError):
            contracts.download_url(sent_contract, agent_c.id)

    def test_signer_can_download(self, contracts, storage, sent_contract, agent_a):
        url = contracts.download_url(sent_contract, agent_a.id)

        key = contracts.get(sent_contract, agent_a.id).contract.file_key
        assert url == f"https://storage.test/get/{key}"
        assert storage.downloads == [key]

    def test_draft_visible_only_to_creator(self, contracts, owner, agent_a):
        draft = contracts.create(owner.id, "Draft")

        assert contracts.get(draft.contract_id, owner.id).contract.id == draft.contract_id
        with pytest.raises(ForbiddenError):
            contracts.get(draft.contract_id, agent_a.id)

    def test_list_for_conversation(self, contracts, thread, sent_contract, owner, agent_c):
        views = contracts.list_for_conversation(thread, owner.id)
        assert [v.contract.id for v in views] == [sent_contract]

        with pytest.raises(ForbiddenError):
            contracts.list_for_conversation(thread, agent_c.id)

    def test_pending_count(self, contracts, sent_contract, owner, agent_a, agent_b):
        assert contracts.pending_count(agent_a.id) == 1
        contracts.sign(sent_contract, agent_a.id)
        assert contracts.pending_count(agent_a.id) == 0

        contracts.sign(sent_contract, agent_b.id)
        contracts.sign(sent_contract, owner.id)
        assert contracts.pending_count(owner.id) == 0
