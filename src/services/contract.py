"""
Contract lifecycle: draft -> sent -> signed.

A contract is signed only once every signer row carries a signed_at. The
flip is a single conditional UPDATE that re-checks the unsigned count, so
two signers finishing at the same moment cannot both miss it.
"""
from __future__ import annotations

import time
from typing import Iterable, List, Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import Session

from core.db import insert_ignore, store_operation
from core.exceptions import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from core.logging_config import get_logger
from core.models import (
    Contract,
    ContractSigner,
    ContractStatus,
    NotificationType,
    SignerRole,
    User,
)
from core.types import ContractDraft, ContractView
from core.utils import generate_unique_key, unique_ids, utcnow
from services.conversation import ConversationStore, get_conversation_store
from services.notification import NotificationDispatcher, get_notification_dispatcher
from services.storage import ObjectStorage, get_object_storage

LOGGER = get_logger(__name__)

MAX_TITLE_LENGTH = 255


def build_contract_key(owner_id: int) -> str:
    """Storage key under the owner's namespace, e.g. contracts/7/1700000000000_ab12cd34.pdf."""
    return f"contracts/{owner_id}/{int(time.time() * 1000)}_{generate_unique_key()[:8]}.pdf"


class ContractLifecycle:
    """Owns contract and contract_signer rows."""

    def __init__(
        self,
        session: Session,
        conversations: ConversationStore,
        notifier: NotificationDispatcher,
        storage: ObjectStorage,
    ):
        """Initialize the contract lifecycle."""
        self.session = session
        self.conversations = conversations
        self.notifier = notifier
        self.storage = storage

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load(self, contract_id: int, lock: bool = False) -> Contract:
        query = select(Contract).where(Contract.id == contract_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        contract = self.session.execute(query).scalar_one_or_none()
        if contract is None:
            raise NotFoundError("Contract not found", contract_id=contract_id)
        return contract

    def _is_signer(self, contract_id: int, user_id: int) -> bool:
        return self.session.execute(
            select(
                exists().where(
                    ContractSigner.contract_id == contract_id,
                    ContractSigner.user_id == user_id,
                )
            )
        ).scalar()

    def _signers(self, contract_id: int) -> List[ContractSigner]:
        return list(
            self.session.execute(
                select(ContractSigner)
                .where(ContractSigner.contract_id == contract_id)
                .order_by(ContractSigner.id)
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def _can_view(self, contract: Contract, user_id: int) -> bool:
        """Creator, a participant of the attached thread, or a listed signer."""
        if contract.created_by_user_id == user_id:
            return True
        if contract.conversation_id and self.conversations.is_participant(contract.conversation_id, user_id):
            return True
        return self._is_signer(contract.id, user_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    @store_operation
    def create(self, owner_id: int, title: str, contract_type: str = "custom") -> ContractDraft:
        """
        Persist a draft and hand back an upload URL for its file.

        The row references its storage key before any bytes exist.

        Args:
            owner_id: Creating user.
            title: Required, trimmed.
            contract_type: Free-form label, "custom" by default.

        Returns:
            ContractDraft with id, upload URL and key.

        Raises:
            InvalidInputError: Missing title.
            StorageUnavailableError: Object storage could not issue the URL.
        """
        clean_title = (title or "").strip()
        if not clean_title:
            raise InvalidInputError("title required")

        key = build_contract_key(owner_id)
        contract = Contract(
            title=clean_title[:MAX_TITLE_LENGTH],
            type=(contract_type or "custom").strip() or "custom",
            created_by_user_id=owner_id,
            file_key=key,
            status=ContractStatus.DRAFT.value,
        )
        self.session.add(contract)
        self.session.flush()

        upload_url = self.storage.issue_upload_authorization(key)

        LOGGER.info(
            f"Created draft contract {contract.id}",
            extra={"extra_data": {"contract_id": contract.id, "owner": owner_id}},
        )
        return ContractDraft(contract_id=contract.id, upload_url=upload_url, file_key=key)

    @store_operation
    def send(
        self,
        contract_id: int,
        sender_id: int,
        conversation_id: int,
        signer_ids: Iterable[int] = (),
    ) -> ContractView:
        """
        Attach a contract to a conversation and add its signers.

        Re-sending is safe: existing signer rows (and their signatures) are
        left alone, new ones are added.

        Raises:
            NotFoundError: Unknown contract.
            ForbiddenError: Sender is not a participant of the conversation.
            ConflictError: Contract is already signed.
            InvalidInputError: A signer id does not name a known user.
        """
        contract = self._load(contract_id, lock=True)

        if not self.conversations.is_participant(conversation_id, sender_id):
            raise ForbiddenError("Sender is not a participant of the conversation")
        if contract.status == ContractStatus.SIGNED.value:
            raise ConflictError("Contract is already signed", contract_id=contract_id)

        signers = unique_ids([sender_id, *signer_ids])
        known = set(self.session.execute(select(User.id).where(User.id.in_(signers))).scalars())
        missing = [uid for uid in signers if uid not in known]
        if missing:
            raise InvalidInputError(f"Unknown signer ids: {missing}")

        first_send = contract.status == ContractStatus.DRAFT.value
        contract.conversation_id = conversation_id
        contract.status = ContractStatus.SENT.value
        if first_send:
            contract.sent_at = utcnow()
        self.session.flush()

        added = 0
        for uid in signers:
            role = SignerRole.SENDER.value if uid == sender_id else SignerRole.SIGNER.value
            if insert_ignore(
                self.session,
                ContractSigner,
                {"contract_id": contract_id, "user_id": uid, "role": role},
                index_elements=("contract_id", "user_id"),
            ):
                added += 1

        if first_send:
            self.conversations.post_message(
                conversation_id,
                sender_id,
                f"Contract sent: {contract.title}",
                attachment_key=contract.file_key,
            )

        for uid in signers:
            if uid == sender_id:
                continue
            self.notifier.notify(
                uid,
                NotificationType.CONTRACT_SENT,
                "New contract to sign",
                "A contract was sent to you for signature.",
                {"contract_id": contract_id, "conversation_id": conversation_id},
            )

        LOGGER.info(
            f"Contract {contract_id} sent",
            extra={"extra_data": {
                "contract_id": contract_id,
                "conversation_id": conversation_id,
                "signers": len(signers),
                "new_signers": added,
            }},
        )
        return ContractView(contract=contract, signers=self._signers(contract_id))

    @store_operation
    def sign(self, contract_id: int, signer_id: int) -> ContractView:
        """
        Record one signer's attestation and flip to signed if it was the last.

        Signing twice is a no-op; the first signed_at is kept.

        Raises:
            NotFoundError: Unknown contract.
            ForbiddenError: The user is not a signer of this contract.
        """
        contract = self._load(contract_id, lock=True)
        now = utcnow()

        result = self.session.execute(
            update(ContractSigner)
            .where(
                ContractSigner.contract_id == contract_id,
                ContractSigner.user_id == signer_id,
                ContractSigner.signed_at.is_(None),
            )
            .values(signed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if not self._is_signer(contract_id, signer_id):
                raise ForbiddenError("Not a signer", contract_id=contract_id)
            LOGGER.debug(f"User {signer_id} already signed contract {contract_id}")

        unsigned = exists().where(
            ContractSigner.contract_id == contract_id,
            ContractSigner.signed_at.is_(None),
        )
        flipped = self.session.execute(
            update(Contract)
            .where(
                Contract.id == contract_id,
                Contract.status == ContractStatus.SENT.value,
                ~unsigned,
            )
            .values(status=ContractStatus.SIGNED.value, signed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        self.session.expire(contract)
        signers = self._signers(contract_id)

        if flipped:
            LOGGER.info(
                f"Contract {contract_id} fully signed",
                extra={"extra_data": {"contract_id": contract_id, "last_signer": signer_id}},
            )
            for row in signers:
                if row.user_id == signer_id:
                    continue
                self.notifier.notify(
                    row.user_id,
                    NotificationType.CONTRACT_SIGNED,
                    "Contract signed",
                    f"All parties have signed \"{contract.title}\".",
                    {"contract_id": contract_id, "conversation_id": contract.conversation_id},
                )
        elif result.rowcount:
            LOGGER.info(
                f"Contract {contract_id} signed by user {signer_id}",
                extra={"extra_data": {"contract_id": contract_id, "signer": signer_id}},
            )

        return ContractView(contract=contract, signers=signers)

    # =========================================================================
    # Reads
    # =========================================================================

    @store_operation
    def get(self, contract_id: int, requester_id: int) -> ContractView:
        """Contract and its signers, visible to creator, thread members and signers."""
        contract = self._load(contract_id)
        if not self._can_view(contract, requester_id):
            raise ForbiddenError("Forbidden", contract_id=contract_id)
        return ContractView(contract=contract, signers=self._signers(contract_id))

    @store_operation
    def download_url(self, contract_id: int, requester_id: int) -> str:
        """Time-boxed read URL for the contract file (same visibility as get)."""
        contract = self._load(contract_id)
        if not self._can_view(contract, requester_id):
            raise ForbiddenError("Forbidden", contract_id=contract_id)
        return self.storage.issue_download_authorization(contract.file_key)

    @store_operation
    def list_for_conversation(
        self,
        conversation_id: int,
        requester_id: int,
        limit: int = 50,
    ) -> List[ContractView]:
        """Contracts attached to a conversation, newest first."""
        if not self.conversations.is_participant(conversation_id, requester_id):
            raise ForbiddenError("Forbidden", conversation_id=conversation_id)

        contracts = self.session.execute(
            select(Contract)
            .where(Contract.conversation_id == conversation_id)
            .order_by(Contract.created_at.desc(), Contract.id.desc())
            .limit(limit)
        ).scalars().all()
        return [ContractView(contract=c, signers=self._signers(c.id)) for c in contracts]

    @store_operation
    def pending_count(self, user_id: int) -> int:
        """Number of sent contracts still waiting on this user's signature."""
        return self.session.execute(
            select(func.count(ContractSigner.id))
            .join(Contract, Contract.id == ContractSigner.contract_id)
            .where(
                ContractSigner.user_id == user_id,
                ContractSigner.signed_at.is_(None),
                Contract.status == ContractStatus.SENT.value,
            )
        ).scalar() or 0


def get_contract_lifecycle(
    session: Session,
    storage: Optional[ObjectStorage] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> ContractLifecycle:
    """Get a ContractLifecycle wired to the configured collaborators."""
    return ContractLifecycle(
        session,
        conversations=get_conversation_store(session),
        notifier=notifier or get_notification_dispatcher(session),
        storage=storage or get_object_storage(),
    )


__all__ = [
    "ContractLifecycle",
    "build_contract_key",
    "get_contract_lifecycle",
]
