"""Encounter ledger and manual contacts.

The ledger is owned by the reporting user: every read and write is scoped
by ``reporter_id`` / ``owner_id``, and a row belonging to someone else is
indistinguishable from a missing one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from anontrace.core.storage.database import TracingDatabase
from anontrace.core.storage.encryption import FieldEncryptor
from anontrace.core.storage.repository import (
    RepositoryError,
    SQLiteRepository,
    from_utc_iso,
    to_utc_iso,
)
from anontrace.domains.contact_tracing.errors import (
    InvalidEncounterDateError,
    NotFoundError,
)
from anontrace.domains.contact_tracing.models import (
    AnonymousPartner,
    Encounter,
    ManualContact,
    ManualPartner,
    Partner,
    PlatformPartner,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class EncounterLedger(SQLiteRepository):
    """Append-mostly store of encounters and the manual contacts they reference.

    Usage::

        ledger = EncounterLedger(db, encryptor)
        contact = ledger.add_contact("user-1", "Sam", phone_number="+15550100")
        ledger.log_encounter("user-1", ManualPartner(contact.id), met_at)
    """

    def __init__(
        self,
        database: TracingDatabase,
        encryptor: FieldEncryptor,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(database, encryptor)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    def log_encounter(
        self,
        reporter_id: str,
        partner: Partner,
        met_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> Encounter:
        """Record an encounter.

        Raises:
            InvalidEncounterDateError: If ``met_at`` is naive or in the future.
            NotFoundError: If a manual partner is not one of the reporter's contacts.
        """
        met_at_iso = self._validate_met_at(met_at)
        partner_cols = self._partner_columns(reporter_id, partner)

        encounter_id = self._new_id()
        now = self._now_iso()
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO encounters
                   (id, reporter_id, partner_kind, partner_user_id, contact_id,
                    anonymous_label_enc, met_at, metadata_enc, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    encounter_id,
                    reporter_id,
                    partner.kind,
                    *partner_cols,
                    met_at_iso,
                    self._enc.encrypt(metadata) if metadata else None,
                    now,
                ),
            )
        logger.info("Logged encounter %s (partner_kind=%s)", encounter_id, partner.kind)
        return Encounter(
            id=encounter_id,
            reporter_id=reporter_id,
            partner=partner,
            met_at=from_utc_iso(met_at_iso),
            metadata=metadata or {},
            created_at=now,
        )

    def get_encounter(self, reporter_id: str, encounter_id: str) -> Encounter | None:
        row = self._conn.execute(
            "SELECT * FROM encounters WHERE id = ? AND reporter_id = ?",
            (encounter_id, reporter_id),
        ).fetchone()
        return self._row_to_encounter(row) if row is not None else None

    def list_encounters(
        self,
        reporter_id: str,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Encounter]:
        """List a reporter's encounters, newest first.

        Args:
            since: Inclusive lower bound on ``met_at``.
            limit: Maximum rows to return.
        """
        query = "SELECT * FROM encounters WHERE reporter_id = ?"
        params: list[Any] = [reporter_id]
        if since is not None:
            query += " AND met_at >= ?"
            params.append(to_utc_iso(since))
        query += " ORDER BY met_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_encounter(row) for row in rows]

    def count_encounters(self, reporter_id: str, *, since: datetime | None = None) -> int:
        if since is None:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM encounters WHERE reporter_id = ?", (reporter_id,)
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM encounters WHERE reporter_id = ? AND met_at >= ?",
                (reporter_id, to_utc_iso(since)),
            ).fetchone()
        return row[0]

    def update_encounter(
        self,
        reporter_id: str,
        encounter_id: str,
        *,
        partner: Partner | None = None,
        met_at: datetime | None = None,
        metadata: dict[str, Any] | None = _UNSET,
    ) -> Encounter:
        """Edit an encounter owned by ``reporter_id``.

        Raises:
            NotFoundError: If the encounter does not exist for this reporter.
            InvalidEncounterDateError: If the new ``met_at`` is in the future.
        """
        current = self.get_encounter(reporter_id, encounter_id)
        if current is None:
            raise NotFoundError(f"Encounter {encounter_id} not found")

        new_partner = partner or current.partner
        new_met_at = self._validate_met_at(met_at) if met_at is not None else to_utc_iso(current.met_at)
        new_metadata = current.metadata if metadata is _UNSET else (metadata or {})
        partner_cols = self._partner_columns(reporter_id, new_partner)

        with self._transaction() as conn:
            conn.execute(
                """UPDATE encounters SET
                       partner_kind = ?, partner_user_id = ?, contact_id = ?,
                       anonymous_label_enc = ?, met_at = ?, metadata_enc = ?
                   WHERE id = ? AND reporter_id = ?""",
                (
                    new_partner.kind,
                    *partner_cols,
                    new_met_at,
                    self._enc.encrypt(new_metadata) if new_metadata else None,
                    encounter_id,
                    reporter_id,
                ),
            )
        return Encounter(
            id=encounter_id,
            reporter_id=reporter_id,
            partner=new_partner,
            met_at=from_utc_iso(new_met_at),
            metadata=new_metadata,
            created_at=current.created_at,
        )

    def delete_encounter(self, reporter_id: str, encounter_id: str) -> bool:
        """Delete one of the reporter's encounters. Returns False if not found."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM encounters WHERE id = ? AND reporter_id = ?",
                (encounter_id, reporter_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted encounter %s", encounter_id)
        return deleted

    # ------------------------------------------------------------------
    # Manual contacts
    # ------------------------------------------------------------------

    def add_contact(
        self,
        owner_id: str,
        display_name: str,
        *,
        phone_number: str | None = None,
        social_handle: str | None = None,
    ) -> ManualContact:
        if not display_name or not display_name.strip():
            raise RepositoryError("display_name must not be empty")
        contact_id = self._new_id()
        now = self._now_iso()
        phone = _clean(phone_number)
        handle = _clean(social_handle)
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO manual_contacts
                   (id, owner_id, display_name_enc, phone_number_enc,
                    social_handle_enc, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    contact_id,
                    owner_id,
                    self._enc.encrypt(display_name.strip()),
                    self._enc.encrypt(phone) or None,
                    self._enc.encrypt(handle) or None,
                    now,
                    now,
                ),
            )
        logger.info("Added manual contact %s", contact_id)
        return ManualContact(
            id=contact_id,
            owner_id=owner_id,
            display_name=display_name.strip(),
            phone_number=phone,
            social_handle=handle,
            created_at=now,
            updated_at=now,
        )

    def get_contact(self, owner_id: str, contact_id: str) -> ManualContact | None:
        row = self._conn.execute(
            "SELECT * FROM manual_contacts WHERE id = ? AND owner_id = ?",
            (contact_id, owner_id),
        ).fetchone()
        return self._row_to_contact(row) if row is not None else None

    def get_contacts(self, owner_id: str, contact_ids: list[str]) -> dict[str, ManualContact]:
        """Batch lookup of the owner's contacts, keyed by id."""
        if not contact_ids:
            return {}
        placeholders = ",".join("?" for _ in contact_ids)
        rows = self._conn.execute(
            f"SELECT * FROM manual_contacts WHERE owner_id = ? AND id IN ({placeholders})",
            [owner_id, *contact_ids],
        ).fetchall()
        return {row["id"]: self._row_to_contact(row) for row in rows}

    def list_contacts(self, owner_id: str) -> list[ManualContact]:
        rows = self._conn.execute(
            "SELECT * FROM manual_contacts WHERE owner_id = ? ORDER BY updated_at DESC",
            (owner_id,),
        ).fetchall()
        return [self._row_to_contact(row) for row in rows]

    def update_contact(
        self,
        owner_id: str,
        contact_id: str,
        *,
        display_name: str | None = None,
        phone_number: str | None = _UNSET,
        social_handle: str | None = _UNSET,
    ) -> ManualContact:
        """Edit a manual contact. Pass ``None`` (or "") to clear phone/handle.

        Raises:
            NotFoundError: If the contact does not exist for this owner.
        """
        current = self.get_contact(owner_id, contact_id)
        if current is None:
            raise NotFoundError(f"Contact {contact_id} not found")

        if display_name is not None and display_name.strip():
            current.display_name = display_name.strip()
        if phone_number is not _UNSET:
            current.phone_number = _clean(phone_number)
        if social_handle is not _UNSET:
            current.social_handle = _clean(social_handle)
        current.updated_at = self._now_iso()

        with self._transaction() as conn:
            conn.execute(
                """UPDATE manual_contacts SET
                       display_name_enc = ?, phone_number_enc = ?,
                       social_handle_enc = ?, updated_at = ?
                   WHERE id = ? AND owner_id = ?""",
                (
                    self._enc.encrypt(current.display_name),
                    self._enc.encrypt(current.phone_number) or None,
                    self._enc.encrypt(current.social_handle) or None,
                    current.updated_at,
                    contact_id,
                    owner_id,
                ),
            )
        return current

    def delete_contact(self, owner_id: str, contact_id: str) -> bool:
        """Delete a manual contact, keeping its encounters.

        Encounters that referenced the contact become anonymous entries
        labelled with the contact's former display name.

        Returns:
            True if the contact existed and was deleted.
        """
        contact = self.get_contact(owner_id, contact_id)
        if contact is None:
            return False

        with self._transaction() as conn:
            detached = conn.execute(
                """UPDATE encounters SET
                       partner_kind = 'anonymous', contact_id = NULL,
                       anonymous_label_enc = ?
                   WHERE contact_id = ? AND reporter_id = ?""",
                (self._enc.encrypt(contact.display_name), contact_id, owner_id),
            ).rowcount
            conn.execute(
                "DELETE FROM manual_contacts WHERE id = ? AND owner_id = ?",
                (contact_id, owner_id),
            )
        logger.info(
            "Deleted manual contact %s (%d encounters kept as anonymous)",
            contact_id,
            detached,
        )
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_met_at(self, met_at: datetime) -> str:
        if met_at.tzinfo is None:
            raise InvalidEncounterDateError("met_at must be timezone-aware")
        if met_at > self._clock():
            raise InvalidEncounterDateError(
                f"met_at {met_at.isoformat()} is in the future"
            )
        return to_utc_iso(met_at)

    def _partner_columns(
        self, reporter_id: str, partner: Partner
    ) -> tuple[str | None, str | None, str | None]:
        """(partner_user_id, contact_id, anonymous_label_enc) for a partner."""
        if isinstance(partner, PlatformPartner):
            if partner.user_id == reporter_id:
                raise RepositoryError("An encounter partner cannot be the reporter")
            return (partner.user_id, None, None)
        if isinstance(partner, ManualPartner):
            if self.get_contact(reporter_id, partner.contact_id) is None:
                raise NotFoundError(f"Contact {partner.contact_id} not found")
            return (None, partner.contact_id, None)
        if isinstance(partner, AnonymousPartner):
            return (None, None, self._enc.encrypt(partner.label or ""))
        raise RepositoryError(f"Unsupported partner type: {type(partner).__name__}")

    def _row_to_encounter(self, row: Any) -> Encounter:
        kind = row["partner_kind"]
        partner: Partner
        if kind == "platform":
            partner = PlatformPartner(row["partner_user_id"])
        elif kind == "manual":
            partner = ManualPartner(row["contact_id"])
        else:
            partner = AnonymousPartner(self._enc.decrypt(row["anonymous_label_enc"]) or "")
        return Encounter(
            id=row["id"],
            reporter_id=row["reporter_id"],
            partner=partner,
            met_at=from_utc_iso(row["met_at"]),
            metadata=self._enc.decrypt(row["metadata_enc"]) or {},
            created_at=row["created_at"],
        )

    def _row_to_contact(self, row: Any) -> ManualContact:
        return ManualContact(
            id=row["id"],
            owner_id=row["owner_id"],
            display_name=self._enc.decrypt(row["display_name_enc"]),
            phone_number=self._enc.decrypt(row["phone_number_enc"]),
            social_handle=self._enc.decrypt(row["social_handle_enc"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None
