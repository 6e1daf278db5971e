"""MCP tools for the encounter ledger and manual contacts.

Everything here is private to the owning user. Deleting a manual contact
keeps the encounters that referenced it (as anonymous entries), so the
exposure history stays complete.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from anontrace.domains.contact_tracing.models import (
    AnonymousPartner,
    ManualContact,
    ManualPartner,
    Partner,
    PlatformPartner,
)
from anontrace.domains.contact_tracing.tools.responses import (
    CALLER_ERRORS,
    ToolCall,
    parse_datetime,
)

if TYPE_CHECKING:
    from anontrace.core.audit.logger import AuditLogger
    from anontrace.domains.contact_tracing.ledger import EncounterLedger

logger = logging.getLogger(__name__)


def _partner_from_args(
    partner_user_id: str, contact_id: str, anonymous_label: str
) -> Partner:
    given = [v for v in (partner_user_id, contact_id, anonymous_label) if v]
    if len(given) > 1:
        raise ValueError("Give exactly one of partner_user_id, contact_id or anonymous_label")
    if partner_user_id:
        return PlatformPartner(partner_user_id)
    if contact_id:
        return ManualPartner(contact_id)
    return AnonymousPartner(anonymous_label)


def _contact_dict(contact: ManualContact) -> dict[str, Any]:
    return {
        "contact_id": contact.id,
        "display_name": contact.display_name,
        "phone_number": contact.phone_number,
        "social_handle": contact.social_handle,
        "updated_at": contact.updated_at,
    }


def register_ledger_tools(
    mcp: FastMCP,
    ledger: EncounterLedger,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register encounter and manual contact tools on the MCP server."""

    @mcp.tool
    async def log_encounter(
        ctx: Context,
        user_id: str,
        met_at: str,
        partner_user_id: str = "",
        contact_id: str = "",
        anonymous_label: str = "",
        location: str = "",
    ) -> str:
        """Record an encounter with a partner.

        Give exactly one partner reference. With none, the encounter is
        stored as anonymous (it still counts, but nobody can be notified).

        Args:
            user_id: The user logging the encounter.
            met_at: When it happened (ISO 8601; no offset means UTC). Must not be in the future.
            partner_user_id: A platform member's user id.
            contact_id: One of your manual contacts (see add_manual_contact).
            anonymous_label: A free-text label for someone with no contact details.
            location: Optional private note on where you met.
        """
        call = ToolCall(audit_logger, "log_encounter", {"user_id": user_id}, subject_id=user_id)
        try:
            partner = _partner_from_args(partner_user_id, contact_id, anonymous_label)
            encounter = ledger.log_encounter(
                user_id,
                partner,
                parse_datetime(met_at),
                {"location": location} if location else None,
            )
        except CALLER_ERRORS as exc:
            return call.error(exc)
        return call.ok({
            "status": "saved",
            "encounter_id": encounter.id,
            "partner_kind": encounter.partner.kind,
            "met_at": encounter.met_at.isoformat(),
        }, partner_kind=encounter.partner.kind)

    @mcp.tool
    async def delete_encounter(
        ctx: Context,
        user_id: str,
        encounter_id: str,
    ) -> str:
        """Delete one of your encounters.

        Args:
            user_id: Owner of the encounter.
            encounter_id: The encounter to delete.
        """
        deleted = ledger.delete_encounter(user_id, encounter_id)
        if not deleted:
            return json.dumps({
                "status": "not_found",
                "encounter_id": encounter_id,
                "message": "No encounter found with that ID.",
            })
        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_encounter",
                subject_id=user_id,
                record_type="encounter",
                count=1,
            )
        return json.dumps({
            "status": "deleted",
            "encounter_id": encounter_id,
        })

    @mcp.tool
    async def add_manual_contact(
        ctx: Context,
        user_id: str,
        display_name: str,
        phone_number: str = "",
        social_handle: str = "",
    ) -> str:
        """Save someone who isn't on the platform so encounters can reference them.

        With a phone number they can be alerted by anonymous SMS; without
        one you'll be reminded to reach out yourself.

        Args:
            user_id: The owner of the contact list.
            display_name: How you know them.
            phone_number: Optional phone number (E.164, e.g. '+15550100').
            social_handle: Optional social media handle.
        """
        call = ToolCall(audit_logger, "add_manual_contact", {"user_id": user_id}, subject_id=user_id)
        try:
            contact = ledger.add_contact(
                user_id,
                display_name,
                phone_number=phone_number or None,
                social_handle=social_handle or None,
            )
        except CALLER_ERRORS as exc:
            return call.error(exc)
        return call.ok({"status": "saved", **_contact_dict(contact)})

    @mcp.tool
    async def update_manual_contact(
        ctx: Context,
        user_id: str,
        contact_id: str,
        display_name: str = "",
        phone_number: str | None = None,
        social_handle: str | None = None,
    ) -> str:
        """Edit a manual contact. Omitted fields are left unchanged.

        Args:
            user_id: Owner of the contact.
            contact_id: The contact to edit.
            display_name: New name (empty keeps the current one).
            phone_number: New phone number; "" removes it.
            social_handle: New handle; "" removes it.
        """
        call = ToolCall(audit_logger, "update_manual_contact", {"user_id": user_id}, subject_id=user_id)
        changes: dict[str, Any] = {}
        if phone_number is not None:
            changes["phone_number"] = phone_number
        if social_handle is not None:
            changes["social_handle"] = social_handle
        try:
            contact = ledger.update_contact(
                user_id, contact_id, display_name=display_name or None, **changes
            )
        except CALLER_ERRORS as exc:
            return call.error(exc)
        return call.ok({"status": "updated", **_contact_dict(contact)})

    @mcp.tool
    async def delete_manual_contact(
        ctx: Context,
        user_id: str,
        contact_id: str,
    ) -> str:
        """Delete a manual contact.

        Encounters with this contact are kept, labelled with the contact's
        name, but can no longer be notified.

        Args:
            user_id: Owner of the contact.
            contact_id: The contact to delete.
        """
        if not ledger.delete_contact(user_id, contact_id):
            return json.dumps({
                "status": "not_found",
                "contact_id": contact_id,
                "message": "No contact found with that ID.",
            })
        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_manual_contact",
                subject_id=user_id,
                record_type="manual_contact",
                count=1,
            )
        logger.info("Manual contact deleted via tool")
        return json.dumps({
            "status": "deleted",
            "contact_id": contact_id,
        })
