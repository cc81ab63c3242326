"""
Command dispatcher: inbound chat text and button postbacks to engine calls.

Text commands (case-insensitive):
    register            onboarding link (mentions an existing ACTIVE vault)
    create              onboarding link for an additional vault
    checkin             check in every ACTIVE vault of the sender
    list                the sender's vaults
    deactivate <id>     permanently disable one vault

Postbacks (button callback data, query-string encoded):
    action=checkin
    action=deactivate&vaultId=<id>

Every handler returns a notification template for the transport to render.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs

from keeper.engine.lifecycle import VaultLifecycleEngine
from keeper.notify.templates import (
    CheckinConfirm,
    DeactivationConfirm,
    Notification,
    RegisterPrompt,
    VaultList,
    Welcome,
)

logger = logging.getLogger(__name__)


class CommandDispatcher:
    def __init__(self, engine: VaultLifecycleEngine) -> None:
        self.engine = engine

    async def handle_text(self, contact_ref: str, text: str) -> Notification:
        words = text.strip().split()
        if not words:
            return Welcome()
        command = words[0].lower().lstrip("/")
        logger.info("Command %r from %s", command, contact_ref)

        if command == "register":
            has_active = await self.engine.has_active_vault(contact_ref)
            return RegisterPrompt(
                onboard_url=self.engine.config.onboard_url(contact_ref),
                has_active_vault=has_active,
            )
        if command == "create":
            return RegisterPrompt(onboard_url=self.engine.config.onboard_url(contact_ref))
        if command == "checkin":
            return await self._checkin(contact_ref)
        if command == "list":
            return VaultList(vaults=await self.engine.list_vaults(contact_ref))
        if command == "deactivate" and len(words) > 1:
            return await self._deactivate(contact_ref, words[1])
        return Welcome()

    async def handle_action(self, contact_ref: str, data: str) -> Notification | None:
        params = {k: v[0] for k, v in parse_qs(data).items() if v}
        action = params.get("action", "")

        if action == "checkin":
            return await self._checkin(contact_ref)
        if action == "deactivate" and params.get("vaultId"):
            return await self._deactivate(contact_ref, params["vaultId"])

        logger.warning("Unknown postback from %s: %r", contact_ref, data)
        return None

    async def _checkin(self, contact_ref: str) -> CheckinConfirm:
        result = await self.engine.checkin_owner(contact_ref)
        return CheckinConfirm(refreshed=len(result.vault_ids))

    async def _deactivate(self, contact_ref: str, vault_id: str) -> DeactivationConfirm:
        result = await self.engine.deactivate(vault_id, contact_ref)
        if not result.ok:
            logger.info("Deactivate %s by %s refused: %s", vault_id, contact_ref, result.outcome)
        return DeactivationConfirm(vault_id=vault_id, success=result.ok)
