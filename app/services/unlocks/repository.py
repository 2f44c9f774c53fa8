"""
Repository dos cards de desbloqueio e do estado da familia usado pelos gatilhos.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.exceptions import DatabaseError
from app.services.supabase import supabase
from app.services.unlocks.types import UnlockCard, UnlockCardStatus

logger = logging.getLogger(__name__)

QUALIFYING_REFERRAL_STATUSES = ["QUALIFIED", "REWARDED"]
FUTURE_APPOINTMENT_STATUSES = ["SCHEDULED", "CONFIRMED"]


class UnlockRepository:
    """Acesso a unlock_cards, customers, referrals, orders e appointments."""

    TABLE = "unlock_cards"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or supabase

    async def list_locked_with_rule(self, family_id: str) -> List[UnlockCard]:
        """
        Cards LOCKED com regra de gatilho da familia.

        Raises:
            DatabaseError: Falha na leitura
        """
        try:
            response = (
                self.client.table(self.TABLE)
                .select("*")
                .eq("family_id", family_id)
                .eq("status", UnlockCardStatus.LOCKED.value)
                .not_.is_("trigger_rule", "null")
                .execute()
            )
            return [UnlockCard.from_db_row(row) for row in (response.data or [])]

        except Exception as e:
            logger.error(f"Erro ao listar cards da familia {family_id}: {e}")
            raise DatabaseError("Erro ao listar cards de desbloqueio", original_error=e)

    async def list_family_cards(self, family_id: str) -> List[UnlockCard]:
        try:
            response = (
                self.client.table(self.TABLE)
                .select("*")
                .eq("family_id", family_id)
                .order("created_at")
                .execute()
            )
            return [UnlockCard.from_db_row(row) for row in (response.data or [])]

        except Exception as e:
            logger.error(f"Erro ao listar cards da familia {family_id}: {e}")
            return []

    async def get_card(self, card_id: str) -> Optional[UnlockCard]:
        try:
            response = self.client.table(self.TABLE).select("*").eq("id", card_id).limit(1).execute()
            if not response.data:
                return None
            return UnlockCard.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao buscar card {card_id}: {e}")
            return None

    async def update_card(
        self,
        card_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[UnlockCardStatus] = None,
    ) -> Optional[UnlockCard]:
        """
        Atualiza o card. Com `expected_status`, so grava se o status atual bater.

        Returns:
            Card atualizado, ou None se nada mudou
        """
        try:
            query = self.client.table(self.TABLE).update(fields).eq("id", card_id)
            if expected_status is not None:
                query = query.eq("status", expected_status.value)
            response = query.execute()
            if not response.data:
                return None
            return UnlockCard.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao atualizar card {card_id}: {e}")
            raise DatabaseError("Erro ao atualizar card de desbloqueio", original_error=e)

    async def expire_past_due(self, now: datetime) -> List[str]:
        """LOCKED/UNLOCKED com expires_at no passado -> EXPIRED."""
        try:
            response = (
                self.client.table(self.TABLE)
                .update({"status": UnlockCardStatus.EXPIRED.value})
                .in_("status", [UnlockCardStatus.LOCKED.value, UnlockCardStatus.UNLOCKED.value])
                .lt("expires_at", now.isoformat())
                .execute()
            )
            return [str(row["id"]) for row in (response.data or [])]

        except Exception as e:
            logger.error(f"Erro ao expirar cards: {e}")
            raise DatabaseError("Erro ao expirar cards", original_error=e)

    # =========================================================================
    # Estado da familia
    # =========================================================================

    async def list_active_members(self, family_id: str) -> List[dict]:
        """Membros ativos: id e style_profile."""
        response = (
            self.client.table("customers")
            .select("id, style_profile")
            .eq("family_id", family_id)
            .eq("is_active", True)
            .execute()
        )
        return response.data or []

    async def count_qualifying_referrals(self, member_ids: List[str]) -> int:
        if not member_ids:
            return 0
        response = (
            self.client.table("referrals")
            .select("id", count="exact")
            .in_("referrer_id", member_ids)
            .in_("status", QUALIFYING_REFERRAL_STATUSES)
            .execute()
        )
        return response.count or 0

    async def count_picked_up_orders(self, member_ids: List[str]) -> int:
        if not member_ids:
            return 0
        response = (
            self.client.table("orders")
            .select("id", count="exact")
            .in_("customer_id", member_ids)
            .eq("status", "PICKED_UP")
            .execute()
        )
        return response.count or 0

    async def has_future_appointment(self, member_ids: List[str], now: datetime) -> bool:
        if not member_ids:
            return False
        response = (
            self.client.table("appointments")
            .select("id")
            .in_("customer_id", member_ids)
            .gte("scheduled_at", now.isoformat())
            .in_("status", FUTURE_APPOINTMENT_STATUSES)
            .limit(1)
            .execute()
        )
        return bool(response.data)


unlock_repository = UnlockRepository()
