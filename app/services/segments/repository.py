"""
Repository da populacao de clientes para segmentacao.

Uma leitura em lote (paginada) de `customers` com todas as relacoes que
os campos do registro usam, embutidas via PostgREST. Os filtros diretos
do segmento compilado vao para a query; o resto e avaliado em memoria.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from app.core.config import CampaignsConfig
from app.core.exceptions import DatabaseError
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.compiler import PushdownFilter
from app.services.segments.types import Operator
from app.services.supabase import supabase

logger = logging.getLogger(__name__)


POPULATION_SELECT = ", ".join(
    [
        "*",
        "orders(id, status, total_real, picked_up_at, created_at, frame_brand, frame_model)",
        "exams(exam_date)",
        "prescriptions(type, date, expiry_date, is_active)",
        "insurance_policies(provider_name, renewal_month, is_active, created_at)",
        "walkins(outcome, visited_at)",
        "medical_histories(primary_use, wears_contacts)",
        "referrals_given:referrals!referrer_id(code, created_at)",
        "family:families(members:customers(id))",
        "messages(created_at)",
    ]
)


def apply_pushdown(query, filters: Iterable[PushdownFilter]):
    """Traduz filtros compilados para o query builder do PostgREST."""
    for f in filters:
        op = f.operator
        if op == Operator.EQ:
            query = query.eq(f.column, f.value)
        elif op == Operator.NEQ:
            query = query.neq(f.column, f.value)
        elif op == Operator.GT:
            query = query.gt(f.column, f.value)
        elif op == Operator.GTE:
            query = query.gte(f.column, f.value)
        elif op == Operator.LT:
            query = query.lt(f.column, f.value)
        elif op == Operator.LTE:
            query = query.lte(f.column, f.value)
        elif op == Operator.IN:
            query = query.in_(f.column, list(f.value))
        elif op == Operator.NOT_IN:
            query = query.not_.in_(f.column, list(f.value))
        elif op == Operator.CONTAINS:
            query = query.ilike(f.column, f"%{f.value}%")
        elif op == Operator.IS_NULL:
            query = query.is_(f.column, "null")
        elif op == Operator.IS_NOT_NULL:
            query = query.not_.is_(f.column, "null")
    return query


class CustomerPopulationRepository:
    """Leitura de clientes para segmentacao e escrita de opt-out."""

    TABLE = "customers"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or supabase

    async def load_population(
        self,
        filters: Iterable[PushdownFilter] = (),
        limit: Optional[int] = None,
    ) -> List[CustomerSnapshot]:
        """
        Carrega a populacao candidata em lote.

        Args:
            filters: Filtros diretos do segmento compilado
            limit: Maximo de clientes (None = todos)

        Returns:
            Lista de CustomerSnapshot ordenada por id

        Raises:
            DatabaseError: Falha na leitura. Nunca retorna populacao
                parcial como se fosse completa.
        """
        filters = list(filters)
        page_size = CampaignsConfig.POPULATION_PAGE_SIZE
        snapshots: List[CustomerSnapshot] = []
        inicio = 0

        try:
            while True:
                fim = inicio + page_size - 1
                if limit is not None:
                    fim = min(fim, limit - 1)

                query = self.client.table(self.TABLE).select(POPULATION_SELECT)
                query = apply_pushdown(query, filters)
                query = query.order("created_at", desc=True, foreign_table="messages")
                query = query.limit(1, foreign_table="messages")
                response = query.order("id").range(inicio, fim).execute()

                rows = response.data or []
                snapshots.extend(CustomerSnapshot.from_db_row(row) for row in rows)

                if len(rows) < fim - inicio + 1:
                    break
                if limit is not None and len(snapshots) >= limit:
                    break
                inicio = fim + 1

        except Exception as e:
            logger.error(f"Erro ao carregar populacao de clientes: {e}")
            raise DatabaseError("Erro ao carregar populacao de clientes", original_error=e)

        logger.debug(f"[Population] {len(snapshots)} clientes carregados ({len(filters)} filtros)")
        return snapshots

    async def load_customer(self, customer_id: str) -> Optional[CustomerSnapshot]:
        """Carrega um cliente com relacoes (templates, checagem de contato)."""
        try:
            response = (
                self.client.table(self.TABLE)
                .select(POPULATION_SELECT)
                .eq("id", customer_id)
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            return CustomerSnapshot.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao carregar cliente {customer_id}: {e}")
            return None

    async def load_customers(self, customer_ids: Iterable[str]) -> Dict[str, CustomerSnapshot]:
        """
        Carrega clientes por id, em lotes.

        Raises:
            DatabaseError: Falha na leitura
        """
        ids = sorted(set(customer_ids))
        page_size = CampaignsConfig.POPULATION_PAGE_SIZE
        snapshots: Dict[str, CustomerSnapshot] = {}

        try:
            for inicio in range(0, len(ids), page_size):
                lote = ids[inicio:inicio + page_size]
                query = self.client.table(self.TABLE).select(POPULATION_SELECT).in_("id", lote)
                query = query.order("created_at", desc=True, foreign_table="messages")
                query = query.limit(1, foreign_table="messages")
                response = query.execute()
                for row in response.data or []:
                    snapshot = CustomerSnapshot.from_db_row(row)
                    snapshots[snapshot.id] = snapshot

        except Exception as e:
            logger.error(f"Erro ao carregar clientes por id: {e}")
            raise DatabaseError("Erro ao carregar clientes", original_error=e)

        return snapshots

    async def mark_opted_out(
        self,
        customer_id: str,
        source: str,
        reason: Optional[str],
        when: datetime,
    ) -> bool:
        """
        Marca opt-out de marketing no cadastro do cliente.

        Returns:
            False se o cliente nao existe

        Raises:
            DatabaseError: Falha na escrita
        """
        try:
            response = (
                self.client.table(self.TABLE)
                .update(
                    {
                        "marketing_opt_out": True,
                        "marketing_opt_out_at": when.isoformat(),
                        "marketing_opt_out_source": source,
                        "marketing_opt_out_reason": reason,
                    }
                )
                .eq("id", customer_id)
                .execute()
            )
            return bool(response.data)

        except Exception as e:
            logger.error(f"Erro ao registrar opt-out do cliente {customer_id}: {e}")
            raise DatabaseError(f"Erro ao registrar opt-out do cliente {customer_id}", original_error=e)


population_repository = CustomerPopulationRepository()
