"""
Resolution of caller-supplied table identifiers to knowledge table metadata.
"""

from __future__ import annotations

import logging

from ..errors import ConfigurationError, NotFoundError, StorageFatalError
from ..storage import KnowledgeTable, TableRepository


logger = logging.getLogger(__name__)


class TableResolver:
    """Map a table id or a scoped table name to a ``KnowledgeTable``."""

    def __init__(self, repository: TableRepository) -> None:
        self.repository = repository

    def resolve(
        self,
        agent_id: str | None,
        tenant_id: str | None,
        *,
        table_id: str | None = None,
        table_name: str | None = None,
    ) -> KnowledgeTable:
        if table_id and table_name:
            raise ConfigurationError("Provide either tableId or tableName, not both")
        if not table_id and not table_name:
            raise ConfigurationError("Either tableId or tableName must be provided")
        if not agent_id:
            raise ConfigurationError("agentId is required to resolve a knowledge table")

        if table_id:
            return self._resolve_by_id(table_id, tenant_id=tenant_id)

        if not tenant_id:
            raise ConfigurationError("tenantId is required to resolve a table by name")
        return self._resolve_by_name(str(table_name), agent_id=agent_id, tenant_id=tenant_id)

    def _resolve_by_id(self, table_id: str, *, tenant_id: str | None) -> KnowledgeTable:
        try:
            table = self.repository.find_by_id(table_id)
        except Exception as exc:
            raise StorageFatalError(f"Failed to resolve table by id: {exc}") from exc
        if table is None:
            raise NotFoundError("Knowledge table not found")
        if tenant_id and table.tenant_id != tenant_id:
            logger.warning("Table %s requested outside its tenant", table_id)
            raise NotFoundError("Knowledge table not found")
        return table

    def _resolve_by_name(self, name: str, *, agent_id: str, tenant_id: str) -> KnowledgeTable:
        try:
            table = self.repository.find_by_name_scoped(
                agent_id=agent_id,
                tenant_id=tenant_id,
                name=name,
            )
        except Exception as exc:
            raise StorageFatalError(f"Failed to resolve table by name: {exc}") from exc
        if table is None:
            raise NotFoundError("Knowledge table not found by name")
        return table
