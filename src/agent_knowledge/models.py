from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class KnowledgeQuery(BaseModel):
    """Request addressed to one knowledge table, as issued by an agent tool call"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tenant_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tenant_id", "tenantId"),
        description="Tenant that owns the table",
    )
    agent_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("agent_id", "agentId"),
        description="Agent the table belongs to",
    )
    table_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("table_id", "tableId"),
        description="Primary key of the table",
    )
    table_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("table_name", "tableName"),
        description="Name of the table, scoped to tenant and agent",
    )
    query: str | None = Field(
        default=None,
        validation_alias=AliasChoices("query", "searchQuery", "search", "text", "userInput"),
        description="Natural-language query; blank selects browse",
    )
    top_k: int | None = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("top_k", "topK"),
        description="Maximum number of results",
    )
    similarity_threshold: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("similarity_threshold", "similarityThreshold"),
        description="Minimum similarity for vector results",
    )
    page: int = Field(default=1, ge=1, description="1-based browse page")
    limit: int | None = Field(default=None, ge=1, description="Browse page size")
    deadline: float | None = Field(
        default=None,
        gt=0,
        description="Overall search budget in seconds",
    )

    @property
    def normalized_query(self) -> str | None:
        if self.query is None:
            return None
        stripped = self.query.strip()
        return stripped or None
