"""
Structured Tool Schemas for the PLS tracker LLM pipeline.

These Pydantic models define the contract for every LLM call that returns data.
They are used in two ways:
  1. As litellm/OpenAI function-calling schemas (via .model_json_schema())
  2. As validation models for LLM response parsing

Usage:
    from app.agents.tool_schemas import get_litellm_tools, UpdateProgressTool

    tools = get_litellm_tools(["updateProgress"])
    args = UpdateProgressTool.Input.model_validate(tool_call["arguments"])

Document extraction results are a tagged union on `kind`:
    project_metadata | budget_template | budget_schedule
"""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.pls_schema import BudgetCategory, ScheduleStage


# ── Tool: updateProgress (assistant) ─────────────────────────────────────────

class AssistantProgressUpdate(BaseModel):
    """One instruction: set `progress` for a service on a set of housing units."""
    model_config = ConfigDict(populate_by_name=True)

    service_name: str = Field(
        ...,
        alias="serviceName",
        description="Exact name of the budget service as listed in the project (e.g., 'alvenaria / fechamentos')",
    )
    unit_names: List[str] = Field(
        ...,
        alias="unitNames",
        description="Housing unit names exactly as listed, or ['all'] for every unit",
    )
    progress: float = Field(
        ...,
        description="Completion percentage from 0 to 100",
    )


class UpdateProgressTool(BaseModel):
    """
    Update the completion percentage of one or more budget services for specific
    housing units. Use the unit name 'all' to update every unit of the project.
    """

    class Input(BaseModel):
        updates: List[AssistantProgressUpdate] = Field(
            ...,
            description="List of progress updates to apply in a single batch",
        )


# ── Extraction: project metadata (FRE) ───────────────────────────────────────

class ProjectMetadataExtraction(BaseModel):
    """
    Fields read from a FRE (Ficha Resumo do Empreendimento). Every field may be
    missing from a given document; required-field checks happen after parsing.
    """
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["project_metadata"] = "project_metadata"
    project_name: Optional[str] = Field(None, alias="projectName")
    cost_of_works: Optional[float] = Field(None, alias="costOfWorks")
    total_enterprise_cost: Optional[float] = Field(None, alias="totalEnterpriseCost")
    vgv: Optional[float] = None
    developer_name: Optional[str] = Field(None, alias="developerName")
    developer_cnpj: Optional[str] = Field(None, alias="developerCnpj")
    construction_company_name: Optional[str] = Field(None, alias="constructionCompanyName")
    construction_company_cnpj: Optional[str] = Field(None, alias="constructionCompanyCnpj")
    address_street: Optional[str] = Field(None, alias="addressStreet")
    address_city: Optional[str] = Field(None, alias="addressCity")
    address_state: Optional[str] = Field(None, alias="addressState")
    address_zip: Optional[str] = Field(None, alias="addressZip")
    engineer_name: Optional[str] = Field(None, alias="engineerName")
    engineer_crea: Optional[str] = Field(None, alias="engineerCrea")
    engineer_email: Optional[str] = Field(None, alias="engineerEmail")
    # kept loose so that "64.0" or "64 casas" reach the validator instead of failing parsing
    units: Optional[Union[int, float, str]] = None


# ── Extraction: budget template (Orçamento Sintético) ────────────────────────

class BudgetTemplateExtraction(BaseModel):
    kind: Literal["budget_template"] = "budget_template"
    categories: List[BudgetCategory] = Field(default_factory=list)

    @field_validator("categories")
    @classmethod
    def _drop_zero_incidence(cls, categories: List[BudgetCategory]) -> List[BudgetCategory]:
        for category in categories:
            category.sub_items = [item for item in category.sub_items if item.incidence != 0]
        return [category for category in categories if category.sub_items]


# ── Extraction: schedule (Cronograma Físico-Financeiro) ──────────────────────

class ScheduleExtraction(BaseModel):
    kind: Literal["budget_schedule"] = "budget_schedule"
    project_details: Optional[ProjectMetadataExtraction] = None
    categories: Optional[List[BudgetCategory]] = None
    duration_months: Optional[int] = None
    schedule: List[ScheduleStage] = Field(default_factory=list)


ExtractionResult = Annotated[
    Union[ProjectMetadataExtraction, BudgetTemplateExtraction, ScheduleExtraction],
    Field(discriminator="kind"),
]


class ExtractionEnvelope(BaseModel):
    """Wrapper used to validate a raw dict into the ExtractionResult union."""
    result: ExtractionResult


# ── Tool registry: maps tool names to schema classes ─────────────────────────

TOOL_REGISTRY: dict[str, type] = {
    "updateProgress": UpdateProgressTool,
}


def get_litellm_tools(tool_names: list[str] | None = None) -> list[dict]:
    """
    Build a list of tool dicts in OpenAI function-calling format.
    Pass to litellm.acompletion(tools=...) alongside messages.
    """
    names = tool_names if tool_names is not None else list(TOOL_REGISTRY.keys())
    result = []
    for name in names:
        schema_class = TOOL_REGISTRY.get(name)
        if schema_class is None:
            continue
        result.append({
            "type": "function",
            "function": {
                "name": name,
                "description": (schema_class.__doc__ or "").strip(),
                "parameters": schema_class.Input.model_json_schema(by_alias=True),
            },
        })
    return result


def parse_tool_input(tool_name: str, arguments: dict) -> BaseModel:
    """
    Validate tool-call arguments against the tool's Input schema.

    Raises:
        KeyError: If tool_name not in registry
        ValidationError: If the arguments do not match the schema
    """
    return TOOL_REGISTRY[tool_name].Input.model_validate(arguments)


def parse_extraction(data: dict) -> Union[ProjectMetadataExtraction, BudgetTemplateExtraction, ScheduleExtraction]:
    return ExtractionEnvelope.model_validate({"result": data}).result
