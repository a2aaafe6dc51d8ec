"""
Domain schema for PLS projects (Planilha de Levantamento de Serviços).

Wire names follow the stored project documents: camelCase inside the budget
template, change log and aggregate outputs, snake_case on the project record.
Python attributes are always snake_case; every model accepts both spellings.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# item id -> one completion percentage (0-100) per housing unit, by list position
ProgressMatrix = Dict[str, List[float]]


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ── BUDGET TEMPLATE ──────────────────────────────────────────────────────────

class BudgetLineItem(WireModel):
    """One billable service; `incidence` is its percent share of the cost of works."""
    id: str
    name: str
    incidence: float = 0.0
    unit: str = "vb"


class BudgetCategory(WireModel):
    id: str
    name: str
    sub_items: List[BudgetLineItem] = Field(default_factory=list, alias="subItems")


# ── UNITS & HISTORY ──────────────────────────────────────────────────────────

class HousingUnit(WireModel):
    id: str
    name: str


class ChangeLogEntry(WireModel):
    """A single committed progress change. Names are captured at write time."""
    id: str
    timestamp: str
    item_id: str = Field(alias="itemId")
    item_name: str = Field(alias="itemName")
    unit_id: str = Field("", alias="unitId")
    unit_name: str = Field(alias="unitName")
    old_progress: float = Field(alias="oldProgress")
    new_progress: float = Field(alias="newProgress")


class ScheduleStage(WireModel):
    stage: int
    physical_progress_stage: float = 0.0
    physical_progress_accumulated: float = 0.0
    financial_release_stage: float = 0.0
    financial_release_accumulated: float = 0.0


# ── PROJECT DOCUMENT ─────────────────────────────────────────────────────────

class Address(WireModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class Company(WireModel):
    name: str = ""
    cnpj: str = ""


class Engineer(WireModel):
    name: str = ""
    crea: str = ""
    email: str = ""


class ImportMetadata(WireModel):
    fre_imported_at: Optional[str] = None
    pls_imported_at: Optional[str] = None
    schedule_imported_at: Optional[str] = None


class LayoutTemplate(WireModel):
    """Visual settings applied to PDF reports."""
    id: str
    name: str
    primary_color: str = Field("#1e3a5f", alias="primaryColor")
    font_family: str = Field("Helvetica", alias="fontFamily")
    header_text: Optional[str] = Field(None, alias="headerText")
    footer_text: Optional[str] = Field(None, alias="footerText")
    is_default: bool = Field(False, alias="isDefault")


class ReportOptions(WireModel):
    title: str = "Relatório de Progresso"
    include_project_details: bool = Field(True, alias="includeProjectDetails")
    include_financial_summary: bool = Field(True, alias="includeFinancialSummary")
    include_progress_table: bool = Field(True, alias="includeProgressTable")
    include_unit_details: bool = Field(False, alias="includeUnitDetails")
    # empty list means every category
    selected_category_ids: List[str] = Field(default_factory=list, alias="selectedCategoryIds")
    ai_summary: Optional[str] = Field(None, alias="aiSummary")
    layout: Optional[LayoutTemplate] = None
    orientation: Literal["p", "l"] = "p"
    measurement_number: int = Field(1, alias="measurementNumber")


class ArchivedReport(WireModel):
    id: str
    title: str
    generated_at: str = Field(alias="generatedAt")
    format: Literal["pdf", "xlsx", "json"]
    options: ReportOptions
    financials_snapshot: Dict[str, Any] = Field(default_factory=dict, alias="financialsSnapshot")
    progress_snapshot: ProgressMatrix = Field(default_factory=dict, alias="progressSnapshot")
    pls_data_snapshot: List[Dict[str, Any]] = Field(default_factory=list, alias="plsDataSnapshot")


class Project(WireModel):
    id: str = ""
    name: str
    owner_id: str = Field("", alias="ownerId")
    members: List[str] = Field(default_factory=list)
    housing_units: List[HousingUnit] = Field(default_factory=list)
    progress: ProgressMatrix = Field(default_factory=dict)
    created_at: str = ""
    address: Address = Field(default_factory=Address)
    developer: Company = Field(default_factory=Company)
    construction_company: Company = Field(default_factory=Company)
    cost_of_works: float = 0.0
    total_enterprise_cost: float = 0.0
    vgv: float = 0.0
    responsible_engineer: Engineer = Field(default_factory=Engineer)
    # None means the project uses the default template
    pls_data: Optional[List[BudgetCategory]] = None
    history: List[ChangeLogEntry] = Field(default_factory=list)
    schedule: List[ScheduleStage] = Field(default_factory=list)
    duration_months: Optional[int] = None
    archived_reports: List[ArchivedReport] = Field(default_factory=list)
    layouts: List[LayoutTemplate] = Field(default_factory=list)
    import_metadata: ImportMetadata = Field(default_factory=ImportMetadata)

    @field_validator("progress", mode="before")
    @classmethod
    def _coerce_progress(cls, value):
        # Older backups carry nulls or strings in the matrix.
        if not isinstance(value, dict):
            return {}
        cleaned = {}
        for item_id, row in value.items():
            if not isinstance(row, list):
                cleaned[str(item_id)] = []
                continue
            cleaned[str(item_id)] = [
                float(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else 0.0
                for v in row
            ]
        return cleaned


class ProjectDraft(WireModel):
    """Project data supplied at creation; ids, matrix, owner and timestamps are assigned."""
    name: str
    housing_units: List[HousingUnit] = Field(default_factory=list)
    address: Address = Field(default_factory=Address)
    developer: Company = Field(default_factory=Company)
    construction_company: Company = Field(default_factory=Company)
    cost_of_works: float = 0.0
    total_enterprise_cost: float = 0.0
    vgv: float = 0.0
    responsible_engineer: Engineer = Field(default_factory=Engineer)
    pls_data: Optional[List[BudgetCategory]] = None
    schedule: List[ScheduleStage] = Field(default_factory=list)
    duration_months: Optional[int] = None
    import_metadata: ImportMetadata = Field(default_factory=ImportMetadata)


# ── AGGREGATES ───────────────────────────────────────────────────────────────

class PricedLineItem(BudgetLineItem):
    cost: float = 0.0


class PricedCategory(WireModel):
    id: str
    name: str
    sub_items: List[PricedLineItem] = Field(default_factory=list, alias="subItems")
    total_incidence: float = Field(0.0, alias="totalIncidence")
    total_cost: float = Field(0.0, alias="totalCost")
    accumulated_percentage: float = Field(0.0, alias="accumulatedPercentage")


class CategoryFinancials(WireModel):
    id: str
    name: str
    released: float
    progress: float
    total_cost: float = Field(alias="totalCost")
    total_incidence: float = Field(alias="totalIncidence")
    measured_incidence: float = Field(alias="measuredIncidence")


class Financials(WireModel):
    total_progress: float = Field(0.0, alias="totalProgress")
    total_released: float = Field(0.0, alias="totalReleased")
    balance_to_measure: float = Field(0.0, alias="balanceToMeasure")
    category_totals: List[CategoryFinancials] = Field(default_factory=list, alias="categoryTotals")


class ProgressedItem(WireModel):
    category: str
    id: str
    name: str
    progress: float


class UnitFinancials(WireModel):
    id: str
    name: str
    progress: float
    progressed_items: List[ProgressedItem] = Field(default_factory=list, alias="progressedItems")


class IncidenceBalance(WireModel):
    total: float
    status: Literal["balanced", "warning", "invalid"]
    category_totals: Dict[str, float] = Field(default_factory=dict, alias="categoryTotals")


class ProjectSnapshot(WireModel):
    """Read-only aggregate handed to every export writer."""
    project_id: str = Field(alias="projectId")
    project_name: str = Field(alias="projectName")
    cost_of_works: float = Field(alias="costOfWorks")
    unit_count: int = Field(alias="unitCount")
    financials: Financials
    pls: List[PricedCategory] = Field(default_factory=list)
    units: List[UnitFinancials] = Field(default_factory=list)
    balance: IncidenceBalance
