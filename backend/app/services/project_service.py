"""
Project operations — every mutation of a project document goes through here.

Each function takes a Project and returns a new Project; the input is never
modified. Persistence happens afterwards in the store layer, so a failed write
leaves the caller's value intact.

Covers:
  - project creation from a draft (default template, zeroed matrix)
  - single-cell and bulk-row progress edits with change logging
  - full-document updates with housing-unit reconciliation
  - template edits (replace, rename item, change item id, add item/category)
  - housing-unit edits (add, remove, rename, quick-generate)
  - metadata, budget template and schedule imports from extracted documents
  - report archiving
"""
import logging
import math
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import uuid4

from app.agents.tool_schemas import ProjectMetadataExtraction, ScheduleExtraction
from app.models.pls_schema import (
    Address,
    ArchivedReport,
    BudgetCategory,
    BudgetLineItem,
    Company,
    Engineer,
    HousingUnit,
    Project,
    ProjectDraft,
    ReportOptions,
)
from app.services.aggregation_engine import AggregationEngine
from app.services.change_log import ChangeRecorder, append_entries
from app.services.errors import ResolutionError, ValidationFailed
from app.services.pls_template import (
    DEFAULT_TEMPLATE,
    balance_status,
    find_item,
    iter_items,
    sort_items_naturally,
    template_for,
    total_incidence,
)
from app.services.progress_matrix import (
    clamp_progress,
    ensure_matrix_shape,
    read_row,
    rename_row,
    retain_template_rows,
    unit_index,
    value_at,
    with_row,
    with_value,
    zero_matrix,
)
from app.services.unit_reconciliation import reconcile_units, units_changed

logger = logging.getLogger("pls-projects")

DEFAULT_UNIT_PREFIX = "Casa"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def round_progress(value: float) -> float:
    """Clamp to [0, 100] and round half up to a whole percent."""
    return float(math.floor(clamp_progress(value) + 0.5))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def validate_draft(draft: ProjectDraft) -> None:
    errors = []
    if not draft.name or not draft.name.strip():
        errors.append("name: required")
    if draft.cost_of_works <= 0:
        errors.append("cost_of_works: must be greater than zero")
    unit_ids = [u.id for u in draft.housing_units]
    if len(set(unit_ids)) != len(unit_ids):
        errors.append("housing_units: ids must be unique")
    if errors:
        raise ValidationFailed(errors, "Invalid project data")


def new_project(draft: ProjectDraft, owner_id: str, project_id: Optional[str] = None) -> Project:
    validate_draft(draft)
    template = draft.pls_data or DEFAULT_TEMPLATE
    data = draft.model_dump()
    project = Project.model_validate({
        **data,
        "id": project_id or str(uuid4()),
        "owner_id": owner_id,
        "members": [owner_id],
        "progress": zero_matrix(template, len(draft.housing_units)),
        "created_at": _now_iso(),
    })
    logger.info("Created project %s with %d unit(s)", project.id, len(project.housing_units),
                extra={"project_id": project.id})
    return project


# ---------------------------------------------------------------------------
# Progress edits
# ---------------------------------------------------------------------------

def resolve_unit_index(project: Project, unit_id: str) -> int:
    index = unit_index(project.housing_units, unit_id)
    if index == -1:
        raise ResolutionError(f"Housing unit '{unit_id}' not found in project {project.id}")
    return index


def update_single_progress(project: Project, item_id: str, unit_idx: int, value: float) -> Project:
    """
    Set one cell. The value is clamped and rounded to a whole percent; when it
    equals the stored value the project is returned unchanged and nothing is logged.
    """
    template = template_for(project)
    item = find_item(template, item_id)
    if item is None:
        raise ResolutionError(f"Budget item '{item_id}' not found in project {project.id}")
    unit_count = len(project.housing_units)
    if not 0 <= unit_idx < unit_count:
        raise ResolutionError(f"Housing unit index {unit_idx} out of range (0..{unit_count - 1})")

    new_value = round_progress(value)
    old_value = value_at(project.progress, item_id, unit_idx)
    if old_value == new_value:
        return project

    unit = project.housing_units[unit_idx]
    recorder = ChangeRecorder()
    recorder.record(item.id, item.name, unit.id, unit.name, old_value, new_value)

    updated = project.model_copy(deep=True)
    updated.progress = with_value(project.progress, item_id, unit_idx, unit_count, new_value)
    updated.history = append_entries(project.history, recorder.entries)
    return updated


def update_progress_row(project: Project, item_id: str, values: Sequence[float]) -> Project:
    """Replace a whole row; one change-log entry per cell whose value changed."""
    template = template_for(project)
    item = find_item(template, item_id)
    if item is None:
        raise ResolutionError(f"Budget item '{item_id}' not found in project {project.id}")
    unit_count = len(project.housing_units)

    old_row = read_row(project.progress, item_id, unit_count)
    new_row = [clamp_progress(v) for v in read_row({item_id: list(values)}, item_id, unit_count)]

    recorder = ChangeRecorder()
    for index, unit in enumerate(project.housing_units):
        recorder.record(item.id, item.name, unit.id, unit.name, old_row[index], new_row[index])

    updated = project.model_copy(deep=True)
    updated.progress = with_row(project.progress, item_id, new_row, unit_count)
    updated.history = append_entries(project.history, recorder.entries)
    return updated


# ---------------------------------------------------------------------------
# Whole-document update
# ---------------------------------------------------------------------------

def update_project(old: Project, new: Project, mode: Optional[str] = None) -> Project:
    """
    Accept an edited project document. Identity fields (id, owner, members,
    created_at) and the change log always come from the stored value. When
    the housing-unit list changed, the progress matrix is reconciled before
    anything else.

    Progress cells that differ from the stored matrix are committed like a
    bulk edit: values are clamped and each changed cell gets one change-log
    entry. Rows outside the template keep their stored values.
    """
    unit_ids = [u.id for u in new.housing_units]
    if len(set(unit_ids)) != len(unit_ids):
        raise ValidationFailed(["housing_units: ids must be unique"], "Invalid project data")

    updated = new.model_copy(deep=True)
    updated.id = old.id
    updated.owner_id = old.owner_id
    updated.members = list(old.members)
    updated.created_at = old.created_at

    before, after = old.progress, updated.progress
    if units_changed(old.housing_units, new.housing_units):
        # the incoming matrix is still laid out for the old unit list
        before = reconcile_units(old.housing_units, new.housing_units, before, mode)
        after = reconcile_units(old.housing_units, new.housing_units, after, mode)
        logger.info("Reconciled units for %s: %d -> %d", old.id, len(old.housing_units),
                    len(new.housing_units), extra={"project_id": old.id})

    template = template_for(updated)
    unit_count = len(updated.housing_units)
    before = ensure_matrix_shape(before, template, unit_count)
    after = ensure_matrix_shape(after, template, unit_count)

    recorder = ChangeRecorder()
    progress = {k: row for k, row in before.items() if find_item(template, k) is None}
    for _, item in iter_items(template):
        old_row = before[item.id]
        new_row = [clamp_progress(v) for v in after[item.id]]
        for index, unit in enumerate(updated.housing_units):
            recorder.record(item.id, item.name, unit.id, unit.name, old_row[index], new_row[index])
        progress[item.id] = new_row

    updated.progress = progress
    updated.history = append_entries(old.history, recorder.entries)
    if len(recorder):
        logger.info("Document update on %s changed %d cell(s)", old.id, len(recorder),
                    extra={"project_id": old.id})
    return updated


# ---------------------------------------------------------------------------
# Template edits
# ---------------------------------------------------------------------------

def _validate_template(template: Sequence[BudgetCategory]) -> List[str]:
    errors = []
    seen = set()
    for category, item in iter_items(template):
        if not item.id.strip():
            errors.append(f"{category.id}: item id required")
        elif item.id in seen:
            errors.append(f"{item.id}: duplicate item id")
        seen.add(item.id)
    return errors


def save_template(project: Project, template: Sequence[BudgetCategory], force: bool = False) -> Project:
    """
    Replace the template. Rows of surviving item ids keep their values, new ids
    start at 0, removed ids are dropped. A template whose total incidence is
    not balanced is rejected unless `force` is set.
    """
    template = [c.model_copy(deep=True) for c in template]
    errors = _validate_template(template)
    total = total_incidence(template)
    if not force and balance_status(total) != "balanced":
        errors.append(f"incidence: total is {total:.2f}%, expected 100%")
    if errors:
        raise ValidationFailed(errors, "Invalid budget template")

    updated = project.model_copy(deep=True)
    updated.pls_data = template
    updated.progress = retain_template_rows(project.progress, template, len(project.housing_units))
    return updated


def _find_category(template: Sequence[BudgetCategory], category_id: str) -> Optional[BudgetCategory]:
    for category in template:
        if category.id == category_id:
            return category
    return None


def rename_item(project: Project, category_id: str, item_id: str, name: str) -> Project:
    """Rename a line item; unknown category or item leaves the project as is."""
    template = [c.model_copy(deep=True) for c in template_for(project)]
    category = _find_category(template, category_id)
    item = next((i for i in category.sub_items if i.id == item_id), None) if category else None
    if item is None:
        return project
    item.name = name
    updated = project.model_copy(deep=True)
    updated.pls_data = template
    return updated


def update_item_id(project: Project, category_id: str, old_id: str, new_id: str) -> Project:
    """Change an item's id, move its progress row and re-sort the category naturally."""
    new_id = (new_id or "").strip()
    template = [c.model_copy(deep=True) for c in template_for(project)]
    category = _find_category(template, category_id)
    item = next((i for i in category.sub_items if i.id == old_id), None) if category else None
    if item is None:
        raise ResolutionError(f"Budget item '{old_id}' not found in category '{category_id}'")
    if new_id == old_id:
        return project
    if not new_id:
        raise ValidationFailed(["id: required"], "Invalid item id")
    if find_item(template, new_id) is not None:
        raise ValidationFailed([f"{new_id}: duplicate item id"], "Invalid item id")

    item.id = new_id
    category.sub_items = sort_items_naturally(category.sub_items)
    updated = project.model_copy(deep=True)
    updated.pls_data = template
    updated.progress = rename_row(project.progress, old_id, new_id)
    return updated


def add_category(project: Project, name: str = "Nova Etapa") -> Project:
    template = [c.model_copy(deep=True) for c in template_for(project)]
    template.append(BudgetCategory(id=str(len(template) + 1), name=name, sub_items=[]))
    updated = project.model_copy(deep=True)
    updated.pls_data = template
    return updated


def add_line_item(
    project: Project,
    category_id: str,
    name: str = "Novo Serviço",
    incidence: float = 0.0,
    unit: str = "un",
) -> Project:
    template = [c.model_copy(deep=True) for c in template_for(project)]
    category = _find_category(template, category_id)
    if category is None:
        raise ResolutionError(f"Category '{category_id}' not found")
    item_id = f"{category.id}.{len(category.sub_items) + 1}"
    if find_item(template, item_id) is not None:
        item_id = f"{item_id}-{uuid4().hex[:4]}"
    category.sub_items.append(BudgetLineItem(id=item_id, name=name, incidence=incidence, unit=unit))
    updated = project.model_copy(deep=True)
    updated.pls_data = template
    updated.progress = ensure_matrix_shape(project.progress, template, len(project.housing_units))
    return updated


# ---------------------------------------------------------------------------
# Housing units
# ---------------------------------------------------------------------------

def generate_units(prefix: str, start: int, end: int) -> List[HousingUnit]:
    """Quick-generate `prefix NN` units, zero-padded to the width of `end` (at least 2)."""
    if start > end:
        return []
    width = max(2, len(str(end)))
    return [
        HousingUnit(id=_new_id("unit"), name=f"{prefix} {str(i).zfill(width)}".strip())
        for i in range(start, end + 1)
    ]


def _with_units(project: Project, units: List[HousingUnit]) -> Project:
    candidate = project.model_copy(deep=True)
    candidate.housing_units = units
    return update_project(project, candidate)


def add_units(project: Project, units: Sequence[HousingUnit]) -> Project:
    return _with_units(project, list(project.housing_units) + list(units))


def add_unit(project: Project, name: str) -> Project:
    return add_units(project, [HousingUnit(id=_new_id("unit"), name=name)])


def remove_unit(project: Project, unit_id: str) -> Project:
    resolve_unit_index(project, unit_id)
    return _with_units(project, [u for u in project.housing_units if u.id != unit_id])


def rename_unit(project: Project, unit_id: str, name: str) -> Project:
    resolve_unit_index(project, unit_id)
    units = [
        HousingUnit(id=u.id, name=name) if u.id == unit_id else u.model_copy()
        for u in project.housing_units
    ]
    updated = project.model_copy(deep=True)
    updated.housing_units = units
    return updated


# ---------------------------------------------------------------------------
# Imports and reports
# ---------------------------------------------------------------------------

def apply_metadata(
    draft: ProjectDraft, extracted: ProjectMetadataExtraction, imported_at: Optional[str] = None
) -> ProjectDraft:
    """
    Merge extracted FRE fields into a draft; empty extracted values keep the
    draft's. When the draft has no units and the document states a count,
    `Casa NN` units are generated.
    """
    def pick(new, old):
        return new if new not in (None, "") else old

    def pick_number(new, old):
        return float(new) if isinstance(new, (int, float)) and not isinstance(new, bool) else old

    updated = draft.model_copy(deep=True)
    updated.name = pick(extracted.project_name, draft.name)
    updated.cost_of_works = pick_number(extracted.cost_of_works, draft.cost_of_works)
    updated.total_enterprise_cost = pick_number(extracted.total_enterprise_cost, draft.total_enterprise_cost)
    updated.vgv = pick_number(extracted.vgv, draft.vgv)
    updated.developer = Company(
        name=pick(extracted.developer_name, draft.developer.name),
        cnpj=pick(extracted.developer_cnpj, draft.developer.cnpj),
    )
    updated.construction_company = Company(
        name=pick(extracted.construction_company_name, draft.construction_company.name),
        cnpj=pick(extracted.construction_company_cnpj, draft.construction_company.cnpj),
    )
    updated.address = Address(
        street=pick(extracted.address_street, draft.address.street),
        city=pick(extracted.address_city, draft.address.city),
        state=pick(extracted.address_state, draft.address.state),
        zip=pick(extracted.address_zip, draft.address.zip),
        latitude=draft.address.latitude,
        longitude=draft.address.longitude,
    )
    updated.responsible_engineer = Engineer(
        name=pick(extracted.engineer_name, draft.responsible_engineer.name),
        crea=pick(extracted.engineer_crea, draft.responsible_engineer.crea),
        email=pick(extracted.engineer_email, draft.responsible_engineer.email),
    )
    units = extracted.units
    unit_count = int(units) if isinstance(units, (int, float)) and float(units).is_integer() else 0
    if unit_count > 0 and not draft.housing_units:
        updated.housing_units = generate_units(DEFAULT_UNIT_PREFIX, 1, unit_count)
    updated.import_metadata.fre_imported_at = imported_at or _now_iso()
    return updated


def apply_budget_template(
    project: Project, categories: Sequence[BudgetCategory], imported_at: Optional[str] = None
) -> Project:
    """Replace the template with an imported budget; rows of matching item ids survive."""
    updated = save_template(project, categories, force=True)
    updated.import_metadata.pls_imported_at = imported_at or _now_iso()
    return updated


def apply_schedule(
    project: Project, extracted: ScheduleExtraction, imported_at: Optional[str] = None
) -> Project:
    updated = project.model_copy(deep=True)
    updated.schedule = [s.model_copy() for s in extracted.schedule]
    updated.duration_months = extracted.duration_months or (len(extracted.schedule) or None)
    updated.import_metadata.schedule_imported_at = imported_at or _now_iso()
    return updated


def archive_report(project: Project, options: ReportOptions, report_format: str) -> Project:
    """Append an archived report carrying snapshots of financials, matrix and priced template."""
    engine = AggregationEngine.for_project(project)
    report = ArchivedReport(
        id=_new_id("report"),
        title=options.title,
        generated_at=_now_iso(),
        format=report_format,
        options=options,
        financials_snapshot=engine.compute().to_wire(),
        progress_snapshot={k: list(v) for k, v in project.progress.items()},
        pls_data_snapshot=[c.to_wire() for c in engine.priced_template()],
    )
    updated = project.model_copy(deep=True)
    updated.archived_reports = list(project.archived_reports) + [report]
    return updated
