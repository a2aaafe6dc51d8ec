"""
Project API — CRUD, progress edits, template and unit edits, sharing, history.

Every mutation loads the stored project, runs one pure service operation on it
and writes the result back as a whole document (last write wins).
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import (
    CurrentUser,
    get_current_user,
    get_member_project,
    get_owned_project,
    get_project_store,
)
from app.models.pls_schema import BudgetCategory, Project, ProjectDraft
from app.services import project_service
from app.services.aggregation_engine import AggregationEngine, compute_financials, project_snapshot
from app.services.change_log import filter_entries, group_by_date, newest_first
from app.services.project_store import ProjectStore

logger = logging.getLogger("pls-api.projects")

router = APIRouter(prefix="/api/projects", tags=["Projects"])
me_router = APIRouter(prefix="/api", tags=["Account"])


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CellUpdate(_Body):
    value: float


class RowUpdate(_Body):
    values: List[float]


class TemplateUpdate(_Body):
    template: List[BudgetCategory]
    force: bool = False


class ItemUpdate(_Body):
    name: Optional[str] = None
    new_id: Optional[str] = Field(None, alias="newId")


class CategoryCreate(_Body):
    name: str = "Nova Etapa"


class LineItemCreate(_Body):
    name: str = "Novo Serviço"
    incidence: float = 0.0
    unit: str = "un"


class UnitCreate(_Body):
    """Either a single `name`, or `prefix` + `start`..`end` for quick generation."""
    name: Optional[str] = None
    prefix: str = project_service.DEFAULT_UNIT_PREFIX
    start: Optional[int] = None
    end: Optional[int] = None


class UnitRename(_Body):
    name: str


class MemberInvite(_Body):
    email: str


async def _save(store: ProjectStore, project: Project) -> dict:
    saved = await store.update(project)
    return saved.to_wire()


# ─── Collection ──────────────────────────────────────────────────────────────

@router.get("")
async def list_projects(
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
):
    await store.ensure_user(user.uid, user.email)
    return [p.to_wire() for p in await store.load(user.uid)]


@router.post("", status_code=201)
async def create_project(
    draft: ProjectDraft,
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
):
    project = await store.create(draft, user.uid)
    logger.info("Project created", extra={"project_id": project.id, "user_id": user.uid})
    return project.to_wire()


@router.get("/{project_id}")
async def get_project(project: Project = Depends(get_member_project)):
    return project.to_wire()


@router.put("/{project_id}")
async def replace_project(
    incoming: Project,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    return await _save(store, project_service.update_project(project, incoming))


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project: Project = Depends(get_owned_project),
    store: ProjectStore = Depends(get_project_store),
):
    await store.delete(project.id)
    logger.info("Project deleted", extra={"project_id": project.id})


# ─── Aggregates ──────────────────────────────────────────────────────────────

@router.get("/{project_id}/financials")
async def get_financials(project: Project = Depends(get_member_project)):
    return compute_financials(project).to_wire()


@router.get("/{project_id}/snapshot")
async def get_snapshot(project: Project = Depends(get_member_project)):
    return project_snapshot(project).to_wire()


# ─── Progress ────────────────────────────────────────────────────────────────

@router.put("/{project_id}/progress/{item_id}/{unit_id}")
async def set_progress_cell(
    item_id: str,
    unit_id: str,
    body: CellUpdate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    index = project_service.resolve_unit_index(project, unit_id)
    updated = project_service.update_single_progress(project, item_id, index, body.value)
    if updated is project:
        return project.to_wire()
    return await _save(store, updated)


@router.put("/{project_id}/progress/{item_id}")
async def set_progress_row(
    item_id: str,
    body: RowUpdate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    return await _save(store, project_service.update_progress_row(project, item_id, body.values))


# ─── Template ────────────────────────────────────────────────────────────────

@router.put("/{project_id}/template")
async def save_template(
    body: TemplateUpdate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    return await _save(store, project_service.save_template(project, body.template, force=body.force))


@router.get("/{project_id}/template/balance")
async def template_balance(project: Project = Depends(get_member_project)):
    return AggregationEngine.for_project(project).incidence_balance().to_wire()


@router.post("/{project_id}/template/categories", status_code=201)
async def add_category(
    body: CategoryCreate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    return await _save(store, project_service.add_category(project, body.name))


@router.post("/{project_id}/template/categories/{category_id}/items", status_code=201)
async def add_line_item(
    category_id: str,
    body: LineItemCreate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    updated = project_service.add_line_item(project, category_id, body.name, body.incidence, body.unit)
    return await _save(store, updated)


@router.patch("/{project_id}/template/categories/{category_id}/items/{item_id}")
async def update_line_item(
    category_id: str,
    item_id: str,
    body: ItemUpdate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    updated = project
    if body.name is not None:
        updated = project_service.rename_item(updated, category_id, item_id, body.name)
    if body.new_id is not None:
        updated = project_service.update_item_id(updated, category_id, item_id, body.new_id)
    return await _save(store, updated)


# ─── Housing units ───────────────────────────────────────────────────────────

@router.post("/{project_id}/units", status_code=201)
async def add_units(
    body: UnitCreate,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    if body.name:
        updated = project_service.add_unit(project, body.name.strip())
    elif body.start is not None and body.end is not None:
        if body.start < 0 or body.end < body.start:
            raise HTTPException(status_code=422, detail="start must be non-negative and not greater than end")
        units = project_service.generate_units(body.prefix, body.start, body.end)
        updated = project_service.add_units(project, units)
    else:
        raise HTTPException(status_code=422, detail="Provide a unit name or a start/end range")
    return await _save(store, updated)


@router.patch("/{project_id}/units/{unit_id}")
async def rename_unit(
    unit_id: str,
    body: UnitRename,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    return await _save(store, project_service.rename_unit(project, unit_id, body.name))


@router.delete("/{project_id}/units/{unit_id}")
async def remove_unit(
    unit_id: str,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    return await _save(store, project_service.remove_unit(project, unit_id))


# ─── Sharing ─────────────────────────────────────────────────────────────────

@router.get("/{project_id}/members")
async def list_members(
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    known = await store.get_users(project.members)
    return [
        {**known.get(uid, {"uid": uid, "email": ""}), "isOwner": uid == project.owner_id}
        for uid in project.members
    ]


@router.post("/{project_id}/members", status_code=201)
async def add_member(
    body: MemberInvite,
    project: Project = Depends(get_owned_project),
    store: ProjectStore = Depends(get_project_store),
):
    found = await store.find_user_by_email(body.email)
    if found is None:
        raise HTTPException(status_code=404, detail=f"No user registered with {body.email}")
    await store.add_member(project.id, found["uid"])
    return found


@router.delete("/{project_id}/members/{user_id}", status_code=204)
async def remove_member(
    user_id: str,
    project: Project = Depends(get_owned_project),
    store: ProjectStore = Depends(get_project_store),
):
    if user_id == project.owner_id:
        raise HTTPException(status_code=422, detail="The owner cannot be removed from the project")
    await store.remove_member(project.id, user_id)


# ─── History ─────────────────────────────────────────────────────────────────

@router.get("/{project_id}/history")
async def get_history(
    q: str = Query("", description="Case-insensitive filter over item and unit names"),
    grouped: bool = Query(False),
    project: Project = Depends(get_member_project),
):
    entries = filter_entries(project.history, q)
    if grouped:
        return {day: [e.to_wire() for e in group] for day, group in group_by_date(entries).items()}
    return [e.to_wire() for e in newest_first(entries)]


# ─── Account / dashboard ─────────────────────────────────────────────────────

@me_router.get("/me")
async def whoami(user: CurrentUser = Depends(get_current_user)):
    return {"uid": user.uid, "email": user.email}


@me_router.get("/dashboard")
async def dashboard(
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
):
    """Portfolio cards: one row per visible project plus released/cost totals."""
    cards = []
    total_cost = total_released = 0.0
    for project in await store.load(user.uid):
        financials = compute_financials(project)
        total_cost += project.cost_of_works
        total_released += financials.total_released
        cards.append({
            "id": project.id,
            "name": project.name,
            "unitCount": len(project.housing_units),
            "costOfWorks": project.cost_of_works,
            "totalProgress": financials.total_progress,
            "totalReleased": financials.total_released,
            "balanceToMeasure": financials.balance_to_measure,
            "isOwner": project.owner_id == user.uid,
        })
    return {
        "projects": cards,
        "totalCostOfWorks": total_cost,
        "totalReleased": total_released,
        "totalBalanceToMeasure": total_cost - total_released,
    }
