"""
Ingestion API — document uploads read by the LLM.

  POST /api/ingestion/fre                         FRE -> project draft (new-project form)
  POST /api/ingestion/budget                      budget preview (categories + balance)
  POST /api/ingestion/schedule                    schedule preview
  POST /api/projects/{id}/ingestion/fre           merge FRE fields into an existing project
  POST /api/projects/{id}/ingestion/budget        replace the project's template
  POST /api/projects/{id}/ingestion/schedule      replace the project's schedule
"""
import logging
import os

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from app.api.deps import CurrentUser, get_current_user, get_member_project, get_project_store
from app.models.pls_schema import Project, ProjectDraft
from app.services import extraction_engine, project_service
from app.services.aggregation_engine import AggregationEngine
from app.services.project_store import ProjectStore

logger = logging.getLogger("pls-ingestion")

router = APIRouter(tags=["Document Ingestion"])

MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "20"))


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise HTTPException(400, "The uploaded file is empty.")
    if len(content) > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(413, f"File exceeds the {MAX_UPLOAD_MB:g} MB upload limit.")
    logger.info(f"Received {file.filename} ({len(content)} bytes, {file.content_type})")
    return content


def _draft_from_project(project: Project) -> ProjectDraft:
    return ProjectDraft.model_validate(project.model_dump(include=set(ProjectDraft.model_fields)))


# ─── Previews (no project yet) ───────────────────────────────────────────────

@router.post("/api/ingestion/fre")
async def read_fre(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
):
    content = await _read_upload(file)
    extracted = await extraction_engine.extract_project_metadata(content, file.filename, file.content_type)
    draft = project_service.apply_metadata(ProjectDraft(name=""), extracted)
    return {"extracted": extracted.model_dump(by_alias=True), "draft": draft.to_wire()}


@router.post("/api/ingestion/budget")
async def read_budget(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
):
    content = await _read_upload(file)
    result = await extraction_engine.extract_budget_template(content, file.filename, file.content_type)
    balance = AggregationEngine(result.categories, {}, 0, 0).incidence_balance()
    return {"categories": [c.to_wire() for c in result.categories], "balance": balance.to_wire()}


@router.post("/api/ingestion/schedule")
async def read_schedule(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
):
    content = await _read_upload(file)
    result = await extraction_engine.extract_schedule(content, file.filename, file.content_type)
    return result.model_dump(by_alias=True)


# ─── Imports into an existing project ────────────────────────────────────────

@router.post("/api/projects/{project_id}/ingestion/fre")
async def import_fre(
    file: UploadFile = File(...),
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    content = await _read_upload(file)
    extracted = await extraction_engine.extract_project_metadata(content, file.filename, file.content_type)
    draft = project_service.apply_metadata(_draft_from_project(project), extracted)
    data = project.model_dump()
    data.update(draft.model_dump(exclude={"pls_data"}))
    updated = project_service.update_project(project, Project.model_validate(data))
    saved = await store.update(updated)
    return saved.to_wire()


@router.post("/api/projects/{project_id}/ingestion/budget")
async def import_budget(
    file: UploadFile = File(...),
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    content = await _read_upload(file)
    result = await extraction_engine.extract_budget_template(content, file.filename, file.content_type)
    updated = project_service.apply_budget_template(project, result.categories)
    saved = await store.update(updated)
    logger.info("Imported budget with %d categories", len(result.categories), extra={"project_id": project.id})
    return saved.to_wire()


@router.post("/api/projects/{project_id}/ingestion/schedule")
async def import_schedule(
    file: UploadFile = File(...),
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    content = await _read_upload(file)
    result = await extraction_engine.extract_schedule(content, file.filename, file.content_type)
    saved = await store.update(project_service.apply_schedule(project, result))
    return saved.to_wire()
