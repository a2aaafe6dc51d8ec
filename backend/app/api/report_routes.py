"""
Report Routes — progress report downloads, AI summary, archive and backups.

POST /api/projects/{id}/reports/{format}          json | xlsx | pdf download (archived by default)
POST /api/projects/{id}/reports/summary           AI executive summary text
GET  /api/projects/{id}/reports/archive           archived report records
GET  /api/projects/{id}/units/{unit_id}/report    per-unit JSON or xlsx
GET  /api/backup                                  JSON backup of every visible project
POST /api/backup/restore                          replace the caller's projects with a backup
POST /api/backup/import                           add a backup's projects alongside existing ones
"""
import logging
import os
from typing import Literal

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import FileResponse, Response

from app.api.deps import CurrentUser, get_current_user, get_member_project, get_project_store
from app.models.pls_schema import Project, ReportOptions
from app.services import project_service
from app.services.backup_engine import backup_filename, export_backup, parse_backup
from app.services.project_store import ProjectStore
from app.services.report_engine import ReportEngine, generate_report_summary

router = APIRouter(tags=["Reports"])
logger = logging.getLogger("pls-report-routes")

MEDIA_TYPES = {
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}


@router.post("/api/projects/{project_id}/reports/summary")
async def report_summary(
    options: ReportOptions,
    project: Project = Depends(get_member_project),
):
    return {"summary": await generate_report_summary(project, options)}


@router.get("/api/projects/{project_id}/reports/archive")
async def list_archived_reports(project: Project = Depends(get_member_project)):
    return [r.to_wire() for r in reversed(project.archived_reports)]


@router.post("/api/projects/{project_id}/reports/{report_format}")
async def download_report(
    report_format: Literal["json", "xlsx", "pdf"],
    options: ReportOptions,
    archive: bool = Query(True),
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    path = ReportEngine(project, options).generate(report_format)
    if archive:
        await store.update(project_service.archive_report(project, options, report_format))
    logger.info(f"{report_format.upper()} report served: {path}", extra={"project_id": project.id})
    return FileResponse(path, media_type=MEDIA_TYPES[report_format], filename=os.path.basename(path))


@router.get("/api/projects/{project_id}/units/{unit_id}/report")
async def download_unit_report(
    unit_id: str,
    report_format: Literal["json", "xlsx"] = Query("json", alias="format"),
    project: Project = Depends(get_member_project),
):
    engine = ReportEngine(project)
    if report_format == "xlsx":
        path = engine.write_unit_xlsx(unit_id)
    else:
        path = engine.write_unit_json(unit_id)
    return FileResponse(path, media_type=MEDIA_TYPES[report_format], filename=os.path.basename(path))


# ─── Backups ─────────────────────────────────────────────────────────────────

@router.get("/api/backup")
async def download_backup(
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
):
    projects = await store.load(user.uid)
    return Response(
        content=export_backup(projects),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
    )


@router.post("/api/backup/restore")
async def restore_backup(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
):
    projects = parse_backup(await file.read())
    restored = await store.overwrite(projects, user.uid)
    logger.info(f"Restored {len(restored)} project(s) for {user.uid}")
    return {"restored": len(restored), "projects": [p.to_wire() for p in restored]}


@router.post("/api/backup/import")
async def import_backup(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
):
    projects = parse_backup(await file.read())
    imported = await store.import_projects(projects, user.uid)
    logger.info(f"Imported {len(imported)} project(s) for {user.uid}")
    return {"imported": len(imported), "projects": [p.to_wire() for p in imported]}
