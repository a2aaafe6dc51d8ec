"""Assistant API — chat turn that may update progress through tool calls."""
import logging
from typing import List, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_member_project, get_project_store
from app.models.pls_schema import Project
from app.services.assistant_engine import run_assistant_turn
from app.services.project_store import ProjectStore

logger = logging.getLogger("pls-api.assistant")

router = APIRouter(prefix="/api/projects", tags=["Assistant"])


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    history: List[ChatMessage] = Field(default_factory=list)


@router.post("/{project_id}/assistant/chat")
async def assistant_chat(
    body: ChatRequest,
    project: Project = Depends(get_member_project),
    store: ProjectStore = Depends(get_project_store),
):
    turn = await run_assistant_turn(project, body.message, [m.model_dump() for m in body.history])
    response = {"reply": turn.reply, "applied": False}
    result = turn.result
    if result is None:
        return response

    if result.changed_cells:
        await store.update(result.project)
        logger.info(
            "Assistant changed %d cell(s)", result.changed_cells, extra={"project_id": project.id}
        )
    response.update({
        "applied": result.changed_cells > 0,
        "updatedPairs": result.updated_pairs,
        "changedCells": result.changed_cells,
        "unresolvedServices": result.unresolved_services,
        "unresolvedUnits": result.unresolved_units,
        "summary": result.summary,
        "project": result.project.to_wire(),
    })
    return response
