"""
Assistant-driven progress mutation.

Applies a batch of natural-language-derived instructions
`{serviceName, unitNames, progress}` to a project:

  - services resolve against template item names (trimmed, case-folded, exact)
  - unit names resolve the same way against housing-unit names
  - "all" anywhere in unitNames expands to every unit
  - each resolved (item, unit) pair gets clamp(progress, 0, 100)

The batch runs on a copy of the project; the caller receives a new value and
a summary. Resolution failures are reported in the summary, never raised.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from app.agents.tool_schemas import AssistantProgressUpdate, get_litellm_tools, parse_tool_input
from app.models.pls_schema import Project
from app.services import llm_client
from app.services.change_log import ChangeRecorder, append_entries
from app.services.pls_template import iter_items, template_for
from app.services.progress_matrix import clamp_progress, ensure_matrix_shape, value_at, with_value

logger = logging.getLogger("pls-assistant")

ALL_UNITS = "all"


def _norm(name: str) -> str:
    return (name or "").strip().casefold()


@dataclass
class AssistantResult:
    project: Project
    updated_pairs: int = 0
    changed_cells: int = 0
    unresolved_services: List[str] = field(default_factory=list)
    unresolved_units: List[str] = field(default_factory=list)
    summary: str = ""


@dataclass
class AssistantTurn:
    reply: str
    result: Optional[AssistantResult] = None


def build_summary(updated_pairs: int, unresolved_services: Sequence[str], unresolved_units: Sequence[str]) -> str:
    parts = []
    if updated_pairs:
        parts.append(f"Updated {updated_pairs} item/unit pair(s).")
    else:
        parts.append("No updates were applied.")
    if unresolved_services:
        parts.append("Unresolved services: " + ", ".join(f'"{s}"' for s in unresolved_services) + ".")
    if unresolved_units:
        parts.append("Unresolved units: " + ", ".join(f'"{u}"' for u in unresolved_units) + ".")
    return " ".join(parts)


def apply_assistant_updates(
    project: Project,
    updates: Sequence[Union[AssistantProgressUpdate, Dict[str, Any]]],
) -> AssistantResult:
    working = project.model_copy(deep=True)
    template = template_for(working)
    units = working.housing_units
    unit_count = len(units)

    items_by_name = {}
    for _, item in iter_items(template):
        # first item wins when two share a name
        items_by_name.setdefault(_norm(item.name), item)
    units_by_name = {}
    for index, unit in enumerate(units):
        units_by_name.setdefault(_norm(unit.name), index)

    matrix = ensure_matrix_shape(working.progress, template, unit_count)
    recorder = ChangeRecorder()
    updated_pairs = 0
    unresolved_services: List[str] = []
    unresolved_units: List[str] = []

    for raw in updates:
        update = raw if isinstance(raw, AssistantProgressUpdate) else AssistantProgressUpdate.model_validate(raw)
        item = items_by_name.get(_norm(update.service_name))
        if item is None:
            unresolved_services.append(update.service_name)
            continue

        # "all" is the wildcard unless a housing unit is actually named that way
        if any(_norm(name) == ALL_UNITS and ALL_UNITS not in units_by_name for name in update.unit_names):
            targets = list(range(unit_count))
        else:
            targets = []
            for name in update.unit_names:
                index = units_by_name.get(_norm(name))
                if index is None:
                    if name not in unresolved_units:
                        unresolved_units.append(name)
                elif index not in targets:
                    targets.append(index)

        value = clamp_progress(update.progress)
        for index in targets:
            old = value_at(matrix, item.id, index)
            matrix = with_value(matrix, item.id, index, unit_count, value)
            recorder.record(item.id, item.name, units[index].id, units[index].name, old, value)
            updated_pairs += 1

    working.progress = matrix
    working.history = append_entries(working.history, recorder.entries)
    summary = build_summary(updated_pairs, unresolved_services, unresolved_units)
    logger.info(
        "Assistant batch on %s: %d pair(s), %d changed cell(s)", working.id, updated_pairs, len(recorder),
        extra={"project_id": working.id},
    )
    return AssistantResult(
        project=working,
        updated_pairs=updated_pairs,
        changed_cells=len(recorder),
        unresolved_services=unresolved_services,
        unresolved_units=unresolved_units,
        summary=summary,
    )


def assistant_context(project: Project) -> str:
    template = template_for(project)
    services = "\n".join(f"- {item.name}" for _, item in iter_items(template))
    units = ", ".join(unit.name for unit in project.housing_units) or "(none)"
    return f"Project: {project.name}\n\nServices:\n{services}\n\nHousing units: {units}"


ToolCompletion = Callable[..., Awaitable[Dict[str, Any]]]


async def run_assistant_turn(
    project: Project,
    message: str,
    history: Optional[List[Dict[str, str]]] = None,
    complete_fn: Optional[ToolCompletion] = None,
) -> AssistantTurn:
    """One tool-calling round: the model either answers or emits updateProgress calls."""
    complete_fn = complete_fn or llm_client.complete_with_tools
    messages = [{"role": "system", "content": llm_client.get_system_prompt("assistant", assistant_context(project))}]
    messages.extend(history or [])
    messages.append({"role": "user", "content": message})

    response = await complete_fn(messages, get_litellm_tools(["updateProgress"]))

    updates: List[AssistantProgressUpdate] = []
    for call in response.get("tool_calls", []):
        if call.get("name") != "updateProgress":
            logger.warning("Ignoring unknown tool call %s", call.get("name"))
            continue
        try:
            updates.extend(parse_tool_input("updateProgress", call.get("arguments") or {}).updates)
        except ValidationError as e:
            logger.warning(f"Malformed updateProgress arguments: {e}")

    if not updates:
        return AssistantTurn(reply=response.get("content") or "")

    result = apply_assistant_updates(project, updates)
    reply = response.get("content") or result.summary
    return AssistantTurn(reply=reply, result=result)
