"""
Backup format: a JSON array of full project documents.

Import is all-or-nothing: every element must look like a project record
(string id, name and created_at; numeric cost_of_works) before anything is
parsed. Restoring or importing assigns new ids and resets ownership; that part
lives in the store.
"""
import json
from datetime import date
from typing import Any, List, Optional, Sequence, Union

from pydantic import ValidationError

from app.models.pls_schema import Project
from app.services.errors import ValidationFailed


def export_backup(projects: Sequence[Project]) -> str:
    return json.dumps([p.to_wire() for p in projects], ensure_ascii=False, indent=2)


def backup_filename(today: Optional[date] = None) -> str:
    return f"backup_pls_{(today or date.today()).isoformat()}.json"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_project_array(data: Any) -> bool:
    if not isinstance(data, list):
        return False
    return all(
        isinstance(p, dict)
        and isinstance(p.get("id"), str)
        and isinstance(p.get("name"), str)
        and isinstance(p.get("created_at"), str)
        and _is_number(p.get("cost_of_works"))
        for p in data
    )


def parse_backup(raw: Union[str, bytes]) -> List[Project]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationFailed([f"file: not valid JSON ({e})"], "Invalid backup file")

    if not is_valid_project_array(data):
        raise ValidationFailed(
            ["file: expected an array of projects with id, name, created_at and cost_of_works"],
            "Invalid backup file",
        )

    projects: List[Project] = []
    errors: List[str] = []
    for index, record in enumerate(data):
        try:
            projects.append(Project.model_validate(record))
        except ValidationError as e:
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"])
                errors.append(f"[{index}].{location}: {err['msg']}")
    if errors:
        raise ValidationFailed(errors, "Invalid backup file")
    return projects
