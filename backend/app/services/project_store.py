"""
Project persistence boundary.

`ProjectStore` is the contract the API depends on. Two implementations:
  - SqlProjectStore       PostgreSQL via SQLAlchemy async; the whole project
                          document is a JSONB column (last write wins)
  - InMemoryProjectStore  dev mode (no DATABASE_URL) and tests

The store is built once in the app lifespan and handed to routes through a
FastAPI dependency. Database failures surface as StoreError.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.orm_models import ProjectRecord, UserProfile
from app.models.pls_schema import Project, ProjectDraft
from app.services.errors import StoreError
from app.services.project_service import new_project

logger = logging.getLogger("pls-db")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def reassign(project: Project, owner_id: str) -> Project:
    """Copy of a backed-up project under a new id, owned by `owner_id` alone."""
    copy = project.model_copy(deep=True)
    copy.id = str(uuid4())
    copy.owner_id = owner_id
    copy.members = [owner_id]
    copy.created_at = _now_iso()
    return copy


class ProjectStore(Protocol):
    async def load(self, user_id: str) -> List[Project]: ...
    async def get(self, project_id: str) -> Optional[Project]: ...
    async def create(self, draft: ProjectDraft, owner_id: str) -> Project: ...
    async def update(self, project: Project) -> Project: ...
    async def delete(self, project_id: str) -> None: ...
    async def add_member(self, project_id: str, user_id: str) -> None: ...
    async def remove_member(self, project_id: str, user_id: str) -> None: ...
    async def overwrite(self, projects: Sequence[Project], owner_id: str) -> List[Project]: ...
    async def import_projects(self, projects: Sequence[Project], owner_id: str) -> List[Project]: ...
    async def find_user_by_email(self, email: str) -> Optional[Dict[str, str]]: ...
    async def get_users(self, user_ids: Sequence[str]) -> Dict[str, Dict[str, str]]: ...
    async def ensure_user(self, user_id: str, email: str) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryProjectStore:
    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}
        self._users: Dict[str, str] = {}  # uid -> email

    async def load(self, user_id: str) -> List[Project]:
        visible = [p for p in self._projects.values() if user_id in p.members]
        return [p.model_copy(deep=True) for p in sorted(visible, key=lambda p: p.created_at, reverse=True)]

    async def get(self, project_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def create(self, draft: ProjectDraft, owner_id: str) -> Project:
        project = new_project(draft, owner_id)
        self._projects[project.id] = project.model_copy(deep=True)
        return project

    async def update(self, project: Project) -> Project:
        if project.id not in self._projects:
            raise StoreError(f"Project {project.id} does not exist")
        self._projects[project.id] = project.model_copy(deep=True)
        return project

    async def delete(self, project_id: str) -> None:
        self._projects.pop(project_id, None)

    async def add_member(self, project_id: str, user_id: str) -> None:
        project = self._projects.get(project_id)
        if project is None:
            raise StoreError(f"Project {project_id} does not exist")
        if user_id not in project.members:
            project.members.append(user_id)

    async def remove_member(self, project_id: str, user_id: str) -> None:
        project = self._projects.get(project_id)
        if project is None:
            raise StoreError(f"Project {project_id} does not exist")
        project.members = [m for m in project.members if m != user_id]

    async def overwrite(self, projects: Sequence[Project], owner_id: str) -> List[Project]:
        for project_id in [p.id for p in self._projects.values() if p.owner_id == owner_id]:
            del self._projects[project_id]
        return await self.import_projects(projects, owner_id)

    async def import_projects(self, projects: Sequence[Project], owner_id: str) -> List[Project]:
        imported = [reassign(p, owner_id) for p in projects]
        for project in imported:
            self._projects[project.id] = project.model_copy(deep=True)
        return imported

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, str]]:
        wanted = (email or "").strip().lower()
        for uid, known in self._users.items():
            if known == wanted:
                return {"uid": uid, "email": known}
        return None

    async def get_users(self, user_ids: Sequence[str]) -> Dict[str, Dict[str, str]]:
        return {uid: {"uid": uid, "email": self._users[uid]} for uid in user_ids if uid in self._users}

    async def ensure_user(self, user_id: str, email: str) -> None:
        if email and user_id not in self._users:
            self._users[user_id] = email.strip().lower()


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

def _to_record_fields(project: Project) -> dict:
    return {
        "owner_id": project.owner_id,
        "members": list(project.members),
        "name": project.name,
        "cost_of_works": project.cost_of_works,
        "document": project.to_wire(),
    }


def _from_record(record: ProjectRecord) -> Project:
    project = Project.model_validate(record.document)
    project.id = str(record.id)
    project.owner_id = record.owner_id
    project.members = list(record.members or [])
    if not project.created_at and record.created_at:
        project.created_at = record.created_at.isoformat()
    return project


class SqlProjectStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, user_id: str) -> List[Project]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ProjectRecord)
                    .where(ProjectRecord.members.contains([user_id]))
                    .order_by(ProjectRecord.created_at.desc())
                )
                return [_from_record(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load projects for {user_id}: {e}")
            raise StoreError("Could not load projects") from e

    async def get(self, project_id: str) -> Optional[Project]:
        try:
            async with self.session_factory() as session:
                record = await session.get(ProjectRecord, project_id)
                return _from_record(record) if record else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read project {project_id}: {e}")
            raise StoreError("Could not read project") from e

    async def _insert(self, session: AsyncSession, project: Project) -> None:
        session.add(ProjectRecord(id=project.id, **_to_record_fields(project)))

    async def create(self, draft: ProjectDraft, owner_id: str) -> Project:
        project = new_project(draft, owner_id)
        try:
            async with self.session_factory() as session:
                await self._insert(session, project)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create project: {e}")
            raise StoreError("Could not create project") from e
        logger.info("Stored project %s", project.id, extra={"project_id": project.id})
        return project

    async def update(self, project: Project) -> Project:
        try:
            async with self.session_factory() as session:
                record = await session.get(ProjectRecord, project.id)
                if record is None:
                    raise StoreError(f"Project {project.id} does not exist")
                for key, value in _to_record_fields(project).items():
                    setattr(record, key, value)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update project {project.id}: {e}")
            raise StoreError("Could not save project") from e
        return project

    async def delete(self, project_id: str) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(delete(ProjectRecord).where(ProjectRecord.id == project_id))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete project {project_id}: {e}")
            raise StoreError("Could not delete project") from e

    async def _set_members(self, project_id: str, user_id: str, add: bool) -> None:
        try:
            async with self.session_factory() as session:
                record = await session.get(ProjectRecord, project_id, with_for_update=True)
                if record is None:
                    raise StoreError(f"Project {project_id} does not exist")
                members = [m for m in (record.members or []) if m != user_id]
                if add:
                    members.append(user_id)
                record.members = members
                document = dict(record.document)
                document["members"] = members
                record.document = document
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to change members of {project_id}: {e}")
            raise StoreError("Could not update project members") from e

    async def add_member(self, project_id: str, user_id: str) -> None:
        await self._set_members(project_id, user_id, add=True)

    async def remove_member(self, project_id: str, user_id: str) -> None:
        await self._set_members(project_id, user_id, add=False)

    async def overwrite(self, projects: Sequence[Project], owner_id: str) -> List[Project]:
        imported = [reassign(p, owner_id) for p in projects]
        try:
            async with self.session_factory() as session:
                # one transaction: the old set is only gone if the new one is written
                await session.execute(delete(ProjectRecord).where(ProjectRecord.owner_id == owner_id))
                for project in imported:
                    await self._insert(session, project)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to restore backup for {owner_id}: {e}")
            raise StoreError("Could not restore backup") from e
        return imported

    async def import_projects(self, projects: Sequence[Project], owner_id: str) -> List[Project]:
        imported = [reassign(p, owner_id) for p in projects]
        try:
            async with self.session_factory() as session:
                for project in imported:
                    await self._insert(session, project)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to import backup for {owner_id}: {e}")
            raise StoreError("Could not import projects") from e
        return imported

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, str]]:
        if not email:
            return None
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(UserProfile).where(UserProfile.email == email.strip().lower())
                )
                profile = result.scalars().first()
        except SQLAlchemyError as e:
            raise StoreError("Could not look up user") from e
        return {"uid": profile.id, "email": profile.email} if profile else None

    async def get_users(self, user_ids: Sequence[str]) -> Dict[str, Dict[str, str]]:
        if not user_ids:
            return {}
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(UserProfile).where(UserProfile.id.in_(list(user_ids))))
                return {p.id: {"uid": p.id, "email": p.email} for p in result.scalars().all()}
        except SQLAlchemyError as e:
            raise StoreError("Could not load users") from e

    async def ensure_user(self, user_id: str, email: str) -> None:
        if not email:
            return
        try:
            async with self.session_factory() as session:
                if await session.get(UserProfile, user_id) is None:
                    session.add(UserProfile(id=user_id, email=email.strip().lower()))
                    await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not create profile for {user_id}: {e}")
