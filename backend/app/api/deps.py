"""FastAPI dependency injection — auth guards and the project store."""
import os
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.models.pls_schema import Project
from app.services.project_store import ProjectStore

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    uid: str
    email: str = ""


def create_access_token(uid: str, email: str = "") -> str:
    """Signed token for `uid`; the identity provider issues these in production."""
    return jwt.encode({"sub": uid, "email": email}, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return CurrentUser(uid=user_id, email=payload.get("email") or "")


def get_project_store(request: Request) -> ProjectStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Project store not ready")
    return store


async def get_member_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: ProjectStore = Depends(get_project_store),
) -> Project:
    """The project, if the caller is one of its members; 404 otherwise."""
    project = await store.get(project_id)
    if project is None or user.uid not in project.members:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return project


async def get_owned_project(
    project: Project = Depends(get_member_project),
    user: CurrentUser = Depends(get_current_user),
) -> Project:
    if project.owner_id != user.uid:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the project owner can do this")
    return project
