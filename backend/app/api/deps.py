"""
Request-scoped dependencies shared by the route modules.

    @router.post("/channels/search")
    async def search(payload: SearchRequest, db: DBSession, pipeline: PipelineDep):
        ...

The pipeline is built once in the application lifespan and stored on
app.state; tests replace it with app.dependency_overrides[get_pipeline].
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.schemas.usage import Identity
from app.services.identity import resolve_identity
from app.services.pipeline import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync pipeline is not available",
        )
    return pipeline


def get_identity(
    request: Request,
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Identity:
    """
    Identity from request headers.

    ``X-User-Id`` is set by the upstream auth layer for signed-in users;
    anonymous clients send ``X-Session-Id``.
    """
    return resolve_identity(request.headers, user_id=x_user_id)


def identity_with_session(identity: Identity, request: Request, session_id: Optional[str]) -> Identity:
    """Let a session id sent in the request body override the header one."""
    if identity.is_authenticated or not session_id:
        return identity
    return resolve_identity(request.headers, session_id=session_id)


PipelineDep = Annotated[Pipeline, Depends(get_pipeline)]
CurrentIdentity = Annotated[Identity, Depends(get_identity)]


__all__ = [
    "get_pipeline",
    "get_identity",
    "identity_with_session",
    "PipelineDep",
    "CurrentIdentity",
]
