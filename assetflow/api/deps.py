# assetflow/api/deps.py
from typing import Optional

import structlog
from fastapi import Depends, Header, Request

from assetflow.collaborators import Identity
from assetflow.errors import Forbidden, Unauthenticated
from assetflow.pipeline import AssetPipeline


def get_pipeline(request: Request) -> AssetPipeline:
    return request.app.state.pipeline


async def current_identity(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> Identity:
    """Identiteit komt van de gateway die de sessie al gevalideerd heeft."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthenticated()
    identity = Identity(id=x_user_id.strip(), role=(x_user_role or "user").strip().lower())
    structlog.contextvars.bind_contextvars(identity=identity.id)
    return identity


async def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Admin role required")
    return identity
