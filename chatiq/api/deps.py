from fastapi import Depends, Header, Request

from chatiq.api.runtime import DEFAULT_TAB, ChatRuntime, RuntimeRegistry
from chatiq.models.chat import UserIdentity
from chatiq.services.firebase_auth import verify_token


def get_registry(request: Request) -> RuntimeRegistry:
    """FastAPI dependency: the runtime registry, unless startup configuration failed."""
    failure = getattr(request.app.state, "config_failure", None)
    if failure is not None:
        raise failure
    return request.app.state.runtimes


async def get_runtime(
    user: UserIdentity = Depends(verify_token),
    registry: RuntimeRegistry = Depends(get_registry),
    x_tab_id: str = Header(DEFAULT_TAB),
) -> ChatRuntime:
    """FastAPI dependency: the signed-in user's runtime for the calling tab."""
    return registry.runtime(user, x_tab_id)
