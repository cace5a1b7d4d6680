from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from chatiq.api.deps import get_registry
from chatiq.api.runtime import DEFAULT_TAB, RuntimeRegistry
from chatiq.core.formatting import greeting
from chatiq.models.chat import UserIdentity
from chatiq.services.firebase_auth import verify_token
from chatiq.utils.logger import logger

router = APIRouter(prefix="/auth")


class SignInRequest(BaseModel):
    id_token: str


@router.post("/sign-in")
async def sign_in(
    request: SignInRequest,
    registry: RuntimeRegistry = Depends(get_registry),
    x_tab_id: str = Header(DEFAULT_TAB),
):
    """
    Called by the page after Firebase sign-in (Google, custom token or
    anonymous) and on every reload. Resumes the tab's previous chat when it
    still exists, otherwise starts a new one.
    """
    runtime = registry.sign_in(request.id_token, x_tab_id)
    user = runtime.context.user
    logger.info(f"📡 Sign-in for {user.uid} on tab {x_tab_id}")
    return {
        "uid": user.uid,
        "display_name": user.display_name,
        "greeting": greeting(user),
        **runtime.state(),
    }


@router.post("/sign-out")
async def sign_out(
    user: UserIdentity = Depends(verify_token),
    registry: RuntimeRegistry = Depends(get_registry),
):
    """Revoke the user's tokens; every open tab of this user is signed out."""
    logger.info(f"📡 Sign-out requested by {user.uid}")
    registry.identity.sign_out(user.uid)
    return {"state": "signed_out"}
