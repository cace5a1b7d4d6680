# firebase_auth.py
#
# Identity Provider Adapter. The browser signs in with the Firebase JS SDK
# (Google popup, custom token or anonymous) and sends the resulting ID token;
# here we verify it with the Firebase Admin SDK and publish identity changes.

from typing import Callable, List, Optional

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin import exceptions as firebase_exceptions
from fastapi import Request

from chatiq.models.chat import UserIdentity
from chatiq.utils.errors import AuthFailure, ConfigurationFailure
from chatiq.utils.logger import logger

# (uid, identity) on sign-in, (uid, None) on sign-out
IdentityListener = Callable[[str, Optional[UserIdentity]], None]


def display_name_from_claims(claims: dict) -> str:
    """displayName, else the local part of the e-mail, else 'User'."""
    name = claims.get("name")
    if name:
        return name
    email = claims.get("email")
    if email:
        return email.split("@")[0]
    return "User"


class IdentityProvider:
    """Wraps Firebase Admin token verification and sign-out."""

    def __init__(self, app: firebase_admin.App = None):
        self.app = app
        self._listeners: List[IdentityListener] = []

    @classmethod
    def from_service_account(cls, service_account: dict) -> "IdentityProvider":
        """Initialize the Firebase Admin SDK using a service-account dict."""
        try:
            cred = credentials.Certificate(service_account)
        except (ValueError, IOError) as e:
            raise ConfigurationFailure(f"Invalid Firebase credentials: {e}")
        try:
            app = firebase_admin.get_app()
        except ValueError:
            app = firebase_admin.initialize_app(cred)
        logger.info(f"✅ Firebase Admin initialized for project {app.project_id}")
        return cls(app)

    def verify(self, id_token: str) -> UserIdentity:
        """Verify a Firebase ID token. Raises AuthFailure when rejected."""
        if not id_token:
            raise AuthFailure("Missing ID token.")
        try:
            claims = auth.verify_id_token(id_token, app=self.app, check_revoked=True)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            logger.warning(f"⚠️ Token verification failed: {e}")
            raise AuthFailure(f"Sign-in failed: {e}")

        provider = claims.get("firebase", {}).get("sign_in_provider")
        return UserIdentity(
            uid=claims["uid"],
            display_name=display_name_from_claims(claims),
            is_anonymous=provider == "anonymous",
        )

    def sign_in(self, id_token: str) -> UserIdentity:
        """Verify the token and announce the signed-in user to listeners."""
        identity = self.verify(id_token)
        logger.info(f"🔑 Signed in {identity.uid}")
        self._emit(identity.uid, identity)
        return identity

    def sign_out(self, uid: str):
        """Revoke refresh tokens so the browser session ends everywhere."""
        try:
            auth.revoke_refresh_tokens(uid, app=self.app)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            logger.error(f"❌ Sign out error for {uid}: {e}", exc_info=True)
            raise AuthFailure("Error signing out.")
        logger.info(f"👋 Signed out {uid}")
        self._emit(uid, None)

    def on_identity_change(self, callback: IdentityListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _emit(self, uid: str, identity: Optional[UserIdentity]):
        for listener in list(self._listeners):
            listener(uid, identity)


def _identity_provider(request: Request) -> IdentityProvider:
    failure = getattr(request.app.state, "config_failure", None)
    if failure is not None:
        raise failure
    return request.app.state.identity


async def verify_token(request: Request) -> UserIdentity:
    """
    FastAPI dependency: verify incoming Firebase ID token in the Authorization header.
    Attaches the identity to request.state.user.
    """
    provider = _identity_provider(request)
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise AuthFailure("Missing or invalid Authorization header")
    id_token = auth_header.split("Bearer ")[1]
    identity = provider.verify(id_token)
    request.state.user = identity
    return identity
