from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

TITLE_MAX_CHARS = 35
DEFAULT_TITLE = "New Chat"
IMAGE_TITLE = "Image Chat"
UNTITLED = "Untitled Chat"


class UserIdentity(BaseModel):
    """Signed-in user as reported by the identity provider."""
    uid: str
    display_name: str = "User"
    is_anonymous: bool = False


class Session(BaseModel):
    """A persisted conversation thread owned by one user."""
    id: str
    title: str = UNTITLED
    created_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None


class Message(BaseModel):
    """One immutable turn (text or image) within a Session."""
    id: Optional[str] = None
    session_id: Optional[str] = None
    sender: Literal["user", "bot"]
    type: Literal["text", "image"] = "text"
    content: str
    mime_type: Optional[str] = None  # Only for image messages
    timestamp: Optional[datetime] = None


class InlineData(BaseModel):
    mime_type: str
    data: str  # base64 payload


class Part(BaseModel):
    text: Optional[str] = None
    inline_data: Optional[InlineData] = None


class Turn(BaseModel):
    """Role-tagged unit of conversational content sent to the model."""
    role: Literal["user", "model"]
    parts: List[Part] = Field(default_factory=list)


class ImageAttachment(BaseModel):
    """Image picked, uploaded or captured in the browser, already base64-encoded."""
    data: str
    mime_type: str = "image/png"


def derive_title(preview_text: Optional[str], has_image: bool = False) -> str:
    """
    Session title from the first message: first 35 characters plus "..." when
    longer, the text itself when shorter, otherwise "Image Chat" / "New Chat".
    """
    text = (preview_text or "").strip()
    if text:
        if len(text) > TITLE_MAX_CHARS:
            return text[:TITLE_MAX_CHARS] + "..."
        return text
    return IMAGE_TITLE if has_image else DEFAULT_TITLE
