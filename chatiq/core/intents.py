from dataclasses import dataclass
from typing import Optional, Union

from chatiq.models.chat import ImageAttachment


@dataclass(frozen=True)
class SubmitMessage:
    text: str = ""
    image: Optional[ImageAttachment] = None


@dataclass(frozen=True)
class SelectSession:
    session_id: str


@dataclass(frozen=True)
class StartNewChat:
    pass


@dataclass(frozen=True)
class DeleteSession:
    session_id: str
    confirmed: bool = False


@dataclass(frozen=True)
class SignOut:
    pass


ChatIntent = Union[SubmitMessage, SelectSession, StartNewChat, DeleteSession, SignOut]
