import re
from typing import List, Optional

from chatiq.models.chat import Message, UserIdentity

# ```lang\n ... \n```
CODE_BLOCK_RE = re.compile(r"```(\w*)\n([\s\S]*?)\n```", re.MULTILINE)


def split_code_blocks(text: str) -> List[dict]:
    """
    Split Markdown into plain-text and fenced-code segments.

    Text segments are kept verbatim for the Markdown renderer; code segments
    carry their language tag and stripped body so the page can add a copy button.
    """
    segments = []
    last_index = 0
    for match in CODE_BLOCK_RE.finditer(text):
        if match.start() > last_index:
            segments.append({"kind": "text", "text": text[last_index:match.start()]})
        segments.append({
            "kind": "code",
            "language": match.group(1) or None,
            "code": match.group(2).strip(),
        })
        last_index = match.end()
    if last_index < len(text):
        segments.append({"kind": "text", "text": text[last_index:]})
    return segments


def image_data_url(data: str, mime_type: Optional[str]) -> str:
    return f"data:{mime_type or 'image/png'};base64,{data}"


def render_message(message: Message) -> dict:
    rendered = {
        "id": message.id,
        "sender": message.sender,
        "type": message.type,
    }
    if message.type == "image":
        rendered["src"] = image_data_url(message.content, message.mime_type)
        rendered["alt"] = "User image" if message.sender == "user" else "Bot image"
    else:
        rendered["segments"] = split_code_blocks(message.content)
    return rendered


def greeting(identity: Optional[UserIdentity]) -> Optional[str]:
    if identity is None:
        return None
    return f"Hi, {identity.display_name}!"
