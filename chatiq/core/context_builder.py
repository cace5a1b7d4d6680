from typing import List, Optional

from chatiq.models.chat import ImageAttachment, InlineData, Part, Turn

# Hard cap on prior messages sent with a request. No pagination beyond it.
HISTORY_LIMIT = 10

BOT_PERSONA_INSTRUCTIONS = """
  SYSTEM GUIDELINES FOR CHATIQ PRO:
  You are a helpful and knowledgeable assistant named ChatIQ Pro. Your goal is to provide clear, accurate, and friendly responses.

  1.  **Response Style**: Be conversational and natural. For simple queries, provide concise answers. For complex topics (like code, explanations, or recipes), give detailed, well-structured responses.
  2.  **Formatting**: Use Markdown for clarity.
      - Use **bold** for emphasis on key terms.
      - Use *italics* for nuance or titles.
      - Use numbered or bulleted lists for steps or items.
  3.  **Code Blocks**: When providing code, introduce it first (e.g., "Here is the Python code:"). Then, enclose the code in a proper Markdown code block with the language specifier (e.g., ```python).
  4.  **Image Analysis**: If an image is provided, describe what you see and incorporate that analysis into your response to the user's text query. If there's no text, simply describe the image.
  5.  **Safety & Tone**: Maintain a positive and safe tone. Do not generate inappropriate or offensive content.
"""

IMAGE_ONLY_QUERY = "(No text was provided. Describe and analyze the attached image.)"


class ConversationContextBuilder:
    """Assembles the bounded history plus the new request turn for the model."""

    def __init__(self, store, limit: int = HISTORY_LIMIT):
        self.store = store
        self.limit = limit

    def history(self, uid: str, session_id: Optional[str]) -> List[Turn]:
        """
        Last `limit` stored messages of the session in chronological order,
        text only, as user/model turns. Empty for a draft.
        """
        if not session_id:
            return []
        recent = self.store.recent_messages(uid, session_id, limit=self.limit, descending=True)
        turns = []
        for message in reversed(recent):
            # Images stay out of the history; only the current one is inlined
            if message.type != "text":
                continue
            role = "user" if message.sender == "user" else "model"
            turns.append(Turn(role=role, parts=[Part(text=message.content)]))
        return turns

    def request_turn(self, text: Optional[str], image: Optional[ImageAttachment] = None) -> Turn:
        query = text if text else IMAGE_ONLY_QUERY
        parts = [Part(text=BOT_PERSONA_INSTRUCTIONS + "\n\nUSER QUERY:\n" + query)]
        if image is not None:
            parts.append(Part(inline_data=InlineData(mime_type=image.mime_type, data=image.data)))
        return Turn(role="user", parts=parts)

    def build(self, uid: str, session_id: Optional[str], text: Optional[str],
              image: Optional[ImageAttachment] = None) -> List[Turn]:
        return self.history(uid, session_id) + [self.request_turn(text, image)]
