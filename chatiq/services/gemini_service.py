import base64
from typing import List

import google.generativeai as genai
from google.api_core import exceptions as gcp_exceptions
from google.generativeai.types import BlockedPromptException, StopCandidateException
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from chatiq.models.chat import Turn
from chatiq.utils.errors import ApiFailure, ConfigurationFailure
from chatiq.utils.logger import logger

DEFAULT_MODEL = "gemini-1.5-flash"
FALLBACK_REPLY = "I'm sorry, I couldn't process that. Please try again."

# Retried with backoff before the call is reported as failed
TRANSIENT_ERRORS = (
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.InternalServerError,
    gcp_exceptions.DeadlineExceeded,
)


def turns_to_contents(turns: List[Turn]) -> List[dict]:
    """Convert role-tagged turns into the `contents` payload Gemini expects."""
    contents = []
    for turn in turns:
        parts = []
        for part in turn.parts:
            if part.text is not None:
                parts.append({"text": part.text})
            if part.inline_data is not None:
                parts.append({
                    "inline_data": {
                        "mime_type": part.inline_data.mime_type,
                        "data": base64.b64decode(part.inline_data.data),
                    }
                })
        contents.append({"role": turn.role, "parts": parts})
    return contents


class GeminiService:
    """Model Endpoint Adapter: one request/response call per user turn."""

    def __init__(self, api_key: str, model_name: str = DEFAULT_MODEL, generation_config: dict = None):
        if not api_key:
            raise ConfigurationFailure("GEMINI_API_KEY not set in environment")
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.model = genai.GenerativeModel(model_name, generation_config=generation_config or {})
        logger.info(f"✅ Gemini model {model_name} configured")

    @classmethod
    def from_config(cls, api_key: str, gemini_cfg: dict = None) -> "GeminiService":
        gemini_cfg = gemini_cfg or {}
        generation_config = {
            key: gemini_cfg[key] for key in ("temperature", "max_output_tokens") if key in gemini_cfg
        }
        return cls(api_key, gemini_cfg.get("model", DEFAULT_MODEL), generation_config)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _generate_with_retry(self, contents: List[dict]):
        return await self.model.generate_content_async(contents)

    async def generate(self, turns: List[Turn]) -> str:
        """
        Send the ordered turns and return the reply text.

        Raises ApiFailure when the call fails or the prompt/response was
        blocked by content policy.
        """
        contents = turns_to_contents(turns)
        try:
            response = await self._generate_with_retry(contents)
        except BlockedPromptException as e:
            logger.warning(f"⚠️ Gemini blocked the prompt: {e}")
            raise ApiFailure("The request was blocked by the content policy.")
        except StopCandidateException as e:
            logger.warning(f"⚠️ Gemini stopped the response: {e}")
            raise ApiFailure("The response was stopped by the content policy.")
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"❌ Gemini API error: {e}", exc_info=True)
            raise ApiFailure(f"API Error: {e}")

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and feedback.block_reason:
            logger.warning(f"⚠️ Gemini blocked the prompt: {feedback.block_reason}")
            raise ApiFailure("The request was blocked by the content policy.")

        if not response.candidates:
            logger.warning("⚠️ Gemini returned no candidates")
            return FALLBACK_REPLY
        try:
            text = response.text
        except ValueError as e:
            # No valid parts, e.g. finish_reason SAFETY
            logger.warning(f"⚠️ Gemini returned no usable text: {e}")
            raise ApiFailure("The response was blocked by the content policy.")

        result = text.strip() if text else ""
        if not result:
            return FALLBACK_REPLY
        logger.info("✅ Gemini response received successfully")
        return result
