"""
=============================================================================
LLM_CLIENT.PY — External Text Generation
=============================================================================
Thin wrapper around the OpenAI chat completions API.

  QuestTextGenerator.complete(prompts) → raw text answer
  parse_ai_output(text)                → validated AIQuestOutput

Both raise GenerationError when something goes wrong. They never fall
back on their own: deciding what to do on failure is the job of
ai_quests.AIQuestService (which swaps in the mock quest, once).
"""

import json
import logging
import re
from typing import Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError as PydanticValidationError

from config import settings
from errors import GenerationError
from quest_generator import QuestPrompts
from schemas import AIQuestOutput

logger = logging.getLogger("sidequest.llm")

# The first "{" up to the last "}": models like to wrap JSON in prose or ```json fences
JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


# =============================================================================
# ===================== CLIENT ================================================
# =============================================================================

class QuestTextGenerator:
    """Sends (system, user) prompts to the chat model and returns the text"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model
        self.temperature = settings.openai_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.openai_max_tokens
        self.timeout = timeout or settings.openai_timeout
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def complete(self, prompts: QuestPrompts) -> str:
        if not self.configured:
            raise GenerationError("OpenAI API key not configured")

        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": prompts.system},
                    {"role": "user", "content": prompts.user},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise GenerationError(f"Quest generation failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise GenerationError("No content generated")

        logger.debug(f"🤖 {self.model} answered {len(content)} chars")
        return content


# =============================================================================
# ===================== PARSING ===============================================
# =============================================================================

def parse_ai_output(text: str) -> AIQuestOutput:
    """Raw model answer → AIQuestOutput, or GenerationError"""
    match = JSON_BLOCK.search(text or "")
    if not match:
        raise GenerationError("No JSON found in generated content")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise GenerationError(f"Generated content is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise GenerationError("Generated JSON is not an object")

    try:
        return AIQuestOutput.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise GenerationError(f"Generated quest is missing or has invalid fields: {fields}") from e
