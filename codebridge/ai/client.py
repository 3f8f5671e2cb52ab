"""
Gemini client
The google-generativeai SDK is blocking, so generation runs in a worker thread
"""

import asyncio
import json
import logging
import re
from typing import Optional

import google.generativeai as genai
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.admin.settings import get_integration_settings
from codebridge.core.config import settings
from codebridge.core.database import get_db
from codebridge.core.errors import AIServiceError

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_json(text: str) -> dict:
    """Parse a model reply, tolerating markdown fences around the JSON"""
    cleaned = FENCE_PATTERN.sub("", (text or "").strip())
    try:
        data = json.loads(cleaned)
    except ValueError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise AIServiceError("AI service returned an unreadable response")
        try:
            data = json.loads(cleaned[start:end + 1])
        except ValueError:
            raise AIServiceError("AI service returned an unreadable response")
    if not isinstance(data, dict):
        raise AIServiceError("AI service returned an unreadable response")
    return data


class GeminiClient:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or settings.GEMINI_API_KEY
        self.model_name = model or settings.GEMINI_MODEL

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _generate(self, prompt: str, as_json: bool) -> str:
        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(self.model_name)
        config = {"temperature": 0.7}
        if as_json:
            config["response_mime_type"] = "application/json"
        response = model.generate_content(prompt, generation_config=config)
        return response.text

    async def generate(self, prompt: str, as_json: bool = False) -> str:
        if not self.configured:
            raise AIServiceError("AI service is not configured")
        try:
            return await asyncio.to_thread(self._generate, prompt, as_json)
        except Exception as e:
            logger.error("Gemini generation failed: %s", e)
            raise AIServiceError("AI service is temporarily unavailable")

    async def generate_json(self, prompt: str) -> dict:
        return parse_json(await self.generate(prompt, as_json=True))


async def get_ai_client(db: AsyncIOMotorDatabase = Depends(get_db)) -> GeminiClient:
    """FastAPI dependency for the Gemini client; an admin-saved key overrides the environment"""
    ai_settings = (await get_integration_settings(db)).get("ai", {})
    return GeminiClient(api_key=ai_settings.get("gemini_api_key"), model=ai_settings.get("model"))
