"""Machine translation through the OpenAI chat completions API.

The relay treats this as an opaque collaborator: ``translate`` either returns
the translated text or raises ``TranslationFailed``.
"""

import asyncio
from typing import Optional

from openai import AsyncOpenAI

from constants import OPENAI_API_KEY, OPENAI_MODEL, TRANSLATION_TIMEOUT
from exceptions import TranslationFailed
from logging_config import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert multilingual translator specializing in real-time, "
    "natural-sounding conversational text. Translate the following user message "
    "accurately from {source} to {target}. Preserve the original tone, nuance, and "
    "idiomatic expressions where appropriate for a casual chat context. "
    "IMPORTANT: Output *only* the translated text, with no introduction, "
    "explanation, quotation marks, or labels."
)


class OpenAITranslator:
    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = OPENAI_MODEL,
        timeout: float = TRANSLATION_TIMEOUT,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.timeout = timeout
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
            logger.info(f"OpenAI translator initialized with model {model}")
        else:
            self._client = None
            logger.warning("OPENAI_API_KEY not set, translation will fall back to original text")

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        if self._client is None:
            raise TranslationFailed("OpenAI client not initialized - check API key")

        try:
            completion = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {
                            "role": "system",
                            "content": SYSTEM_PROMPT.format(source=source_language, target=target_language),
                        },
                        {"role": "user", "content": text},
                    ],
                    temperature=0.3,
                    max_tokens=1000,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Translation {source_language}->{target_language} timed out after {self.timeout}s")
            raise TranslationFailed("Translation timed out") from e
        except Exception as e:
            logger.error(f"Error calling OpenAI API: {e}")
            raise TranslationFailed(str(e)) from e

        if not completion.choices or not completion.choices[0].message.content:
            raise TranslationFailed("Invalid response structure from OpenAI")

        translated = completion.choices[0].message.content.strip()
        logger.debug(f"Translated {len(text)} chars {source_language}->{target_language}")
        return translated
