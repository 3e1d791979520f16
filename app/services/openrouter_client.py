import logging
from typing import Dict, List, Optional

import httpx

from app.core.config import AISettings
from app.core.exceptions import AIKillSwitchError, ProviderError
from app.core.prompts import SENTIMENT_SYSTEM, SENTIMENT_USER_TEMPLATE, get_prompt
from app.services.providers import ClassificationResult, Completion
from app.services.response_parsing import extract_json_object

logger = logging.getLogger(__name__)

VALID_TONES = {"positive", "neutral", "constructive", "negative"}


class OpenRouterClient:
    """
    Async chat-completions client for OpenRouter.

    Owns one httpx.AsyncClient for its whole lifetime; call aclose() on shutdown.
    Does not retry: generation calls are never retried silently.
    """

    def __init__(
        self,
        ai_settings: AISettings,
        model_name: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = ai_settings
        self.model_name = model_name or ai_settings.model_name
        self._client = http_client or httpx.AsyncClient()

    async def aclose(self):
        await self._client.aclose()

    async def complete(self, prompt: List[Dict[str, str]], max_tokens: int) -> Completion:
        if self.settings.kill_switch:
            logger.warning("AI Kill-switch is active. Blocking request.")
            raise AIKillSwitchError()

        if not self.settings.openrouter_api_key:
            logger.error("OpenRouter API Key missing.")
            raise ProviderError("openrouter", "API key not configured", transient=False)

        logger.info(f"Calling AI Model: {self.model_name}")
        try:
            response = await self._client.post(
                self.settings.openrouter_url,
                headers={
                    "Authorization": f"Bearer {self.settings.openrouter_api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model_name,
                    "messages": prompt,
                    "temperature": self.settings.temperature,
                    "max_tokens": max_tokens,
                },
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except httpx.TimeoutException:
            logger.error("AI service timeout.")
            raise ProviderError("openrouter", "request timed out")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"AI service HTTP error: {status}")
            raise ProviderError("openrouter", f"HTTP {status}", transient=status >= 500 or status == 429)
        except httpx.HTTPError as e:
            logger.error(f"AI transport error: {e}")
            raise ProviderError("openrouter", str(e))
        except (KeyError, IndexError, ValueError) as e:
            logger.error(f"Malformed completion payload: {e}")
            raise ProviderError("openrouter", "malformed completion payload", transient=False)

        return Completion(text=content or "", model=self.model_name)


class OpenRouterClassifier:
    """Text classifier backed by a chat model returning JSON."""

    def __init__(self, client: OpenRouterClient, max_tokens: int = 400):
        self.client = client
        self.max_tokens = max_tokens

    async def classify(self, text: str) -> ClassificationResult:
        messages = [
            {"role": "system", "content": SENTIMENT_SYSTEM},
            {"role": "user", "content": get_prompt(SENTIMENT_USER_TEMPLATE, text=text[:4000])},
        ]
        completion = await self.client.complete(messages, max_tokens=self.max_tokens)
        data = extract_json_object(completion.text)
        if data is None:
            logger.error(f"Failed to decode classifier JSON response: {completion.text[:200]}")
            raise ProviderError("classifier", "unparsable classification output", transient=False)

        tone = str(data.get("tone", "neutral")).lower()
        return ClassificationResult(
            tone=tone if tone in VALID_TONES else "neutral",
            scores={
                key: _normalize_score(data.get(key))
                for key in ("quality", "specificity", "actionability")
            },
            bias_indicators=[str(b) for b in data.get("bias_indicators") or [] if b],
            keywords=[str(k) for k in data.get("keywords") or [] if k],
            summary=data.get("summary"),
        )


def _normalize_score(value) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 50.0
    return min(100.0, max(0.0, score))
