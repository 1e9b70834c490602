"""
LLM Provider - OpenAI-compatible APIs (OpenAI, Groq, Together) and Ollama
"""
from typing import Dict, Any, Optional
import httpx
from openai import AsyncOpenAI, OpenAIError
from ..config import settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class LLMProviderError(Exception):
    """The configured LLM backend could not produce a completion."""


class LLMProvider:
    """Unified interface for different LLM providers"""

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider or self._detect_provider()
        logger.info(f"Initialized LLM provider: {self.provider}")

    def _detect_provider(self) -> str:
        """Detect which LLM provider to use based on configuration"""
        if settings.llm_provider.lower() == "ollama":
            return "ollama"

        api_key = settings.openai_api_key
        if api_key.startswith("gsk_"):
            return "groq"
        elif "ollama" in api_key.lower():
            return "ollama"
        else:
            # Default to OpenAI-compatible API
            return "openai"

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Generate completion using the configured provider

        Returns:
            {
                "content": str,
                "tokens_used": int,
                "model": str,
                "provider": str
            }
        """
        max_tokens = max_tokens or settings.max_tokens
        temperature = settings.openai_temperature if temperature is None else temperature

        if self.provider == "ollama":
            return await self._ollama_completion(prompt, system_prompt, max_tokens, temperature)
        else:
            return await self._openai_compatible_completion(prompt, system_prompt, max_tokens, temperature)

    async def _ollama_completion(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float
    ) -> Dict[str, Any]:
        """Call Ollama API"""
        full_prompt = prompt
        if system_prompt:
            full_prompt = f"{system_prompt}\n\n{prompt}"

        try:
            async with httpx.AsyncClient(timeout=settings.llm_timeout) as client:
                response = await client.post(
                    f"{settings.ollama_base_url}/api/generate",
                    json={
                        "model": settings.ollama_model,
                        "prompt": full_prompt,
                        "stream": False,
                        "format": "json",
                        "options": {
                            "temperature": temperature,
                            "num_predict": max_tokens
                        }
                    }
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Ollama API error: {e}")
            raise LLMProviderError(f"Ollama request failed: {e}") from e

        return {
            "content": data.get("response", ""),
            "tokens_used": data.get("eval_count", 0) + data.get("prompt_eval_count", 0),
            "model": settings.ollama_model,
            "provider": "ollama"
        }

    async def _openai_compatible_completion(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float
    ) -> Dict[str, Any]:
        """Call OpenAI-compatible API (OpenAI, Groq, Together, etc.)"""
        client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_api_base,
            timeout=settings.llm_timeout
        )

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await client.chat.completions.create(
                model=settings.openai_model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )
        except OpenAIError as e:
            logger.error(f"LLM API error: {e}")
            raise LLMProviderError(f"LLM API failed: {str(e)}") from e

        return {
            "content": response.choices[0].message.content or "",
            "tokens_used": response.usage.total_tokens if response.usage else 0,
            "model": response.model,
            "provider": self.provider
        }
