"""
Upstage LLM Gateway Implementation

Upstage Solar API를 사용한 LLMGateway 구현체.
일반 호출은 exponential backoff 재시도 포함, 스트리밍 호출은 재시도하지 않는다
(이미 전달된 토큰을 되돌릴 수 없기 때문).
"""
import logging
from typing import Any, Dict, List, Optional

import openai
from langchain_upstage import ChatUpstage
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from backend.ports.llm_gateway import (
    LLMGateway,
    LLMResponse,
    LLMAPIError,
    LLMTimeoutError,
    TokenCallback,
)


logger = logging.getLogger(__name__)

_TIMEOUT_ERRORS = (TimeoutError, openai.APITimeoutError)


def _total_tokens(message: Any) -> int:
    usage = getattr(message, "usage_metadata", None) or {}
    return int(usage.get("total_tokens", 0) or 0)


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return ""


class UpstageLLMGateway(LLMGateway):
    """
    Upstage Solar API를 사용한 LLM Gateway

    Features:
        - Automatic retry (최대 3회, generate만)
        - Exponential backoff (1초 → 2초 → 4초)
        - Timeout handling
        - Token streaming (generate_streaming)

    Example:
        gateway = UpstageLLMGateway(api_key="...", model="solar-pro")
        response = await gateway.generate("Summarize: ...")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "solar-pro",
        timeout: int = 30
    ):
        """
        Args:
            api_key: Upstage API 키
            model: 모델 이름 (solar-pro, solar-mini 등)
            timeout: API 호출 타임아웃 (초)
        """
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._llms: Dict[Optional[float], ChatUpstage] = {}

        try:
            self._llm(None)
            logger.info("UpstageLLMGateway initialized: model=%s, timeout=%ss", model, timeout)
        except Exception as e:
            logger.error("Failed to initialize Upstage LLM: %s", e)
            raise LLMAPIError(f"LLM initialization failed: {e}") from e

    def _llm(self, temperature: Optional[float]) -> ChatUpstage:
        # temperature별 클라이언트를 한 번만 생성
        if temperature not in self._llms:
            kwargs: Dict[str, Any] = {
                "api_key": self._api_key,
                "model": self._model,
                "timeout": self._timeout,
            }
            if temperature is not None:
                kwargs["temperature"] = temperature
            self._llms[temperature] = ChatUpstage(**kwargs)
        return self._llms[temperature]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((LLMAPIError, LLMTimeoutError)),
        reraise=True
    )
    async def generate(self, prompt: str, temperature: Optional[float] = None) -> LLMResponse:
        try:
            logger.debug("Invoking LLM: prompt_length=%s, temperature=%s", len(prompt), temperature)
            response = await self._llm(temperature).ainvoke(prompt)
        except _TIMEOUT_ERRORS as e:
            logger.error("LLM timeout: %s", e)
            raise LLMTimeoutError(f"LLM call timed out after {self._timeout}s") from e
        except Exception as e:
            logger.error("LLM API error: %s", e)
            raise LLMAPIError(f"LLM call failed: {e}") from e

        content = _text_of(response.content).strip()
        logger.info("LLM response received: length=%s", len(content))
        return LLMResponse(content=content, total_tokens=_total_tokens(response), model=self._model)

    async def generate_streaming(
        self,
        prompt: str,
        on_token: TokenCallback,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        parts: List[str] = []
        total_tokens = 0

        try:
            logger.debug("Streaming LLM: prompt_length=%s, temperature=%s", len(prompt), temperature)
            async for chunk in self._llm(temperature).astream(prompt):
                total_tokens += _total_tokens(chunk)
                delta = _text_of(chunk.content)
                if not delta:
                    continue
                await on_token(delta)
                parts.append(delta)
        except _TIMEOUT_ERRORS as e:
            logger.error("LLM stream timeout: %s", e)
            raise LLMTimeoutError(f"LLM stream timed out after {self._timeout}s") from e
        except Exception as e:
            logger.error("LLM stream error: %s", e)
            raise LLMAPIError(f"LLM stream failed: {e}") from e

        content = "".join(parts)
        logger.info("LLM stream finished: length=%s", len(content))
        return LLMResponse(content=content, total_tokens=total_tokens, model=self._model)

    def get_model_name(self) -> str:
        """현재 모델 이름 반환"""
        return self._model

    def __repr__(self) -> str:
        return f"<UpstageLLMGateway model={self._model}>"
