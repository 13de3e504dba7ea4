"""
LLM Gateway Port (Interface)

LLM 호출을 추상화하여 워크플로우 노드가 특정 LLM 프레임워크에 의존하지 않도록 함.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

TokenCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class LLMResponse:
    """
    LLM 응답

    Attributes:
        content: 응답 텍스트 (앞뒤 공백 제거)
        total_tokens: 사용 토큰 수 (제공되지 않으면 0)
        model: 응답을 생성한 모델 이름
    """
    content: str
    total_tokens: int = 0
    model: str = ""


class LLMGateway(ABC):
    """
    LLM 호출 추상화 인터페이스

    구현체:
        - UpstageLLMGateway: Upstage Solar API
        - tests/fakes.py FakeLLMGateway: 테스트용

    Example:
        llm = UpstageLLMGateway(api_key="...")
        response = await llm.generate("Summarize: ...")
        print(response.content)
    """

    @abstractmethod
    async def generate(self, prompt: str, temperature: Optional[float] = None) -> LLMResponse:
        """
        프롬프트 전송 및 전체 응답 받기

        Args:
            prompt: LLM에 전달할 프롬프트
            temperature: 생성 온도 (None이면 기본값 사용)

        Raises:
            LLMAPIError: LLM API 호출 실패 시
            LLMTimeoutError: 타임아웃 발생 시
        """

    @abstractmethod
    async def generate_streaming(
        self,
        prompt: str,
        on_token: TokenCallback,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        스트리밍 생성

        생성되는 조각(delta)마다 생성 순서대로 on_token을 await 한 뒤,
        모든 조각을 이어 붙인 전체 텍스트를 반환한다.

        Raises:
            LLMAPIError: LLM API 호출 실패 시
            LLMTimeoutError: 타임아웃 발생 시
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """현재 사용 중인 모델 이름 반환 (예: "solar-pro")"""


class LLMAPIError(Exception):
    """LLM API 호출 실패"""
    pass


class LLMTimeoutError(Exception):
    """LLM API 타임아웃"""
    pass
