"""
프롬프트 템플릿 로딩 유틸리티

템플릿은 backend/prompts/<workflow>/<name>.txt 에 있고,
{placeholder} 자리표시자는 render_prompt()로 치환한다.
(str.format 대신 replace를 쓰므로 템플릿 안의 JSON 예시 중괄호는 그대로 유지됨)
"""
import os
from functools import lru_cache
from typing import Dict

PROMPTS_DIR = os.path.dirname(os.path.abspath(__file__))


@lru_cache()
def load_prompt(workflow: str, name: str) -> str:
    """
    프롬프트 파일 로딩 (캐시됨)

    Args:
        workflow: "chat" | "quiz"
        name: 파일명 (확장자 제외, 예: "router")

    Raises:
        FileNotFoundError: 프롬프트 파일이 없을 때
    """
    prompt_path = os.path.join(PROMPTS_DIR, workflow, f"{name}.txt")
    if not os.path.exists(prompt_path):
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

    with open(prompt_path, "r", encoding="utf-8") as f:
        return f.read()


def render_prompt(workflow: str, name: str, values: Dict[str, object]) -> str:
    """템플릿 로딩 후 {key} 자리표시자를 values로 치환"""
    prompt = load_prompt(workflow, name)
    for key, value in values.items():
        prompt = prompt.replace("{" + key + "}", str(value))
    return prompt
