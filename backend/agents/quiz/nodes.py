# backend/agents/quiz/nodes.py

import hashlib
import json
import random
import re
import uuid
from typing import Dict, Any, List, Optional, Sequence, cast

from backend.config import get_settings
from backend.ports.llm_gateway import LLMGateway
from backend.prompts.loader import render_prompt
from backend.utils.json_utils import parse_json_list
from backend.utils.logger import get_logger
from .state import (
    QuizGenerationState,
    DIFFICULTY_LEVELS,
    MAX_RETRIES,
    OVER_GENERATE_COUNT,
    QUESTION_TYPE_MULTIPLE_CHOICE,
    QUESTION_TYPE_TRUE_FALSE,
    compute_deficit,
)

logger = get_logger(__name__)

# --- Constants ---
CONCEPT_CHUNK_LIMIT = 20
MAX_CONCEPTS = 30
CONTEXT_CHUNK_LIMIT = 15
GENERATOR_CONTEXT_CHARS = 8000
VALIDATOR_CONTEXT_CHARS = 6000
CONCEPT_TEMPERATURE = 0.3
GENERATOR_TEMPERATURE = 0.7
VALIDATOR_TEMPERATURE = 0.1
DEFAULT_DIFFICULTY = "understand"

_CONCEPT_LINE = re.compile(r"^\d+\.\s*([^:]+)(?::|$)")
# Each matches the intact command too, so repairs are idempotent
_BROKEN_RIGHTARROW = re.compile(r"(?<![A-Za-z\\])\\?r?ightarrow")
_BROKEN_LEFTARROW = re.compile(r"(?<![A-Za-z\\])\\?l?eftarrow")
_BROKEN_TEXT = re.compile(r"(?<![A-Za-z\\])\\?t?ext\s*\{")
_BROKEN_FRAC = re.compile(r"(?<![A-Za-z\\])\\?f?rac\s*\{")


# --- Global Components for the quiz workflow ---
class QuizAgentComponents:
    def __init__(self):
        self.settings = get_settings()
        self.llm: Optional[LLMGateway] = None

    def get_llm(self) -> LLMGateway:
        if self.llm is None:
            from backend.dependencies import get_llm_gateway
            self.llm = get_llm_gateway()
        return self.llm


QUIZ_AGENT_COMPONENTS = QuizAgentComponents()


# --- Helpers ---

def build_context_text(chunks: Sequence[Dict[str, Any]]) -> str:
    """Source text shared by the generator and the validator."""
    text = "\n\n".join(str(chunk.get("text", "")) for chunk in chunks[:CONTEXT_CHUNK_LIMIT])
    return text[:GENERATOR_CONTEXT_CHARS]


def concept_target(num_questions: int) -> int:
    return min(num_questions * 2, MAX_CONCEPTS)


def parse_concepts(response: str, limit: int) -> List[str]:
    concepts: List[str] = []
    for line in (response or "").splitlines():
        match = _CONCEPT_LINE.match(line.strip())
        if not match:
            continue
        concept = match.group(1).strip().strip("[]*").strip()
        if len(concept) > 2:
            concepts.append(concept)
    return concepts[:limit]


def fix_latex_backslashes(text: str) -> str:
    """Restore backslashes the model (or JSON escaping) dropped from LaTeX commands."""
    if not isinstance(text, str) or not text:
        return text
    # Unescaped \r, \t and \f in the JSON decode to control characters
    text = text.replace("\rightarrow", "\\rightarrow").replace("\text", "\\text").replace("\frac", "\\frac")
    text = _BROKEN_RIGHTARROW.sub(r"\\rightarrow", text)
    text = _BROKEN_LEFTARROW.sub(r"\\leftarrow", text)
    text = _BROKEN_TEXT.sub(r"\\text{", text)
    text = _BROKEN_FRAC.sub(r"\\frac{", text)
    return text


def _stable_index_seed(text: str) -> int:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def shuffle_options(options: List[str], correct_index: int, seed_text: str):
    """
    Reorder options with a per-question seed so the answer key is not biased
    toward option A. Same question text -> same order.
    """
    order = list(range(len(options)))
    random.Random(_stable_index_seed(seed_text)).shuffle(order)
    shuffled = [options[i] for i in order]
    return shuffled, order.index(correct_index)


def _coerce_index(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return 0


def normalize_question(item: Any, concepts: Sequence[str]) -> Optional[Dict[str, Any]]:
    """Turn one parsed LLM item into a question dict, or None when required fields are missing."""
    if not isinstance(item, dict):
        return None

    question_text = item.get("question")
    options_raw = item.get("options")
    if not isinstance(question_text, str) or not question_text.strip():
        return None
    if not isinstance(options_raw, list) or not options_raw:
        return None

    question_type = (
        QUESTION_TYPE_TRUE_FALSE if item.get("type") == QUESTION_TYPE_TRUE_FALSE else QUESTION_TYPE_MULTIPLE_CHOICE
    )
    question_text = fix_latex_backslashes(question_text.strip())
    options = [fix_latex_backslashes(str(option)) for option in options_raw]

    correct_index = _coerce_index(item.get("correctIndex", item.get("correct_index", 0)))
    if correct_index < 0 or correct_index >= len(options):
        correct_index = 0

    if question_type == QUESTION_TYPE_MULTIPLE_CHOICE and len(options) >= 2:
        options, correct_index = shuffle_options(options, correct_index, question_text)

    difficulty = str(item.get("difficulty") or "").strip().lower()
    if difficulty not in DIFFICULTY_LEVELS:
        difficulty = DEFAULT_DIFFICULTY

    concept = str(item.get("concept") or "").strip() or (concepts[0] if concepts else "General")

    return {
        "id": str(uuid.uuid4()),
        "type": question_type,
        "question": question_text,
        "options": options,
        "correct_index": correct_index,
        "concept": concept,
        "difficulty": difficulty,
    }


def parse_questions(response: str, concepts: Sequence[str]) -> List[Dict[str, Any]]:
    parsed = parse_json_list(response)
    if parsed is None:
        logger.error("Failed to parse questions JSON (truncated): %s", (response or "")[:300])
        return []

    questions = []
    for item in parsed:
        question = normalize_question(item, concepts)
        if question is None:
            logger.warning("Skipping invalid question: missing required fields")
            continue
        questions.append(question)
    return questions


def uncovered_concepts(concepts: Sequence[str], accumulated: Sequence[Dict[str, Any]]) -> List[str]:
    """Concepts no accumulated question covers yet; all concepts when every one is covered."""
    covered = {str(question.get("concept", "")).strip().lower() for question in accumulated}
    remaining = [concept for concept in concepts if concept.strip().lower() not in covered]
    return remaining or list(concepts)


def _questions_for_validation(questions: Sequence[Dict[str, Any]]) -> str:
    payload = [
        {
            "index": position,
            "id": question["id"],
            "type": question["type"],
            "question": question["question"],
            "options": question["options"],
            "correctIndex": question["correct_index"],
            "difficulty": question.get("difficulty"),
        }
        for position, question in enumerate(questions)
    ]
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _accept_all(questions: Sequence[Dict[str, Any]], reason: str) -> List[Dict[str, Any]]:
    return [{"question_id": question["id"], "is_valid": True, "issues": [reason]} for question in questions]


def parse_validation_results(response: str, questions: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    parsed = parse_json_list(response)
    if parsed is None:
        logger.error("Failed to parse validation JSON, accepting the batch")
        return _accept_all(questions, "Validation parsing failed")

    results = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        issues = item.get("issues")
        results.append({
            "question_id": str(item.get("id") or item.get("questionId") or ""),
            "is_valid": item.get("isValid", item.get("is_valid")) is not False,
            "issues": [str(issue) for issue in issues] if isinstance(issues, list) else [],
        })
    return results


async def extract_concepts(chunks: Sequence[Dict[str, Any]], num_questions: int) -> List[str]:
    if not chunks:
        logger.warning("No chunks provided for concept extraction")
        return []

    target = concept_target(num_questions)
    content = "\n\n".join(
        f"[Chunk {position}]\n{chunk.get('text', '')}"
        for position, chunk in enumerate(chunks[:CONCEPT_CHUNK_LIMIT], start=1)
    )
    prompt = render_prompt("quiz", "concepts", {"num_concepts": target, "content": content})

    try:
        response = await QUIZ_AGENT_COMPONENTS.get_llm().generate(prompt, temperature=CONCEPT_TEMPERATURE)
    except Exception as e:
        logger.error("Error extracting concepts: %s", e)
        return []

    concepts = parse_concepts(response.content, target)
    logger.info("Extracted %s concepts", len(concepts))
    return concepts


# --- Node Functions ---

async def question_generator_node(state: QuizGenerationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    num_questions = int(state_dict.get("num_questions") or 0)
    retry_count = int(state_dict.get("retry_count") or 0)
    accumulated = list(state_dict.get("accumulated_valid") or [])
    concepts = list(state_dict.get("concepts") or [])
    patch: Dict[str, Any] = {}

    if not concepts:
        concepts = await extract_concepts(state_dict.get("chunks") or [], num_questions)
        patch["concepts"] = concepts

    if retry_count == 0:
        to_generate = num_questions + OVER_GENERATE_COUNT
        target_concepts = concepts
    else:
        to_generate = int(state_dict.get("deficit") or 0) + OVER_GENERATE_COUNT
        target_concepts = uncovered_concepts(concepts, accumulated)

    if not target_concepts:
        logger.warning("No concepts available for question generation")
        patch["questions"] = []
        return patch

    prompt = render_prompt(
        "quiz",
        "questions",
        {
            "num_questions": to_generate,
            "concepts": "\n".join(f"{i}. {concept}" for i, concept in enumerate(target_concepts, start=1)),
            "context": (state_dict.get("context_text") or "")[:GENERATOR_CONTEXT_CHARS],
        },
    )

    try:
        response = await QUIZ_AGENT_COMPONENTS.get_llm().generate(prompt, temperature=GENERATOR_TEMPERATURE)
    except Exception as e:
        logger.error("Error generating questions: %s", e)
        patch["questions"] = []
        return patch

    questions = parse_questions(response.content, target_concepts)
    logger.info(
        "Generated %s questions (requested %s, pass %s)", len(questions), to_generate, retry_count + 1
    )
    patch["questions"] = questions
    return patch


def _fold(state_dict: Dict[str, Any], valid_batch: List[Dict[str, Any]], results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Append the valid subset to the accumulator and decide whether another pass is needed.
    The folded batch is cleared so it only lives in accumulated_valid.
    """
    num_questions = int(state_dict.get("num_questions") or 0)
    retry_count = int(state_dict.get("retry_count") or 0)

    accumulated = list(state_dict.get("accumulated_valid") or []) + valid_batch
    deficit = compute_deficit(num_questions, len(accumulated))
    needs_regeneration = deficit > 0 and retry_count < MAX_RETRIES

    return {
        "questions": [],
        "validation_results": results,
        "accumulated_valid": accumulated,
        "deficit": deficit,
        "needs_regeneration": needs_regeneration,
        "retry_count": retry_count + 1 if needs_regeneration else retry_count,
    }


async def validator_node(state: QuizGenerationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    questions = list(state_dict.get("questions") or [])

    if not questions:
        logger.warning("No questions to validate")
        return _fold(state_dict, [], [])

    context_text = (state_dict.get("context_text") or "")[:VALIDATOR_CONTEXT_CHARS]
    if not context_text:
        logger.warning("No source context available, accepting all %s questions", len(questions))
        return _fold(state_dict, questions, _accept_all(questions, "Validation skipped: no source context available"))

    prompt = render_prompt(
        "quiz",
        "validator",
        {"context": context_text, "questions": _questions_for_validation(questions)},
    )

    try:
        response = await QUIZ_AGENT_COMPONENTS.get_llm().generate(prompt, temperature=VALIDATOR_TEMPERATURE)
    except Exception as e:
        logger.error("Error validating questions, accepting the batch: %s", e)
        return _fold(state_dict, questions, _accept_all(questions, "Validation skipped due to error"))

    results = parse_validation_results(response.content, questions)
    invalid_ids = {result["question_id"] for result in results if not result["is_valid"]}
    valid_batch = [question for question in questions if question["id"] not in invalid_ids]

    patch = _fold(state_dict, valid_batch, results)
    logger.info(
        "Validation: %s/%s valid this batch, %s accumulated, deficit=%s",
        len(valid_batch), len(questions), len(patch["accumulated_valid"]), patch["deficit"],
    )
    if invalid_ids:
        logger.warning("Filtered out %s invalid questions", len(questions) - len(valid_batch))
    return patch
