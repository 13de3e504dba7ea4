import json

import pytest

from backend.agents.quiz import nodes as quiz_nodes
from backend.agents.quiz.state import OVER_GENERATE_COUNT, compute_deficit, create_initial_quiz_state
from backend.core.state import merge_state
from tests.fakes import make_questions_json, numbered_concepts, question_ids_in

CHUNKS = [
    {"chunk_id": f"src-1:{i}", "source_id": "src-1", "source_name": "bio.txt", "text": f"Biology fact number {i}.", "index": i}
    for i in range(25)
]


def _state(num_questions=5, **overrides):
    state = create_initial_quiz_state(
        conversation_id="conv-1",
        source_ids=["src-1"],
        num_questions=num_questions,
        chunks=CHUNKS,
        context_text=quiz_nodes.build_context_text(CHUNKS),
    )
    return merge_state(state, overrides)


def _question(i, concept="Concept 1"):
    return {
        "id": f"q-{i}",
        "type": "multiple_choice",
        "question": f"Question {i}?",
        "options": ["a", "b", "c", "d"],
        "correct_index": 1,
        "concept": concept,
        "difficulty": "apply",
    }


# --- parsing helpers ---

def test_concept_target_is_twice_the_questions_capped_at_thirty():
    assert quiz_nodes.concept_target(5) == 10
    assert quiz_nodes.concept_target(20) == 30


def test_parse_concepts_reads_numbered_labels():
    response = "Here you go:\n1. Photosynthesis: light to sugar\n2. ATP\n3. Calvin Cycle\n- not numbered\n4. ab: too short"
    assert quiz_nodes.parse_concepts(response, limit=10) == ["Photosynthesis", "ATP", "Calvin Cycle"]
    assert quiz_nodes.parse_concepts(numbered_concepts(40), limit=30) == [f"Concept {i}" for i in range(1, 31)]


def test_build_context_text_uses_first_fifteen_chunks_within_limit():
    context = quiz_nodes.build_context_text(CHUNKS)
    assert "fact number 14." in context
    assert "fact number 15." not in context
    assert len(quiz_nodes.build_context_text([{"text": "x" * 9000}])) == quiz_nodes.GENERATOR_CONTEXT_CHARS


@pytest.mark.parametrize(
    "broken, fixed",
    [
        ("$A ightarrow B$", "$A \\rightarrow B$"),
        ("$A \rightarrow B$", "$A \\rightarrow B$"),
        ("$A \\rightarrow B$", "$A \\rightarrow B$"),
        ("$B eftarrow A$", "$B \\leftarrow A$"),
        ("$\\Rightarrow$", "$\\Rightarrow$"),
        ("$rac{1}{2}$", "$\\frac{1}{2}$"),
        ("$\frac{1}{2}$", "$\\frac{1}{2}$"),
        ("$5 \text{ms}$", "$5 \\text{ms}$"),
        ("$5 ext{ms}$", "$5 \\text{ms}$"),
        ("context{x}", "context{x}"),
    ],
)
def test_fix_latex_backslashes(broken, fixed):
    assert quiz_nodes.fix_latex_backslashes(broken) == fixed


def test_normalize_question_clamps_index_and_keeps_the_right_answer():
    item = {
        "type": "multiple_choice",
        "question": "Which pigment absorbs red light?",
        "options": ["Chlorophyll", "Carotene", "Xanthophyll", "Melanin"],
        "correctIndex": 9,
        "concept": "Pigments",
        "difficulty": "recall",
    }
    question = quiz_nodes.normalize_question(item, ["Pigments"])

    # out-of-range index falls back to the first option before shuffling
    assert question["options"][question["correct_index"]] == "Chlorophyll"
    assert sorted(question["options"]) == sorted(item["options"])
    assert question["difficulty"] == "recall"
    assert question["id"]


def test_shuffle_is_deterministic_per_question():
    item = {"question": "Same text?", "options": ["a", "b", "c", "d"], "correctIndex": 2}
    first = quiz_nodes.normalize_question(item, [])
    second = quiz_nodes.normalize_question(item, [])
    assert first["options"] == second["options"]
    assert first["correct_index"] == second["correct_index"]


def test_shuffle_spreads_answer_positions():
    questions = quiz_nodes.parse_questions(make_questions_json(12), ["Concept 1"])
    positions = {question["correct_index"] for question in questions}
    assert len(positions) > 1
    assert all(question["options"][question["correct_index"]].startswith("Right") for question in questions)


def test_true_false_options_are_not_shuffled():
    item = {"type": "true_false", "question": "ATP stores energy.", "options": ["True", "False"], "correctIndex": 0}
    question = quiz_nodes.normalize_question(item, [])
    assert question["options"] == ["True", "False"]
    assert question["correct_index"] == 0


def test_items_missing_required_fields_are_skipped():
    response = json.dumps([{"question": "No options"}, {"options": ["a"]}, "junk"])
    assert quiz_nodes.parse_questions(response, []) == []
    assert quiz_nodes.parse_questions("not json at all", []) == []


def test_missing_concept_and_difficulty_get_defaults():
    item = {"question": "Q?", "options": ["a", "b", "c", "d"], "correctIndex": 0, "difficulty": "impossible"}
    question = quiz_nodes.normalize_question(item, ["Energy"])
    assert question["concept"] == "Energy"
    assert question["difficulty"] == quiz_nodes.DEFAULT_DIFFICULTY


def test_uncovered_concepts_falls_back_to_all():
    concepts = ["A", "B", "C"]
    assert quiz_nodes.uncovered_concepts(concepts, [_question(1, "a"), _question(2, "C")]) == ["B"]
    assert quiz_nodes.uncovered_concepts(concepts, [_question(i, c) for i, c in enumerate(concepts)]) == concepts


# --- question generator ---

async def test_first_pass_extracts_concepts_and_over_generates(install_llm):
    llm = install_llm({"concepts": [numbered_concepts(10)], "questions": [make_questions_json(8)]})

    patch = await quiz_nodes.question_generator_node(_state(num_questions=5))

    assert patch["concepts"] == [f"Concept {i}" for i in range(1, 11)]
    assert len(patch["questions"]) == 8
    concepts_prompt = llm.calls_of("concepts")[0]["prompt"]
    assert "Extract 10 concepts now" in concepts_prompt
    assert "[Chunk 20]" in concepts_prompt and "[Chunk 21]" not in concepts_prompt
    assert f"Generate exactly {5 + OVER_GENERATE_COUNT} questions now" in llm.calls_of("questions")[0]["prompt"]


async def test_retry_pass_requests_deficit_plus_buffer_for_uncovered_concepts(install_llm):
    llm = install_llm({"questions": [make_questions_json(7, start=4)]})
    state = _state(
        num_questions=5,
        concepts=["Concept 1", "Concept 2", "Concept 3", "Concept 4"],
        accumulated_valid=[_question(1, "Concept 1"), _question(2, "Concept 2")],
        deficit=4,
        retry_count=1,
    )

    patch = await quiz_nodes.question_generator_node(state)

    assert "concepts" not in patch
    assert llm.calls_of("concepts") == []
    prompt = llm.calls_of("questions")[0]["prompt"]
    assert "Generate exactly 7 questions now" in prompt
    concept_section = prompt.split("Concepts to cover:")[1].split("Source Material")[0]
    assert "Concept 3" in concept_section and "Concept 4" in concept_section
    assert "Concept 1" not in concept_section
    assert len(patch["questions"]) == 7


async def test_generation_failure_returns_empty_batch(install_llm):
    install_llm({"concepts": [numbered_concepts(4)], "questions": [RuntimeError("rate limited")]})
    patch = await quiz_nodes.question_generator_node(_state())
    assert patch["questions"] == []


async def test_concept_failure_returns_empty_batch(install_llm):
    llm = install_llm({"concepts": [RuntimeError("rate limited")]})
    patch = await quiz_nodes.question_generator_node(_state())
    assert patch == {"concepts": [], "questions": []}
    assert llm.calls_of("questions") == []


# --- validator ---

def _reject_first(count):
    def _respond(prompt):
        ids = question_ids_in(prompt)
        return json.dumps([
            {"id": qid, "isValid": position >= count, "issues": [] if position >= count else ["Check 6 failed"]}
            for position, qid in enumerate(ids)
        ])
    return _respond


async def test_validator_folds_valid_subset_and_computes_deficit(install_llm):
    install_llm({"validator": [_reject_first(2)]})
    batch = [_question(i) for i in range(8)]
    state = _state(num_questions=5, questions=batch)

    patch = await quiz_nodes.validator_node(state)

    assert [q["id"] for q in patch["accumulated_valid"]] == [f"q-{i}" for i in range(2, 8)]
    assert patch["deficit"] == compute_deficit(5, 6) == 2
    assert patch["needs_regeneration"] is True
    assert patch["retry_count"] == 1
    assert len(patch["validation_results"]) == 8
    assert patch["questions"] == []


async def test_validator_is_monotonic_across_passes(install_llm):
    install_llm({"validator": [_reject_first(1)]})
    carried = [_question(i) for i in range(3)]
    state = _state(num_questions=5, questions=[_question(i) for i in range(10, 14)], accumulated_valid=carried, retry_count=1)

    patch = await quiz_nodes.validator_node(state)

    assert patch["accumulated_valid"][:3] == carried
    assert len(patch["accumulated_valid"]) == 6
    assert patch["deficit"] == 2
    assert patch["retry_count"] == 2


async def test_validator_stops_when_retries_are_exhausted(install_llm):
    install_llm({"validator": [_reject_first(4)]})
    state = _state(num_questions=5, questions=[_question(i) for i in range(4)], retry_count=2)

    patch = await quiz_nodes.validator_node(state)

    assert patch["deficit"] == 8
    assert patch["needs_regeneration"] is False
    assert patch["retry_count"] == 2


async def test_validator_with_target_met_does_not_regenerate(install_llm):
    install_llm()
    patch = await quiz_nodes.validator_node(_state(num_questions=5, questions=[_question(i) for i in range(8)]))
    assert patch["deficit"] == 0
    assert patch["questions"] == []
    assert patch["needs_regeneration"] is False
    assert patch["retry_count"] == 0


async def test_empty_batch_adds_nothing(install_llm):
    llm = install_llm()
    patch = await quiz_nodes.validator_node(_state(num_questions=5, questions=[], accumulated_valid=[_question(1)]))

    assert patch["accumulated_valid"] == [_question(1)]
    assert patch["deficit"] == 7
    assert patch["needs_regeneration"] is True
    assert llm.calls == []


async def test_missing_context_accepts_the_batch(install_llm):
    llm = install_llm()
    patch = await quiz_nodes.validator_node(_state(num_questions=5, context_text="", questions=[_question(i) for i in range(3)]))

    assert len(patch["accumulated_valid"]) == 3
    assert patch["deficit"] == 5
    assert llm.calls == []


async def test_validator_failure_is_fail_open(install_llm):
    install_llm({"validator": [RuntimeError("timeout")]})
    patch = await quiz_nodes.validator_node(_state(num_questions=5, questions=[_question(i) for i in range(8)]))

    assert len(patch["accumulated_valid"]) == 8
    assert all(result["is_valid"] for result in patch["validation_results"])
    assert patch["deficit"] == 0
    assert patch["questions"] == []


async def test_unparseable_verdicts_accept_the_batch(install_llm):
    install_llm({"validator": ["I could not decide."]})
    patch = await quiz_nodes.validator_node(_state(num_questions=5, questions=[_question(i) for i in range(4)]))

    assert len(patch["accumulated_valid"]) == 4
    assert patch["deficit"] == 4
