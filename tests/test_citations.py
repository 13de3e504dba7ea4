from backend.agents.chat.citations import (
    CitationFilter,
    build_message_sources,
    cited_indices,
    format_chunks_for_prompt,
    strip_invalid_citations,
)


def test_strip_invalid_citations_keeps_only_markers_in_range():
    text = "Plants use light [1]. Chlorophyll is green [2]. Made up [7]. Zero [0]."
    cleaned = strip_invalid_citations(text, max_index=2)

    assert cleaned == "Plants use light [1]. Chlorophyll is green [2]. Made up . Zero ."
    assert cited_indices(cleaned) == [1, 2]


def test_strip_invalid_citations_without_chunks_removes_every_marker():
    assert strip_invalid_citations("Hello [1] there [2]", max_index=0) == "Hello  there "


def test_non_numeric_brackets_are_left_alone():
    text = "Use the array a[i] and [see above]."
    assert strip_invalid_citations(text, max_index=1) == text


def _feed_all(pieces, max_index):
    citation_filter = CitationFilter(max_index)
    out = [citation_filter.feed(piece) for piece in pieces]
    out.append(citation_filter.flush())
    return "".join(out)


def test_citation_filter_matches_batch_result_for_split_markers():
    text = "Light is absorbed [1][12] by chlorophyll [3] and stored [2]."
    for size in (1, 2, 3, 5):
        pieces = [text[i:i + size] for i in range(0, len(text), size)]
        assert _feed_all(pieces, max_index=3) == strip_invalid_citations(text, 3)


def test_citation_filter_releases_unterminated_bracket_on_flush():
    assert _feed_all(["Range [", "1"], max_index=3) == "Range [1"
    assert _feed_all(["array[", "i]"], max_index=3) == "array[i]"


def test_format_chunks_numbers_excerpts_from_one():
    chunks = [
        {"text": "First excerpt", "source_name": "a.txt"},
        {"text": "Second excerpt", "source_name": "b.pdf"},
    ]
    formatted = format_chunks_for_prompt(chunks)

    assert formatted.startswith("[1] (from a.txt)\nFirst excerpt")
    assert "[2] (from b.pdf)\nSecond excerpt" in formatted


def test_build_message_sources_one_citation_per_chunk_in_order():
    chunks = [
        {"chunk_id": "s:0", "source_id": "s", "source_name": "a.txt", "text": "x", "index": 0, "similarity": 0.8},
        {"chunk_id": "s:1", "source_id": "s", "source_name": "a.txt", "text": "y", "index": 1, "similarity": 0.5},
    ]
    sources = build_message_sources(chunks)

    assert [source["citation"] for source in sources] == [1, 2]
    assert sources[1]["chunk_text"] == "y"
    assert sources[0]["similarity"] == 0.8
