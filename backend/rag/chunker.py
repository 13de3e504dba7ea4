from typing import List


def split_text(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> List[str]:
    """
    Split source text into chunks of at most chunk_size characters.

    Paragraphs are packed together until the next one would overflow; a
    paragraph longer than chunk_size is cut into fixed windows. Each chunk
    after the first starts with the last chunk_overlap characters of the
    previous one.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    chunk_overlap = max(0, min(chunk_overlap, chunk_size // 2))

    pieces: List[str] = []
    step = chunk_size - chunk_overlap
    for para in text.split("\n\n"):
        para = para.strip()
        if not para:
            continue
        if len(para) <= chunk_size:
            pieces.append(para)
            continue
        for start in range(0, len(para), step):
            pieces.append(para[start:start + chunk_size])
            if start + chunk_size >= len(para):
                break

    chunks: List[str] = []
    current = ""
    for piece in pieces:
        if current and len(current) + len(piece) + 2 > chunk_size:
            chunks.append(current)
            tail = current[-chunk_overlap:] if chunk_overlap else ""
            current = f"{tail}\n\n{piece}" if tail and len(tail) + len(piece) + 2 <= chunk_size else piece
        else:
            current = f"{current}\n\n{piece}" if current else piece

    if current.strip():
        chunks.append(current)
    return chunks
