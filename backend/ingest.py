import logging
from io import BytesIO
from typing import Dict, List

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from errors import ValidationError

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 1000


def _clip(text: str) -> str:
    return text if len(text) <= MAX_FIELD_LENGTH else text[:MAX_FIELD_LENGTH - 3] + "..."


def extract_qa_pairs(text: str, max_pairs: int = 10) -> List[Dict[str, str]]:
    """Card drafts from study notes.

    ``term: definition`` lines become "What is term?" cards, other long lines
    become "Explain: ..." cards. With nothing usable, one summary card.
    """
    lines = [ln.strip() for ln in (text or "").splitlines() if ln.strip()]
    drafts: List[Dict[str, str]] = []
    seen = set()
    for ln in lines:
        if len(drafts) >= max_pairs:
            break
        if ":" in ln:
            term, definition = ln.split(":", 1)
            if not term.strip() or not definition.strip():
                continue
            front, back = f"What is {term.strip()}?", definition.strip()
        elif len(ln.split()) > 7:
            head = " ".join(ln.split()[:6])
            front, back = f"Explain: {head} ...", ln
        else:
            continue
        if front in seen:
            continue
        seen.add(front)
        drafts.append({"front": _clip(front), "back": _clip(back)})

    if drafts:
        return drafts
    body = (text or "").strip()
    if not body:
        raise ValidationError("No text to build cards from", "text")
    return [{"front": "Summarize the main idea.", "back": body[:300] + ("..." if len(body) > 300 else "")}]


def read_pdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(BytesIO(data))
        return "\n".join((p.extract_text() or "") for p in reader.pages)
    except (PyPdfError, ValueError) as e:
        logger.warning("PDF parse error: %s", e)
        raise ValidationError(f"PDF parse error: {e}", "file") from e
