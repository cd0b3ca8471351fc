"""
Normalization of generator output into a storable question row

The external generator is an LLM workflow: field names drift, options arrive
as lists or maps, and Bloom's levels come back as free text. Everything here
is pure so it can be tested without a database.
"""
import re
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional, Tuple

CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
PARENTHETICAL = re.compile(r"\(.*\)")

QUESTION_TEXT_MAX = 2000
EXPLANATION_MAX = 2000
OPTION_TEXT_MAX = 500
BOOK_MAX = 100
CHAPTER_MAX = 100
TOPIC_MAX = 255
CORRECT_ANSWER_MAX = 10

DIFFICULTIES = ("easy", "intermediate", "hard")
BLOOMS_LEVELS = ("knowledge", "comprehension", "application", "analysis", "synthesis", "evaluation")

BLOOMS_SYNONYMS: Dict[str, str] = {
    # knowledge
    "recall": "knowledge",
    "remember": "knowledge",
    "remembering": "knowledge",
    "memorization": "knowledge",
    "factual": "knowledge",
    "fact": "knowledge",
    "identification": "knowledge",
    "identify": "knowledge",
    "definition": "knowledge",
    "recognition": "knowledge",
    # comprehension
    "understand": "comprehension",
    "understanding": "comprehension",
    "interpretation": "comprehension",
    "interpret": "comprehension",
    "explain": "comprehension",
    "summarize": "comprehension",
    "meaning": "comprehension",
    "inference": "comprehension",
    # application
    "apply": "application",
    "applying": "application",
    "practical": "application",
    "scenario": "application",
    "life application": "application",
    # analysis
    "analyze": "analysis",
    "analyse": "analysis",
    "analyzing": "analysis",
    "compare": "analysis",
    "comparison": "analysis",
    "contrast": "analysis",
    "cause and effect": "analysis",
    "examine": "analysis",
    # synthesis
    "create": "synthesis",
    "creating": "synthesis",
    "synthesize": "synthesis",
    "combine": "synthesis",
    "integrate": "synthesis",
    "theme": "synthesis",
    # evaluation
    "evaluate": "evaluation",
    "evaluating": "evaluation",
    "judge": "evaluation",
    "judgment": "evaluation",
    "assess": "evaluation",
    "critique": "evaluation",
    "justify": "evaluation",
}

# Longest phrases first so "cause and effect" wins over anything it contains
_SYNONYMS_BY_LENGTH = sorted(BLOOMS_SYNONYMS.items(), key=lambda item: len(item[0]), reverse=True)


class QuestionValidationFailed(ValueError):
    """Normalized question lacks text, options or a correct answer"""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required fields in generated question: {', '.join(missing)}")


@dataclass
class NormalizedQuestion:
    question_text: str
    options: List[Dict[str, str]] = field(default_factory=list)
    correct_answer: str = ""
    explanation: str = ""
    difficulty: str = "intermediate"
    blooms_level: str = "knowledge"
    topic: str = ""
    book: str = ""
    chapter: str = ""

    def as_values(self) -> Dict[str, Any]:
        return asdict(self)


def clean_text(value: Any, limit: Optional[int] = None) -> str:
    """Strip control characters and surrounding whitespace, then cap the length"""
    if value is None or value == "":
        return ""
    text = CONTROL_CHARS.sub("", str(value)).strip()
    return text[:limit] if limit else text


def _option_id(index: int) -> str:
    return chr(ord("a") + index) if index < 26 else str(index + 1)


def normalize_options(raw: Any) -> List[Dict[str, str]]:
    """
    Convert any accepted option shape to an ordered [{id, text}] list

    - [{"id": "a", "text": "..."}] keeps ids, sanitizes text
    - ["...", "..."] gets ids a, b, c, ...
    - {"A": "...", "B": "..."} becomes [{"id": "a", ...}, {"id": "b", ...}]
    """
    if not raw:
        return []

    if isinstance(raw, dict):
        return [
            {"id": str(key).lower(), "text": clean_text(value, OPTION_TEXT_MAX)}
            for key, value in raw.items()
        ]

    if isinstance(raw, (list, tuple)):
        options = []
        for index, option in enumerate(raw):
            if isinstance(option, dict):
                option_id = clean_text(option.get("id")) or _option_id(index)
                options.append({"id": option_id.lower(), "text": clean_text(option.get("text"), OPTION_TEXT_MAX)})
            else:
                options.append({"id": _option_id(index), "text": clean_text(option, OPTION_TEXT_MAX)})
        return options

    return []


def parse_biblical_reference(reference: str) -> Tuple[str, str]:
    """
    Split a combined reference into (book, chapter)

    "1 Corinthians 13 (love chapter)" -> ("1 Corinthians", "13")
    "John 3:16" -> ("John", "3:16")
    """
    parts = reference.strip().split()
    if not parts:
        return "", ""

    if parts[0].isdigit() and len(parts) > 1:
        book = f"{parts[0]} {parts[1]}"
        remainder = parts[2:]
    else:
        book = parts[0]
        remainder = parts[1:]

    chapter = PARENTHETICAL.sub("", " ".join(remainder)).strip()
    return book, chapter


def map_blooms_from_type(question_type: Any) -> Optional[str]:
    """Exact synonym match first, then the first synonym contained in the text"""
    text = clean_text(question_type).lower().replace("_", " ").replace("-", " ")
    if not text:
        return None
    if text in BLOOMS_LEVELS:
        return text
    if text in BLOOMS_SYNONYMS:
        return BLOOMS_SYNONYMS[text]

    for level in BLOOMS_LEVELS:
        if level in text:
            return level
    for synonym, level in _SYNONYMS_BY_LENGTH:
        if synonym in text:
            return level
    return None


def _first(values: Any) -> Any:
    if isinstance(values, (list, tuple)) and values:
        return values[0]
    if isinstance(values, str):
        return values
    return None


def resolve_blooms_level(raw: Dict[str, Any], request: Dict[str, Any]) -> str:
    level = raw.get("bloomsLevel") or raw.get("blooms_level")
    if isinstance(level, str) and level.strip().lower() in BLOOMS_LEVELS:
        return level.strip().lower()

    mapped = map_blooms_from_type(raw.get("question_type") or raw.get("questionType"))
    if mapped:
        return mapped

    requested = _first(request.get("bloomsLevel"))
    if isinstance(requested, str) and requested.lower() in BLOOMS_LEVELS:
        return requested.lower()

    return "knowledge"


def resolve_difficulty(raw: Dict[str, Any], request: Dict[str, Any]) -> str:
    for candidate in (raw.get("difficulty"), request.get("difficulty")):
        if isinstance(candidate, str) and candidate.strip().lower() in DIFFICULTIES:
            return candidate.strip().lower()
    return "intermediate"


def resolve_book_and_chapter(raw: Dict[str, Any], request: Dict[str, Any]) -> Tuple[str, str]:
    book = raw.get("book") or _first(request.get("books"))
    chapter = raw.get("chapter") or _first(request.get("chapters"))

    reference = clean_text(raw.get("biblical_reference") or raw.get("biblicalReference"))
    if reference:
        book, chapter = parse_biblical_reference(reference)

    return clean_text(book, BOOK_MAX), clean_text(chapter, CHAPTER_MAX)


def normalize_question(raw: Dict[str, Any], request: Optional[Dict[str, Any]] = None) -> NormalizedQuestion:
    """
    Turn one generated question into column values

    Args:
        raw: First element of the callback's questionsData
        request: The payload originally sent to the generator (fallbacks)

    Raises:
        QuestionValidationFailed: no question text, options or correct answer
    """
    request = request or {}

    question_text = clean_text(raw.get("question") or raw.get("questionText"), QUESTION_TEXT_MAX)
    options = normalize_options(raw.get("options"))
    correct_answer = clean_text(raw.get("correct_answer") or raw.get("correctAnswer")).lower()[:CORRECT_ANSWER_MAX]

    missing = [
        name for name, value in (
            ("questionText", question_text),
            ("options", options),
            ("correctAnswer", correct_answer),
        ) if not value
    ]
    if missing:
        raise QuestionValidationFailed(missing)

    book, chapter = resolve_book_and_chapter(raw, request)

    return NormalizedQuestion(
        question_text=question_text,
        options=options,
        correct_answer=correct_answer,
        explanation=clean_text(raw.get("explanation"), EXPLANATION_MAX),
        difficulty=resolve_difficulty(raw, request),
        blooms_level=resolve_blooms_level(raw, request),
        topic=clean_text(raw.get("topic") or raw.get("question_type"), TOPIC_MAX),
        book=book,
        chapter=chapter,
    )
