"""Parsing of free-text LLM replies into the JSON contracts the services expect.

Models wrap JSON in markdown fences, prepend explanations, and occasionally
sprinkle `//` or `/* */` comments inside the object. The helpers here only
handle model output; they are not a general JSON-with-comments parser.
"""
import json
import logging
import re

from pydantic import ValidationError

from licitaradar.core.errors import InvalidModelOutput
from licitaradar.models.schemas import ClassificationResult, EditalAnalysisResult

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 300

_FENCED_JSON = re.compile(r"```json([\s\S]*?)```", re.IGNORECASE)
# Only whole lines starting with //. A "https://" inside a string value is left alone
_LINE_COMMENT = re.compile(r"^\s*//.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    return re.sub(r"\s+", " ", text[:limit]).strip()


def extract_json_block(text: str) -> str:
    """
    Return the `{...}` span of a model reply.

    Prefers the content of a ```json fenced block; otherwise uses the raw
    text. The span runs from the first `{` to the last `}`.
    """
    match = _FENCED_JSON.search(text)
    raw = match.group(1).strip() if match else text.strip()
    first = raw.find("{")
    last = raw.rfind("}")
    if first == -1 or last == -1 or last < first:
        raise InvalidModelOutput("Resposta do modelo não contém JSON válido", preview=preview(raw))
    return raw[first:last + 1]


def strip_json_comments(blob: str) -> str:
    without_lines = _LINE_COMMENT.sub("", blob)
    return _BLOCK_COMMENT.sub("", without_lines)


def _loads(blob: str) -> dict:
    try:
        parsed = json.loads(blob)
    except json.JSONDecodeError as e:
        raise InvalidModelOutput(
            f"Falha ao fazer parse do JSON da IA: {e.msg}", preview=preview(blob)
        ) from e
    if not isinstance(parsed, dict):
        raise InvalidModelOutput("JSON retornado não é um objeto", preview=preview(blob))
    return parsed


def parse_classification(text: str) -> ClassificationResult:
    """Parse a relevance verdict: score (number), justificativa (str), relevante (bool), tags?."""
    parsed = _loads(extract_json_block(text))
    try:
        result = ClassificationResult.model_validate(parsed)
    except ValidationError as e:
        logger.warning(f"Classifier reply missing expected fields: {e.errors()[:3]}")
        raise InvalidModelOutput("JSON retornado não contém os campos esperados") from e
    result.score = min(max(result.score, 0), 100)
    return result


def parse_edital_analysis(text: str) -> tuple[EditalAnalysisResult, dict]:
    """Parse an edital diagnosis. Returns the validated result and the raw parsed dict."""
    blob = strip_json_comments(extract_json_block(text))
    parsed = _loads(blob)
    try:
        return EditalAnalysisResult.model_validate(parsed), parsed
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise InvalidModelOutput(
            f"JSON da análise sem campos obrigatórios válidos ({fields})", preview=preview(blob)
        ) from e
