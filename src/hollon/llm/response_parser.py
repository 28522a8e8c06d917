"""Decoding of raw brain output into structured results."""

import json
import logging
import re
from typing import Any, Dict

from pydantic import ValidationError

from ..errors import DecompositionParseError
from ..models.execution_models import (
    DecomposeResult,
    DirectResult,
    InferenceResult,
    SelfCorrectResult,
    SubtaskSpec,
)

logger = logging.getLogger(__name__)

DECOMPOSE_PREFIX = "DECOMPOSE_TASK:"
SELF_CORRECT_PREFIX = "SELF_CORRECT:"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Extract the first JSON object from model output.

    PATTERN: Fenced block first, then the outermost {...} span
    GOTCHA: Models often wrap JSON in prose or markdown

    Args:
        text: Raw model output

    Returns:
        Parsed JSON object

    Raises:
        DecompositionParseError: If no JSON object can be parsed
    """
    candidate = strip_code_fences(text)

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise DecompositionParseError("No JSON object found in output", raw_output=text)

    try:
        data = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as e:
        raise DecompositionParseError(f"Invalid JSON: {e}", raw_output=text) from e

    if not isinstance(data, dict):
        raise DecompositionParseError("Expected a JSON object", raw_output=text)

    return data


def decode_inference_output(output: str) -> InferenceResult:
    """
    Decode brain output once into a tagged result.

    Output formats:
        DECOMPOSE_TASK: {"reason": "...", "subtasks": [{...}, ...]}
        SELF_CORRECT: <reason>
        anything else is a direct implementation result

    Args:
        output: Raw brain output

    Returns:
        DecomposeResult, SelfCorrectResult or DirectResult

    Raises:
        DecompositionParseError: If a decomposition payload is malformed
    """
    stripped = output.lstrip()

    if stripped.startswith(DECOMPOSE_PREFIX):
        payload = stripped[len(DECOMPOSE_PREFIX) :]
        data = extract_json_object(payload)

        raw_subtasks = data.get("subtasks")
        if not isinstance(raw_subtasks, list) or not raw_subtasks:
            raise DecompositionParseError(
                "Decomposition payload has no subtasks", raw_output=output
            )

        try:
            subtasks = [SubtaskSpec.model_validate(item) for item in raw_subtasks]
        except ValidationError as e:
            raise DecompositionParseError(
                f"Invalid subtask definition: {e}", raw_output=output
            ) from e

        logger.debug(f"Decoded decomposition request with {len(subtasks)} subtasks")
        return DecomposeResult(reason=str(data.get("reason", "")), subtasks=subtasks)

    if stripped.startswith(SELF_CORRECT_PREFIX):
        reason = stripped[len(SELF_CORRECT_PREFIX) :].strip()
        return SelfCorrectResult(reason=reason or "Worker requested another attempt")

    return DirectResult(output=output)
