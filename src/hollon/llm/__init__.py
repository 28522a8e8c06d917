"""Brain port, OpenAI adapter and output decoding."""

from .base import BaseBrain
from .openai_brain import OpenAIBrain
from .response_parser import (
    DECOMPOSE_PREFIX,
    SELF_CORRECT_PREFIX,
    decode_inference_output,
    extract_json_object,
    strip_code_fences,
)

__all__ = [
    "BaseBrain",
    "OpenAIBrain",
    "DECOMPOSE_PREFIX",
    "SELF_CORRECT_PREFIX",
    "decode_inference_output",
    "extract_json_object",
    "strip_code_fences",
]
