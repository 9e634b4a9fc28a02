"""Input validation for orchestration requests.

Prompts are validated before any network call is made.
"""

from .errors import InputValidationError

__all__ = ["PROMPT_MAX_LENGTH", "PROMPT_MIN_LENGTH", "validate_prompt"]

PROMPT_MIN_LENGTH = 10
PROMPT_MAX_LENGTH = 500


def validate_prompt(prompt: object) -> str:
    """Validate an app description prompt and return it stripped.

    Args:
        prompt: Caller-supplied prompt

    Returns:
        The prompt without surrounding whitespace

    Raises:
        InputValidationError: If the prompt is not a string or its length is
            outside PROMPT_MIN_LENGTH..PROMPT_MAX_LENGTH
    """
    if not isinstance(prompt, str):
        raise InputValidationError("Prompt must be a string")

    prompt = prompt.strip()
    if len(prompt) < PROMPT_MIN_LENGTH:
        raise InputValidationError(
            f"Prompt must be at least {PROMPT_MIN_LENGTH} characters"
        )
    if len(prompt) > PROMPT_MAX_LENGTH:
        raise InputValidationError(
            f"Prompt must not exceed {PROMPT_MAX_LENGTH} characters"
        )
    return prompt
