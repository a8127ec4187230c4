"""Prompt builders for the two summarizer backends.

Every builder takes the user's custom prompt (possibly empty) and returns a
self-contained string, so each request is stateless.
"""

DEFAULT_PROMPT = (
    "Summarize the following document in a few short paragraphs and choose "
    "4 keywords that describe it. Respond with a JSON object with the keys "
    '"summary" (string) and "keywords" (array of 4 strings).'
)

DEFAULT_TEXT_PROMPT = (
    "You are an expert text analyzer. Read the following text carefully. "
    "Provide a clear, concise, and well-structured summary in 3-4 short "
    "paragraphs, highlighting the main ideas and important details without "
    "repeating phrases or filler words.\n"
    "Answer in this format:\n"
    "Summary: <summary>\n"
    "Keywords: <keyword 1>, <keyword 2>, <keyword 3>, <keyword 4>"
)

DEFAULT_VISION_PROMPT = "Summarize this image and provide 4 keywords."

JSON_INSTRUCTION = "IMPORTANT: Your entire response must be a valid JSON object."


def build_openai_prompt(custom_prompt: str, text: str) -> str:
    """Build the remote-backend prompt, forcing a JSON reply.

    The JSON instruction is appended only when the prompt does not already
    mention JSON.
    """
    prompt = custom_prompt.strip() or DEFAULT_PROMPT
    if "json" not in prompt.lower():
        prompt += f"\n\n{JSON_INSTRUCTION}"
    return f"{prompt}\n\nText to process:\n{text}"


def build_text_prompt(custom_prompt: str, text: str) -> str:
    """Build the local-backend prompt for already extracted text."""
    prompt = custom_prompt.strip() or DEFAULT_TEXT_PROMPT
    return f"{prompt}\n\nText to analyze:\n{text}"


def build_vision_prompt(custom_prompt: str) -> str:
    """Return the prompt sent alongside an image."""
    return custom_prompt.strip() or DEFAULT_VISION_PROMPT


def truncate_text(text: str, max_chars: int) -> str:
    """Shorten *text* to about *max_chars* by dropping its middle.

    The first and last ``max_chars // 2`` characters are kept verbatim and
    joined with ``"..."``, so the result is at most ``max_chars + 3`` long.
    """
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    if half == 0:
        return "..."
    return f"{text[:half]}...{text[-half:]}"
