import os

from openai import OpenAI


def get_openai_client() -> OpenAI:
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set")
    return OpenAI(api_key=api_key)


def call_chat_text(
    system_prompt,
    user_content,
    *,
    max_tokens=500,
    temperature=0.7,
    logger=None,
):
    """Call OpenAI chat completion and return response content or None."""
    try:
        client = get_openai_client()
        response = client.chat.completions.create(
            model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=15,
        )
        content = response.choices[0].message.content
        return content.strip() if content else None
    except Exception as exc:
        if logger:
            logger.warning("OpenAI API error: %s", exc)
        return None
