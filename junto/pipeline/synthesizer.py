import backoff
from httpx import HTTPStatusError
from openai import AsyncOpenAI, RateLimitError

from junto.config import get_settings
from junto.core.logging import get_logger
from junto.models.source import SourcePost
from junto.schemas.llm import DigestSynthesis, PostInput, SynthesisResult

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are the editor of "Junto", a personal daily digest built from the
accounts a reader follows. Your job is to turn a batch of recent posts into a short,
readable briefing.

Rules:
- Group related posts into themed sections; lead with what matters most
- Prefer substance: launches, findings, arguments, announcements, data
- Skip jokes, engagement bait and posts with no information
- Never invent facts; every highlight must be supported by the provided posts
- Only cite URLs from the provided posts
- Write in plain, direct language

Output format is strictly JSON matching the schema provided."""


def format_posts(posts: list[SourcePost], max_chars: int = 600) -> list[PostInput]:
    """Format source posts for LLM input, most engaging first."""
    ordered = sorted(posts, key=lambda p: p.engagement, reverse=True)
    return [
        PostInput(
            handle=post.handle,
            content=post.content[:max_chars],
            url=post.url,
            posted_at=post.posted_at.isoformat(),
            engagement=post.engagement,
        )
        for post in ordered
    ]


def build_user_prompt(
    posts: list[PostInput],
    keywords: list[str] | None = None,
    custom_prompt: str | None = None,
) -> str:
    prompt = f"Write today's digest from these {len(posts)} posts.\n"

    if keywords:
        prompt += f"\nThe reader is especially interested in: {', '.join(keywords)}\n"
    if custom_prompt:
        prompt += f"\nReader instructions: {custom_prompt.strip()}\n"

    prompt += "\nPosts:\n"
    for i, post in enumerate(posts, 1):
        prompt += f"""
{i}. @{post.handle} ({post.posted_at}, engagement {post.engagement})
   {post.content}
   URL: {post.url or "n/a"}
"""

    prompt += "\nProduce a JSON digest following the schema."
    return prompt


@backoff.on_exception(
    backoff.expo,
    (RateLimitError, HTTPStatusError),
    max_tries=5,
    max_time=120,
)
async def synthesize_digest(
    posts: list[SourcePost],
    client: AsyncOpenAI,
    keywords: list[str] | None = None,
    custom_prompt: str | None = None,
) -> SynthesisResult | None:
    """
    Use LLM to synthesize a user's recent posts into a digest.

    Args:
        posts: Recent posts from the user's followed sources
        client: OpenAI async client
        keywords: Optional reader interests to emphasize
        custom_prompt: Optional free-form reader instructions

    Returns:
        SynthesisResult with output and token usage, or None if synthesis fails
    """
    settings = get_settings()
    user_prompt = build_user_prompt(format_posts(posts), keywords, custom_prompt)

    try:
        response = await client.chat.completions.parse(
            model=settings.llm_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            response_format=DigestSynthesis,
            temperature=0.4,
        )
    except (RateLimitError, HTTPStatusError):
        raise
    except Exception as e:
        logger.bind(post_count=len(posts), error=str(e)).error("digest_synthesis_error")
        return None

    result = response.choices[0].message.parsed
    usage = response.usage

    if result is None or usage is None:
        logger.bind(post_count=len(posts)).warning("digest_synthesis_no_result")
        return None

    logger.bind(
        post_count=len(posts),
        sections=len(result.sections),
        total_tokens=usage.total_tokens,
    ).info("digest_synthesized")

    return SynthesisResult(
        output=result,
        model=settings.llm_model,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
    )


def create_client() -> AsyncOpenAI | None:
    """Build an OpenAI client from settings, or None when no key is configured."""
    settings = get_settings()
    if not settings.openai_api_key:
        logger.warning("openai_api_key_not_set")
        return None
    return AsyncOpenAI(api_key=settings.openai_api_key)
