from pydantic import BaseModel, Field


class DigestSection(BaseModel):
    """One themed section of a digest."""

    title: str = Field(description="Short section heading, max 80 characters", max_length=200)
    summary: str = Field(description="2-4 sentence synthesis of what happened")
    highlights: list[str] = Field(
        description="1-4 concrete highlights, each a single sentence",
        min_length=1,
        max_length=4,
    )
    source_urls: list[str] = Field(
        default_factory=list,
        description="URLs of the posts this section draws on, only from the provided posts",
    )


class DigestSynthesis(BaseModel):
    """
    Structured output schema for digest synthesis.

    Used with OpenAI's response_format for guaranteed schema compliance.
    """

    subject: str = Field(description="Email subject line, max 80 characters", max_length=200)
    intro: str = Field(description="One or two sentence opener for the reader")
    sections: list[DigestSection] = Field(
        description="3-6 sections ordered by importance to the reader",
        min_length=1,
        max_length=8,
    )


class PostInput(BaseModel):
    """A source post formatted for the LLM prompt."""

    handle: str
    content: str
    url: str | None = None
    posted_at: str
    engagement: int = 0


class SynthesisResult(BaseModel):
    """Result of synthesis including token usage."""

    output: DigestSynthesis
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
