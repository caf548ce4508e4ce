from junto.schemas.llm import DigestSection, DigestSynthesis, PostInput, SynthesisResult

__all__ = [
    "DigestSection",
    "DigestSynthesis",
    "PostInput",
    "SynthesisResult",
]
