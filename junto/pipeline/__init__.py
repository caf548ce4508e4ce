from junto.pipeline.synthesizer import create_client, synthesize_digest

__all__ = [
    "create_client",
    "synthesize_digest",
]
