import asyncio
from pathlib import Path

import resend
from jinja2 import Environment, FileSystemLoader, TemplateError

from junto.config import get_settings
from junto.core.exceptions import EmailSendError
from junto.core.logging import get_logger
from junto.schemas.llm import DigestSynthesis

logger = get_logger(__name__)

# Initialize Jinja2 environment for email templates
template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)
text_env = Environment(loader=FileSystemLoader(template_dir), autoescape=False)


def _init_resend() -> None:
    """Initialize Resend API with API key."""
    settings = get_settings()
    if settings.resend_api_key:
        resend.api_key = settings.resend_api_key


def render_digest(
    digest: DigestSynthesis,
    digest_date: str,
    post_count: int,
    name: str | None = None,
) -> tuple[str, str]:
    """
    Render the digest email bodies.

    Returns:
        (html, text) pair

    Raises:
        EmailSendError: If a template fails to render
    """
    settings = get_settings()
    context = {
        "digest": digest,
        "digest_date": digest_date,
        "post_count": post_count,
        "name": name,
        "settings_url": f"{settings.base_url}/settings",
    }
    try:
        html = jinja_env.get_template("daily_digest.html").render(**context)
        text = text_env.get_template("daily_digest.txt").render(**context)
    except TemplateError as e:
        logger.bind(error=str(e)).error("template_error")
        raise EmailSendError(f"Template error: {e}") from e
    return html, text


async def send_digest_email(
    email: str,
    digest: DigestSynthesis,
    digest_date: str,
    post_count: int,
    name: str | None = None,
) -> str:
    """
    Send a digest email through Resend.

    The Resend SDK is blocking, so the call runs in a worker thread.

    Args:
        email: Recipient email address
        digest: Synthesized digest content
        digest_date: Local date the digest is for (YYYY-MM-DD)
        post_count: Number of posts the digest was built from
        name: Optional recipient name for the greeting

    Returns:
        Resend email id

    Raises:
        EmailSendError: If Resend is not configured or rejects the message
    """
    _init_resend()
    settings = get_settings()

    if not settings.resend_api_key:
        logger.bind(email=email).warning("resend_api_key_not_set")
        raise EmailSendError("RESEND_API_KEY is not configured")

    html, text = render_digest(digest, digest_date, post_count, name)

    params: resend.Emails.SendParams = {
        "from": settings.email_from,
        "to": [email],
        "subject": digest.subject,
        "html": html,
        "text": text,
    }

    try:
        response = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        logger.bind(email=email, error=str(e)).error("digest_email_failed")
        raise EmailSendError(f"Resend rejected the message: {e}") from e

    email_id = response.get("id") if isinstance(response, dict) else None
    if not email_id:
        logger.bind(email=email, response=str(response)).error("digest_email_no_id")
        raise EmailSendError("Resend returned no email id")

    logger.bind(email=email, email_id=email_id, digest_date=digest_date).info("digest_email_sent")
    return email_id
