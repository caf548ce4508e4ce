"""Generate-and-send pipeline for one user's digest.

Runs in two phases. `generate` loads recent posts from the sources a user
follows, synthesizes them with the LLM and archives the result as a
Newsletter. `deliver` emails the archived digest. The scheduler bounds the
first phase with a timeout; once `deliver` starts, the email may already be
with the provider, so it is always allowed to finish.

From the scheduler's point of view each phase either succeeds or raises a
PipelineFailure. The pipeline never writes the send marker itself.
"""

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from openai import AsyncOpenAI
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from junto.config import DigestConfig, get_config
from junto.core.datetime_utils import get_cutoff, utc_now
from junto.core.exceptions import NoContentError, PipelineFailure, SynthesisError
from junto.core.logging import get_logger
from junto.models.newsletter import Newsletter
from junto.models.source import SourcePost, UserSource
from junto.models.user import User
from junto.pipeline.synthesizer import create_client, synthesize_digest
from junto.scheduling.evaluator import UserSchedule
from junto.schemas.llm import DigestSynthesis
from junto.services.email_service import send_digest_email

logger = get_logger(__name__)


@dataclass
class PreparedDigest:
    """A synthesized and archived digest, ready to email."""

    user_id: str
    email: str
    name: str | None
    digest: DigestSynthesis
    digest_date: str
    post_count: int
    newsletter_id: str


@dataclass
class SendReceipt:
    """Confirmation that a digest was accepted for delivery."""

    success: bool
    send_id: str | None = None
    newsletter_id: str | None = None


class DigestSender(Protocol):
    """Anything that can generate and deliver one user's digest."""

    async def generate(self, user: UserSchedule, local_date: date) -> PreparedDigest:
        """Build the digest for `local_date`. Raises PipelineFailure."""
        ...

    async def deliver(self, prepared: PreparedDigest) -> SendReceipt:
        """Send a prepared digest. Raises PipelineFailure."""
        ...


class DigestPipeline:
    """Default DigestSender backed by the database, OpenAI and Resend."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: AsyncOpenAI | None = None,
        config: DigestConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._config = config or get_config().digest

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = create_client()
        if self._client is None:
            raise SynthesisError("OPENAI_API_KEY is not configured")
        return self._client

    async def _load_user(self, session: AsyncSession, user_id: str) -> User:
        user = await session.get(User, uuid.UUID(user_id))
        if user is None:
            raise PipelineFailure(f"User {user_id} no longer exists")
        return user

    async def _load_posts(self, session: AsyncSession, user: User) -> list[SourcePost]:
        handles = select(UserSource.handle).where(UserSource.user_id == user.id)
        result = await session.execute(
            select(SourcePost)
            .where(
                SourcePost.handle.in_(handles),
                SourcePost.posted_at >= get_cutoff(hours=self._config.recent_hours),
            )
            .order_by(SourcePost.posted_at.desc())
            .limit(self._config.max_posts)
        )
        return list(result.scalars().all())

    async def generate(self, user: UserSchedule, local_date: date) -> PreparedDigest:
        try:
            return await self._generate(user, local_date)
        except SQLAlchemyError as e:
            logger.bind(user_id=user.user_id, error=str(e)).error("digest_pipeline_storage_error")
            raise PipelineFailure(f"Storage error: {e}") from e

    async def _generate(self, user: UserSchedule, local_date: date) -> PreparedDigest:
        log = logger.bind(user_id=user.user_id, email=user.email)
        digest_date = local_date.isoformat()

        async with self._session_factory() as session:
            db_user = await self._load_user(session, user.user_id)
            posts = await self._load_posts(session, db_user)

            if not posts:
                log.bind(recent_hours=self._config.recent_hours).info("digest_no_content")
                raise NoContentError(
                    f"No posts in the last {self._config.recent_hours}h from followed sources"
                )

            result = await synthesize_digest(
                posts,
                client=self._get_client(),
                keywords=db_user.keywords or None,
                custom_prompt=db_user.custom_prompt,
            )
            if result is None:
                raise SynthesisError("LLM returned no digest")

            digest = result.output
            oldest = min(p.posted_at for p in posts)
            newest = max(p.posted_at for p in posts)

            newsletter = Newsletter(
                user_id=db_user.id,
                subject=digest.subject,
                content=digest.model_dump_json(),
                post_count=len(posts),
                date_range=f"{oldest:%Y-%m-%d %H:%M} - {newest:%Y-%m-%d %H:%M}",
                model_used=result.model,
                prompt_version=self._config.prompt_version,
                input_tokens=result.prompt_tokens,
                output_tokens=result.completion_tokens,
                metadata_json={
                    "digest_date": digest_date,
                    "handles": sorted({p.handle for p in posts}),
                    "keywords": db_user.keywords or [],
                },
            )
            session.add(newsletter)
            await session.commit()

        log.bind(
            newsletter_id=str(newsletter.id),
            post_count=len(posts),
            total_tokens=result.total_tokens,
        ).info("digest_generated")

        return PreparedDigest(
            user_id=user.user_id,
            email=user.email,
            name=db_user.name,
            digest=digest,
            digest_date=digest_date,
            post_count=len(posts),
            newsletter_id=str(newsletter.id),
        )

    async def deliver(self, prepared: PreparedDigest) -> SendReceipt:
        try:
            email_id = await send_digest_email(
                email=prepared.email,
                digest=prepared.digest,
                digest_date=prepared.digest_date,
                post_count=prepared.post_count,
                name=prepared.name,
            )
        except PipelineFailure:
            await self._update_archive(prepared, send_failed=True)
            raise

        # Email already accepted; archive update failures do not fail the send
        await self._update_archive(prepared, email_id=email_id)

        logger.bind(
            user_id=prepared.user_id,
            email_id=email_id,
            digest_date=prepared.digest_date,
        ).info("digest_pipeline_complete")

        return SendReceipt(success=True, send_id=email_id, newsletter_id=prepared.newsletter_id)

    async def _update_archive(
        self,
        prepared: PreparedDigest,
        email_id: str | None = None,
        send_failed: bool = False,
    ) -> None:
        """Stamp delivery details on the archived newsletter. Best-effort."""
        try:
            async with self._session_factory() as session:
                newsletter = await session.get(Newsletter, uuid.UUID(prepared.newsletter_id))
                if newsletter is None:
                    return
                if send_failed:
                    newsletter.metadata_json = {**newsletter.metadata_json, "send_failed": True}
                else:
                    newsletter.sent_at = utc_now()
                    newsletter.sent_to = prepared.email
                    newsletter.email_id = email_id
                await session.commit()
        except SQLAlchemyError as e:
            logger.bind(
                newsletter_id=prepared.newsletter_id,
                email_id=email_id,
                error=str(e),
            ).error("newsletter_update_failed")
