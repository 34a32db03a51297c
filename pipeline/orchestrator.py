"""
Pipeline orchestrator - coordinates one digest run.

Stages:
1. Subscribers → 2. Stories → 3. Select + Render → 4. Deliver
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
import structlog

from config import AppConfig
from connectors.base import BaseConnector, SourceError, Story
from delivery.mailer import DeliveryResult, DeliveryStatus, MailDeliveryClient, OutgoingMessage
from delivery.session import SessionError
from digest.renderer import DigestRenderer, TemplateError, unsubscribe_link
from digest.selector import select_digest
from storage.base import BaseStorage, StorageError, Subscriber

logger = structlog.get_logger()

# Errors that end the run; anything per-recipient lands in the results instead
FATAL_ERRORS = (StorageError, SourceError, TemplateError, SessionError)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunReport:
    """Outcome of one pipeline run."""

    success: bool = True
    error: Optional[str] = None
    subscribers: int = 0
    stories: int = 0
    results: List[DeliveryResult] = field(default_factory=list)
    metrics: dict = field(default_factory=dict)

    def _count(self, status: DeliveryStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def sent(self) -> int:
        return self._count(DeliveryStatus.SENT)

    @property
    def failed(self) -> int:
        return self._count(DeliveryStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(DeliveryStatus.SKIPPED)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "error": self.error,
            "subscribers": self.subscribers,
            "stories": self.stories,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
            "metrics": self.metrics,
        }


class DigestPipeline:
    """
    Runs the digest pipeline once.

    Features:
    - One story fetch sized to the largest subscriber count
    - Template validated before any mail is sent
    - Mail session opened lazily, only when there is something to send
    - Per-recipient failures isolated from the rest of the batch
    """

    def __init__(
        self,
        config: AppConfig,
        storage: BaseStorage,
        source: BaseConnector,
        template: str,
        mailer: MailDeliveryClient
    ):
        """
        Args:
            config: Full application configuration
            storage: Subscriber store (opened and closed by the pipeline)
            source: Story source connector
            template: Message template text
            mailer: Delivery client for the batch
        """
        self.config = config
        self.storage = storage
        self.source = source
        self.template = template
        self.mailer = mailer

    async def run(self) -> RunReport:
        """
        Run the pipeline from subscriber lookup to delivery.

        Returns:
            RunReport; `success` is False only when a fatal error stopped the run
        """
        started_at = _now()
        report = RunReport(metrics={"started_at": started_at.isoformat(), "stages": {}})
        stages = report.metrics["stages"]
        stage = "subscribers"
        subscribers: List[Subscriber] = []

        logger.info("pipeline_starting")

        try:
            # Stage 1: Subscribers
            stage_start = _now()
            subscribers = await self._load_subscribers()
            report.subscribers = len(subscribers)
            stages["subscribers"] = {
                "duration_seconds": (_now() - stage_start).total_seconds(),
                "subscribers": len(subscribers),
            }

            if not subscribers:
                logger.info("no_subscribers")
                return self._finalize(report, started_at)

            # Stage 2: Stories
            stage = "stories"
            stage_start = _now()
            limit = max(s.count for s in subscribers)
            stories = await self.source.fetch_top_stories(limit) if limit > 0 else []
            report.stories = len(stories)
            stages["stories"] = {
                "duration_seconds": (_now() - stage_start).total_seconds(),
                "requested": limit,
                "fetched": len(stories),
            }

            if not stories:
                logger.warning("no_stories_available", limit=limit)

            # Stage 3: Select + Render
            stage = "render"
            stage_start = _now()
            outgoing, skipped = self._compose_all(subscribers, stories)
            report.results.extend(skipped)
            stages["render"] = {
                "duration_seconds": (_now() - stage_start).total_seconds(),
                "rendered": len(outgoing),
                "skipped": len(skipped),
            }

            # Stage 4: Deliver
            stage = "deliver"
            stage_start = _now()
            if outgoing:
                loop = asyncio.get_running_loop()
                delivered = await loop.run_in_executor(None, self.mailer.deliver, outgoing)
                report.results.extend(delivered)
            stages["deliver"] = {
                "duration_seconds": (_now() - stage_start).total_seconds(),
                "attempted": len(outgoing),
            }

        except FATAL_ERRORS as e:
            logger.error("pipeline_failed", stage=stage, error=str(e))
            report.success = False
            report.error = f"{type(e).__name__}: {e}"

        self._order_results(report, subscribers)
        return self._finalize(report, started_at)

    async def _load_subscribers(self) -> List[Subscriber]:
        """Read all subscribers and release the store before any network work."""
        await self.storage.initialize()
        try:
            return await self.storage.get_subscribers()
        finally:
            await self.storage.close()

    def _compose_all(
        self,
        subscribers: List[Subscriber],
        stories: List[Story]
    ) -> tuple[List[OutgoingMessage], List[DeliveryResult]]:
        digest_config = self.config.digest
        renderer = DigestRenderer(
            self.template,
            digest_config.unsubscribe_url,
            digest_config.story_line
        )

        outgoing = []
        skipped = []
        for subscriber in subscribers:
            digest = select_digest(stories, subscriber.count)
            if not digest and not digest_config.send_empty:
                logger.info("empty_digest_skipped", email=subscriber.email, count=subscriber.count)
                skipped.append(DeliveryResult(
                    subscriber.email, DeliveryStatus.SKIPPED, "Empty digest"
                ))
                continue

            link = unsubscribe_link(digest_config.unsubscribe_url, subscriber.email)
            outgoing.append(OutgoingMessage(
                recipient=subscriber.email,
                subject=digest_config.subject,
                html_body=renderer.render(digest, subscriber.email),
                headers={"List-Unsubscribe": f"<{link}>"},
            ))

        return outgoing, skipped

    def _order_results(self, report: RunReport, subscribers: List[Subscriber]):
        """Report results in subscriber order."""
        position = {s.email: i for i, s in enumerate(subscribers)}
        report.results.sort(key=lambda r: position.get(r.email, len(position)))

    def _finalize(self, report: RunReport, started_at: datetime) -> RunReport:
        completed_at = _now()
        report.metrics["completed_at"] = completed_at.isoformat()
        report.metrics["total_duration_seconds"] = (completed_at - started_at).total_seconds()
        report.metrics["success"] = report.success

        logger.info(
            "pipeline_complete" if report.success else "pipeline_aborted",
            subscribers=report.subscribers,
            stories=report.stories,
            sent=report.sent,
            failed=report.failed,
            skipped=report.skipped,
            duration=report.metrics["total_duration_seconds"]
        )
        return report
