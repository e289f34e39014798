"""Render supervisor: drives a render job from acceptance to a terminal state."""

from pathlib import Path
from typing import Optional

from loguru import logger

from clipex.models.job import RenderJob
from clipex.models.template import RenderRequest
from clipex.services.job_store import JobStore
from clipex.services.record_reporter import RecordReporter
from clipex.services.source_resolver import SourceResolver
from clipex.workers.composition import plan_composition
from clipex.workers.export import ExportWorker
from clipex.workers.fetch import RemoteFetcher
from clipex.workers.subtitles import DEFAULT_MAX_WORDS


class RenderSupervisor:
    """Owns the render pipeline for each accepted job.

    Pipeline per job: resolve sources -> plan composition -> encode.
    Every exception raised inside a job ends that job as failed; temp files
    downloaded for the job are removed on every path.
    """

    def __init__(
        self,
        store: JobStore,
        fetcher: RemoteFetcher,
        exporter: ExportWorker,
        renders_dir: Path,
        uploads_dir: Optional[Path] = None,
        reporter: Optional[RecordReporter] = None,
        max_words: int = DEFAULT_MAX_WORDS,
        font_file: str = "",
        renders_url_prefix: str = "/renders",
    ):
        self.store = store
        self.fetcher = fetcher
        self.exporter = exporter
        self.renders_dir = Path(renders_dir)
        self.uploads_dir = uploads_dir
        self.reporter = reporter or RecordReporter()
        self.max_words = max_words
        self.font_file = font_file
        self.renders_url_prefix = renders_url_prefix.rstrip("/")

    def submit(self, request: RenderRequest) -> RenderJob:
        """Accept a render request and store it as a pending job."""
        job = self.store.create()
        logger.info(
            f"Accepted render job {job.id}: {request.template.canvas.resolution} "
            f"@ {request.template.canvas.fps}fps, {len(request.template.timeline)} blocks"
        )
        return job

    def output_name(self, job_id: str) -> str:
        return f"render_{job_id}.mp4"

    async def run(self, job_id: str, request: RenderRequest) -> None:
        """Render a submitted job. Never raises."""
        job = self.store.get(job_id)
        if job is None:
            logger.warning(f"Render job {job_id} not found, skipping")
            return

        resolver = SourceResolver(
            fetcher=self.fetcher,
            assets=request.assets,
            placeholders=request.placeholders,
            uploads_dir=self.uploads_dir,
        )
        template = request.template

        try:
            if request.wants_record:
                job.record_id = await self.reporter.create_record(
                    job_id,
                    user_id=request.user_id,
                    template_id=request.template_id,
                    project_id=request.project_id,
                    source=request.source,
                )

            self.store.mark_processing(job_id)
            self.reporter.notify(job.record_id, "processing")
            logger.info(f"Job {job_id}: started")

            resolved = await resolver.resolve_template(template, max_words=self.max_words)
            plan = plan_composition(template, resolved, font_file=self.font_file)

            name = self.output_name(job_id)
            output_path = self.renders_dir / name
            await self.exporter.export(
                plan,
                output_path,
                progress_callback=lambda percent: self.store.report_progress(job_id, percent),
                on_start=lambda: self.store.report_progress(job_id, 1),
            )

            url = f"{self.renders_url_prefix}/{name}"
            job.resolution = template.canvas.resolution
            self.store.mark_completed(job_id, url, str(output_path))
            self.reporter.notify(
                job.record_id,
                "completed",
                output_url=url,
                resolution=job.resolution,
            )
            logger.info(f"Job {job_id}: completed -> {url}")

        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Job {job_id} failed: {error}")
            self.store.mark_failed(job_id, error)
            self.reporter.notify(job.record_id, "failed", error_message=error)

        finally:
            removed = resolver.cleanup()
            if removed:
                logger.debug(f"Job {job_id}: removed {removed} temp files")
