"""Generation worker: drives one generate job from submission to variants."""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

from aimm.config import settings
from aimm.errors import (
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
)
from aimm.models.job import DownloadJobData, GenerateJobData, JobStatus, WorkerStep
from aimm.models.provider import (
    ChainSubmitResult,
    GenerateRequest,
    ProviderTaskStatus,
    TaskResult,
)
from aimm.models.track import TrackBatch, TrackStatus
from aimm.providers.base import MusicProvider
from aimm.providers.chain import ProviderChain
from aimm.services.job_manager import JobManager
from aimm.services.queue import JobQueue
from aimm.services.storage import ObjectStorage
from aimm.services.track_manager import TrackManager
from aimm.services.tracing import ScoreData, SpanData, TracingService

# Progress window of the polling phase
POLL_PROGRESS_START = 30
POLL_PROGRESS_END = 80

DEFAULT_TITLE = "Untitled"

# UI voice type -> provider vocal gender; instrumental has no vocals at all
VOICE_GENDERS = {"female": "f", "male": "m"}

# Placeholder evaluation until a real scoring model exists
MOCK_VARIANT_SCORES = {
    "A": {"input_similarity": 0.85, "audio_quality": 0.90},
    "B": {"input_similarity": 0.82, "audio_quality": 0.88},
}
MOCK_DIVERSITY_SCORE = 0.75


def poll_progress(attempts: int, max_attempts: int) -> int:
    """Linear progress between 30 and 80 while polling."""
    span = POLL_PROGRESS_END - POLL_PROGRESS_START
    progress = POLL_PROGRESS_START + int(attempts / max_attempts * span)
    return min(progress, POLL_PROGRESS_END)


def mock_scores() -> List[ScoreData]:
    scores = []
    for label, values in MOCK_VARIANT_SCORES.items():
        scores.append(ScoreData(
            name=f"input_similarity_{label}",
            value=values["input_similarity"],
            comment=f"Mock score for variant {label}",
        ))
    for label, values in MOCK_VARIANT_SCORES.items():
        scores.append(ScoreData(
            name=f"audio_quality_{label}",
            value=values["audio_quality"],
            comment=f"Mock quality score for variant {label}",
        ))
    scores.append(ScoreData(
        name="ab_diversity",
        value=MOCK_DIVERSITY_SCORE,
        comment="Mock diversity between A and B",
    ))
    return scores


class GenerateWorker:
    """Worker for the ``generate`` queue task.

    Job and track move together: running/generating, then
    succeeded/ready or failed/failed. Failures are persisted before the
    exception goes back to the queue so its retry policy can decide.
    """

    def __init__(
        self,
        job_manager: JobManager,
        track_manager: TrackManager,
        provider: Union[MusicProvider, ProviderChain],
        storage: ObjectStorage,
        queue: Optional[JobQueue] = None,
        tracing: Optional[TracingService] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        download_attempts: Optional[int] = None,
        download_backoff: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.job_manager = job_manager
        self.track_manager = track_manager
        self.provider = provider
        self.storage = storage
        self.queue = queue
        self.tracing = tracing or TracingService()
        self.poll_interval = settings.poll_interval if poll_interval is None else poll_interval
        self.max_poll_attempts = max_poll_attempts or settings.poll_max_attempts
        self.download_attempts = download_attempts or settings.download_job_attempts
        self.download_backoff = (
            settings.download_job_backoff if download_backoff is None else download_backoff
        )
        self._sleep = sleep or asyncio.sleep

    # ========== Provider access ==========

    async def _submit(self, request: GenerateRequest) -> ChainSubmitResult:
        if isinstance(self.provider, ProviderChain):
            return await self.provider.submit_generate(request)
        result = await self.provider.submit_generate(request)
        return ChainSubmitResult(task_id=result.task_id, provider=self.provider.name)

    async def _query(self, task_id: str, provider_name: str) -> TaskResult:
        if isinstance(self.provider, ProviderChain):
            return await self.provider.query_task(task_id, provider_name)
        return await self.provider.query_task(task_id)

    async def wait_for_task(self, job_id: str, task_id: str, provider_name: str) -> TaskResult:
        """Poll until the task completes or fails.

        Raises:
            ProviderTimeoutError: when the attempt budget runs out
            ProviderError: when the vendor reports the task failed
        """
        attempts = 0
        result = await self._query(task_id, provider_name)

        while not result.status.is_finished:
            attempts += 1
            if attempts >= self.max_poll_attempts:
                raise ProviderTimeoutError(task_id, attempts)

            self.job_manager.update_progress(
                job_id,
                poll_progress(attempts, self.max_poll_attempts),
                WorkerStep.MUSIC_GENERATE.value,
            )
            logger.debug(
                f"Job {job_id}: task {task_id} is {result.status.value} "
                f"(poll {attempts}/{self.max_poll_attempts})"
            )
            await self._sleep(self.poll_interval)
            result = await self._query(task_id, provider_name)

        if result.status == ProviderTaskStatus.FAILED:
            raise ProviderError(provider_name, result.error or "GEN_PROVIDER_ERROR")

        if not result.variants:
            raise ProviderError(provider_name, f"Task {task_id} completed without variants")

        return result

    # ========== Steps ==========

    def _start_step(self, job_id: str, step: WorkerStep) -> datetime:
        self.job_manager.update_progress(job_id, step.progress, step.value)
        logger.info(f"Job {job_id}: step {step.value}")
        return datetime.now()

    def compose_request(self, data: GenerateJobData, title: Optional[str]) -> GenerateRequest:
        """Build the provider request for a job payload."""
        instrumental = data.voice_type == "instrumental"
        return GenerateRequest(
            audio_url=self.storage.public_url(data.input_asset_key),
            style=data.style,
            lyrics=data.lyrics,
            title=title or DEFAULT_TITLE,
            voice_gender=VOICE_GENDERS.get(data.voice_type) if data.voice_type else None,
            make_instrumental=instrumental,
            exclude_styles=data.exclude_styles,
            segment=data.segment,
            model=data.model,
            style_weight=data.style_weight,
            weirdness_constraint=data.weirdness_constraint,
            audio_weight=data.audio_weight,
        )

    async def _enqueue_downloads(self, batch: TrackBatch) -> int:
        """Queue one download per variant. Enqueue failures never fail the job."""
        if self.queue is None:
            logger.warning(f"No queue configured, downloads for batch {batch.batch_index} skipped")
            return 0

        enqueued = 0
        for variant in batch.variants:
            payload = DownloadJobData(
                variant_id=variant.id,
                source_url=variant.audio_url,
                track_id=variant.track_id,
                variant=variant.variant,
                batch_index=variant.batch_index,
                image_url=variant.image_url,
                image_large_url=variant.image_large_url,
            )
            try:
                await self.queue.add(
                    "download",
                    payload,
                    attempts=self.download_attempts,
                    backoff=self.download_backoff,
                )
                enqueued += 1
            except Exception as e:
                logger.warning(f"Failed to enqueue download for variant {variant.id}: {e}")
        return enqueued

    # ========== Entry point ==========

    async def handle(self, payload: Union[GenerateJobData, Dict[str, Any]]) -> Dict[str, Any]:
        """Run one generate job."""
        data = (
            payload if isinstance(payload, GenerateJobData)
            else GenerateJobData.model_validate(payload)
        )
        job_id, track_id = data.job_id, data.track_id

        job = self.job_manager.get_job(job_id)
        if job is None:
            logger.warning(f"Generate task for unknown job {job_id}, skipping")
            return {"skipped": True}
        if job.status == JobStatus.SUCCEEDED:
            logger.info(f"Job {job_id} already succeeded, skipping duplicate delivery")
            return job.result or {}

        logger.info(f"Starting generate job {job_id} for track {track_id}")
        trace_id = job_id
        self.tracing.create_trace(trace_id, {
            "track_id": track_id,
            "job_id": job_id,
            "audio_source": "upload",
        })

        spans: List[SpanData] = []
        current_step: Optional[WorkerStep] = None

        try:
            self.job_manager.mark_running(job_id)
            track = self.track_manager.update_status(track_id, TrackStatus.GENERATING)

            # audio_check
            current_step = WorkerStep.AUDIO_CHECK
            started = self._start_step(job_id, current_step)
            if not data.input_asset_key:
                raise ValueError("Input audio key is empty")
            spans.append(SpanData(
                name=current_step.value,
                input={"input_asset_key": data.input_asset_key},
                output={"status": "passed"},
                start_time=started,
                end_time=datetime.now(),
            ))

            # compose_params
            current_step = WorkerStep.COMPOSE_PARAMS
            started = self._start_step(job_id, current_step)
            request = self.compose_request(data, track.title)
            spans.append(SpanData(
                name=current_step.value,
                input={
                    "style": data.style,
                    "segment": data.segment.model_dump() if data.segment else None,
                    "voice_type": data.voice_type,
                },
                output={"audio_url": request.audio_url, "title": request.title},
                start_time=started,
                end_time=datetime.now(),
            ))

            # music_generate
            current_step = WorkerStep.MUSIC_GENERATE
            started = self._start_step(job_id, current_step)
            submitted = await self._submit(request)
            logger.info(
                f"Job {job_id}: task {submitted.task_id} submitted to {submitted.provider}"
            )
            result = await self.wait_for_task(job_id, submitted.task_id, submitted.provider)
            spans.append(SpanData(
                name=current_step.value,
                input={"task_id": submitted.task_id, "provider": submitted.provider},
                output={
                    "status": result.status.value,
                    "variant_count": len(result.variants),
                },
                start_time=started,
                end_time=datetime.now(),
            ))

            # ab_eval
            current_step = WorkerStep.AB_EVAL
            started = self._start_step(job_id, current_step)
            batch = self.track_manager.create_batch(
                track_id, result.variants, submitted.provider, scores=MOCK_VARIANT_SCORES,
            )
            enqueued = await self._enqueue_downloads(batch)
            spans.append(SpanData(
                name=current_step.value,
                input={"variants": [v.variant.value for v in batch.variants]},
                output={"batch_index": batch.batch_index, "downloads_enqueued": enqueued},
                start_time=started,
                end_time=datetime.now(),
            ))

            # finalize
            current_step = None
            self.track_manager.update_status(track_id, TrackStatus.READY, style=data.style)
            job_result = {
                "task_id": submitted.task_id,
                "provider": submitted.provider,
                "batch_index": batch.batch_index,
                "variant_count": len(batch.variants),
            }
            self.job_manager.mark_succeeded(job_id, job_result)

        except Exception as e:
            error_msg = str(e) or type(e).__name__
            error_code = (
                ErrorCode.GEN_PROVIDER_TIMEOUT if isinstance(e, ProviderTimeoutError)
                else ErrorCode.GEN_PROVIDER_ERROR
            )
            failed_step = current_step.value if current_step else "unknown"
            logger.error(f"Generate job {job_id} failed at {failed_step}: {error_msg}")

            self._persist_failure(job_id, track_id, error_code, error_msg)

            now = datetime.now()
            spans.append(SpanData(
                name="error",
                input={"step": failed_step},
                output={"error": error_msg, "error_code": error_code.value},
                start_time=now,
                end_time=now,
                level="ERROR",
            ))
            for span in spans:
                self.tracing.create_span(trace_id, span)
            await self.tracing.flush()
            raise

        for span in spans:
            self.tracing.create_span(trace_id, span)
        self.tracing.create_scores(trace_id, mock_scores())
        await self.tracing.flush()

        logger.info(f"Generate job {job_id} completed: batch {batch.batch_index}")
        return job_result

    def _persist_failure(
        self,
        job_id: str,
        track_id: str,
        error_code: ErrorCode,
        error_msg: str,
    ) -> None:
        try:
            self.job_manager.mark_failed(job_id, error_code.value, error_msg)
        except NotFoundError:
            logger.warning(f"Job {job_id} disappeared before it could be marked failed")

        try:
            self.track_manager.update_status(track_id, TrackStatus.FAILED)
        except NotFoundError:
            logger.warning(f"Track {track_id} disappeared before it could be marked failed")
        except InvalidTransitionError as e:
            logger.warning(f"Track {track_id} not marked failed: {e}")
