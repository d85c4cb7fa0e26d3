"""
GenerationService — story and short orchestrator.

Story job:
  character_template (optional) → story_script → scene_{i}_image for each
  scene in ascending order → scene_{i}_video for each scene (when requested).
  Every scene stage asks the ledger for admission immediately before its
  vendor call; a denied or failed scene does not stop the others.

Short job:
  script → image_prompts → images (one `video` admission for the whole
  short) → audio → captions (optional) → compose. A failed required stage
  ends the job in `failed` and leaves every later stage `pending`.

Stage failures are recorded on their StageResult and never escape the
orchestrator. Two things abort a whole job: the ledger being unreachable
(fail closed) and cancellation.
"""

import time
import uuid
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .. import metrics
from ..errors import (
    Cancelled,
    GenerationError,
    InvalidInput,
    LimitReached,
    MissingDependency,
    StorageUnavailable,
)
from ..ledger import ContentKind, UsageLedger
from ..polling import CancellationToken
from .audio import AudioInput, AudioSynthesisStage
from .base import PipelineStage
from .captions import CaptionsStage
from .compose import ComposeInput, ComposeStage
from .images import ImageInput, ImageSynthesisStage, StockImagesInput, StockImagesStage
from .models import (
    AUDIO,
    CAPTIONS,
    CHARACTER_TEMPLATE,
    COMPOSE,
    IMAGE_PROMPTS,
    IMAGES,
    SHORT_SCRIPT,
    STORY_SCRIPT,
    JobKind,
    JobStatus,
    PipelineJob,
    ShortRequest,
    StageResult,
    StageStatus,
    StoryRequest,
    StoryScene,
    scene_image_stage,
    scene_video_stage,
    utc_now,
)
from .script import (
    CharacterTemplateStage,
    ImagePromptsInput,
    ImagePromptsStage,
    ShortScriptStage,
    StoryInput,
    StoryScriptStage,
)
from .storage import ArtifactKind, BaseArtifactStore
from .video import VideoInput, VideoSynthesisStage

logger = logging.getLogger(__name__)


def default_stages(store: BaseArtifactStore) -> dict[str, PipelineStage]:
    return {
        "character_template": CharacterTemplateStage(),
        "story_script": StoryScriptStage(),
        "image": ImageSynthesisStage(store),
        "video": VideoSynthesisStage(),
        "short_script": ShortScriptStage(),
        "image_prompts": ImagePromptsStage(),
        "images": StockImagesStage(store),
        "audio": AudioSynthesisStage(store),
        "captions": CaptionsStage(),
        "compose": ComposeStage(),
    }


class JobAborted(Exception):
    """Raised inside a run when the whole job must stop."""

    def __init__(self, error: GenerationError):
        super().__init__(error.message)
        self.error = error


class GenerationService:
    """
    Usage:
        service = GenerationService(ledger, artifact_store)
        job = service.create_story_job(StoryRequest(...))
        service.start(job.job_id)          # background
        # or
        job = await service.run_job(job.job_id)
    """

    def __init__(
        self,
        ledger: UsageLedger,
        store: BaseArtifactStore,
        stages: Optional[dict[str, PipelineStage]] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.stages = default_stages(store)
        if stages:
            self.stages.update(stages)

        self._jobs: dict[str, PipelineJob] = {}
        self._requests: dict[str, Any] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: set[asyncio.Task] = set()

    # ── Job registry ─────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Optional[PipelineJob]:
        return self._jobs.get(job_id)

    def _require_job(self, job_id: str) -> PipelineJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def _register(self, job: PipelineJob, request) -> PipelineJob:
        self._jobs[job.job_id] = job
        self._requests[job.job_id] = request
        self._tokens[job.job_id] = CancellationToken()
        logger.info(f"[{job.job_id}] created {job.kind.value} job for {job.identity_id}")
        return job

    def create_story_job(self, request: StoryRequest) -> PipelineJob:
        job = PipelineJob(
            job_id=str(uuid.uuid4()),
            kind=JobKind.STORY,
            identity_id=request.identity_id,
            is_anonymous=request.is_anonymous,
            is_public=request.is_public,
            stages=[
                StageResult(stage_name=CHARACTER_TEMPLATE, optional=True),
                StageResult(stage_name=STORY_SCRIPT),
            ],
        )
        return self._register(job, request)

    def create_short_job(self, request: ShortRequest) -> PipelineJob:
        stages = [
            StageResult(stage_name=SHORT_SCRIPT),
            StageResult(stage_name=IMAGE_PROMPTS),
            StageResult(stage_name=IMAGES),
            StageResult(stage_name=AUDIO),
        ]
        if request.include_captions:
            stages.append(StageResult(stage_name=CAPTIONS, optional=True))
        stages.append(StageResult(stage_name=COMPOSE))

        job = PipelineJob(
            job_id=str(uuid.uuid4()),
            kind=JobKind.SHORT,
            identity_id=request.identity_id,
            is_anonymous=request.is_anonymous,
            is_public=request.is_public,
            stages=stages,
        )
        return self._register(job, request)

    # ── Running ──────────────────────────────────────────────────────────

    def start(self, job_id: str) -> asyncio.Task:
        """Fire-and-forget wrapper for run_job."""
        task = asyncio.create_task(self.run_job(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_job(self, job_id: str) -> PipelineJob:
        job = self._require_job(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidInput(f"Job {job_id} has already been started")

        token = self._tokens[job_id]
        job.status = JobStatus.RUNNING
        job.touch()
        metrics.add_gauge("active_jobs", 1)
        logger.info(f"[{job_id}] running {job.kind.value} job")
        try:
            if job.kind == JobKind.STORY:
                await self._run_story(job, token)
            else:
                await self._run_short(job, token)
        except JobAborted as e:
            self._finish(job, JobStatus.FAILED, e.error)
        except Exception as e:
            logger.error(f"Pipeline failed for job {job_id}: {e}", exc_info=True)
            self._finish(job, JobStatus.FAILED, GenerationError(str(e)))
        finally:
            metrics.add_gauge("active_jobs", -1)
        return job

    def cancel(self, job_id: str) -> PipelineJob:
        job = self._require_job(job_id)
        if job.is_terminal and job.current_stage is None:
            logger.info(f"[{job_id}] cancel ignored, job already {job.status.value}")
            return job
        self._tokens[job_id].cancel()
        logger.info(f"[{job_id}] cancellation requested")
        return job

    # ── Stage execution ──────────────────────────────────────────────────

    async def _attempt(
        self,
        job: PipelineJob,
        result: StageResult,
        stage: PipelineStage,
        work: Callable[[], Awaitable[Any]],
        token: CancellationToken,
        admit: Optional[ContentKind] = None,
    ) -> Any:
        """
        Run one stage attempt and record its outcome on `result`.

        Returns the stage output. Raises the recorded GenerationError when
        the stage failed, or JobAborted when the ledger is unreachable or
        the job was cancelled.
        """
        if token.cancelled:
            raise JobAborted(Cancelled("Job was cancelled"))

        result.status = StageStatus.RUNNING
        result.attempted_at = utc_now()
        result.output = None
        result.error_kind = None
        result.error = None
        job.touch()
        logger.info(f"[{job.job_id}] → {result.stage_name} ({job.progress_pct}%)")

        started = time.monotonic()
        try:
            if admit is not None:
                try:
                    admitted = await self.ledger.record_attempt(job.identity_id, admit)
                except StorageUnavailable as e:
                    self._record_failure(job, result, e)
                    raise JobAborted(e) from e
                if not admitted:
                    raise LimitReached(f"{admit.value.capitalize()} generation limit reached for this account")

            output = await work()
            if token.cancelled:
                raise Cancelled("Job was cancelled")
        except Cancelled as e:
            self._record_failure(job, result, e)
            raise JobAborted(e) from e
        except GenerationError as e:
            self._record_failure(job, result, e)
            raise
        except JobAborted:
            raise
        except Exception as e:
            logger.error(f"[{job.job_id}] {result.stage_name} crashed: {e}", exc_info=True)
            error = GenerationError(f"Unexpected error in {result.stage_name}: {e}")
            self._record_failure(job, result, error)
            raise error from e

        result.status = StageStatus.SUCCEEDED
        result.output = output
        job.touch()
        metrics.inc_counter(f"stages.succeeded.{stage.name}")
        metrics.record_latency(stage.name, (time.monotonic() - started) * 1000)
        logger.info(f"[{job.job_id}] ✓ {result.stage_name}")
        return output

    def _record_failure(self, job: PipelineJob, result: StageResult, error: GenerationError):
        result.status = StageStatus.FAILED
        result.error_kind = error.kind
        result.error = error.message
        job.touch()
        metrics.inc_counter(f"stages.failed.{error.kind}")
        metrics.record_error(result.stage_name, error.kind, error.message, job.job_id)
        logger.warning(f"[{job.job_id}] ✗ {result.stage_name}: {error.kind}: {error.message}")

    def _finish(
        self,
        job: PipelineJob,
        status: JobStatus,
        error: Optional[GenerationError] = None,
        previous: Optional[JobStatus] = None,
    ):
        job.status = status
        job.error_kind = error.kind if error else None
        job.error = error.message if error else None
        job.touch()
        if status != previous:
            metrics.inc_counter(f"jobs.{status.value}")
        logger.info(f"[{job.job_id}] {job.kind.value} job {status.value}" + (f": {job.error}" if job.error else ""))

    @staticmethod
    def _owner(job: PipelineJob) -> Optional[str]:
        return None if job.is_anonymous else job.identity_id

    # ── Story ────────────────────────────────────────────────────────────

    async def _run_story(self, job: PipelineJob, token: CancellationToken):
        request: StoryRequest = self._requests[job.job_id]

        character_result = job.stage(CHARACTER_TEMPLATE)
        if request.character is not None:
            job.character = request.character
            character_result.status = StageStatus.SUCCEEDED
            character_result.output = "supplied"
        else:
            stage = self.stages["character_template"]
            try:
                job.character = await self._attempt(
                    job, character_result, stage,
                    lambda: stage.execute(request.prompt, token), token,
                )
            except GenerationError:
                logger.info(f"[{job.job_id}] continuing without a character template")

        stage = self.stages["story_script"]
        story_input = StoryInput(
            prompt=request.prompt,
            num_scenes=request.num_scenes,
            image_style=request.image_style,
            character=job.character,
        )
        try:
            drafts = await self._attempt(
                job, job.stage(STORY_SCRIPT), stage,
                lambda: stage.execute(story_input, token), token,
            )
        except GenerationError as e:
            self._finish(job, JobStatus.FAILED, e)
            return

        job.scenes = [
            StoryScene(scene_index=i, narrative_text=d["text"], image_prompt=d["image_prompt"])
            for i, d in enumerate(drafts[:request.num_scenes])
        ]
        for scene in job.scenes:
            job.stages.append(StageResult(stage_name=scene_image_stage(scene.scene_index), scene_index=scene.scene_index))
        if request.generate_videos:
            for scene in job.scenes:
                job.stages.append(StageResult(stage_name=scene_video_stage(scene.scene_index), scene_index=scene.scene_index))

        for scene in job.scenes:
            await self._scene_image(job, scene, token)
        if request.generate_videos:
            for scene in job.scenes:
                await self._scene_video(job, scene, token)

        self._finalize_story(job)

    async def _scene_image(self, job: PipelineJob, scene: StoryScene, token: CancellationToken):
        stage = self.stages["image"]
        result = job.stage(scene_image_stage(scene.scene_index))

        async def work():
            url = await stage.execute(ImageInput(prompt=scene.image_prompt, user_id=self._owner(job)), token)
            await self.store.persist(
                self._owner(job), ArtifactKind.IMAGE, url,
                prompt=scene.image_prompt,
                is_public=job.is_public,
                metadata={"job_id": job.job_id, "scene_index": scene.scene_index},
            )
            return url

        try:
            scene.image_url = await self._attempt(job, result, stage, work, token, admit=ContentKind.IMAGE)
        except GenerationError:
            pass  # recorded on the stage; the other scenes carry on

    async def _scene_video(self, job: PipelineJob, scene: StoryScene, token: CancellationToken):
        stage = self.stages["video"]
        result = job.stage(scene_video_stage(scene.scene_index))

        if not scene.image_url:
            self._record_failure(job, result, MissingDependency(
                f"Scene {scene.scene_index + 1} has no image yet; generate the image first"
            ))
            return

        async def work():
            url = await stage.execute(VideoInput(image_url=scene.image_url, prompt=scene.narrative_text), token)
            await self.store.persist(
                self._owner(job), ArtifactKind.VIDEO, url,
                prompt=scene.image_prompt,
                is_public=job.is_public,
                metadata={"job_id": job.job_id, "scene_index": scene.scene_index, "source_image": scene.image_url},
            )
            return url

        try:
            scene.video_url = await self._attempt(job, result, stage, work, token, admit=ContentKind.VIDEO)
        except GenerationError:
            pass

    def _finalize_story(self, job: PipelineJob, previous: Optional[JobStatus] = None):
        scene_stages = [s for s in job.stages if s.scene_index is not None]
        failed = [s for s in scene_stages if s.status == StageStatus.FAILED]
        succeeded = [s for s in scene_stages if s.status == StageStatus.SUCCEEDED]

        if scene_stages and len(succeeded) == len(scene_stages):
            self._finish(job, JobStatus.COMPLETE, previous=previous)
            return

        error = GenerationError(
            f"{len(failed)} of {len(scene_stages)} scene stages failed: "
            + ", ".join(f"{s.stage_name} ({s.error_kind})" for s in failed)
        )
        error.kind = failed[0].error_kind if failed else error.kind
        self._finish(job, JobStatus.PARTIAL if succeeded else JobStatus.FAILED, error, previous)

    # ── Re-trigger ───────────────────────────────────────────────────────

    def _retrigger_target(self, job_id: str, scene_index: int, stage_name: str) -> tuple[PipelineJob, StoryScene]:
        job = self._require_job(job_id)
        if job.kind != JobKind.STORY:
            raise InvalidInput("Only story jobs have scenes")
        if not job.is_terminal:
            raise InvalidInput(f"Job {job_id} is still {job.status.value}")
        if not 0 <= scene_index < len(job.scenes):
            raise InvalidInput(f"Scene {scene_index} does not exist (job has {len(job.scenes)} scenes)")
        if job.has_stage(stage_name) and job.stage(stage_name).status != StageStatus.FAILED:
            raise InvalidInput(f"{stage_name} is {job.stage(stage_name).status.value}; only failed stages can be re-run")
        return job, job.scenes[scene_index]

    async def _retrigger(self, job: PipelineJob, run: Callable[[CancellationToken], Awaitable[None]]):
        """Re-run one scene stage with the job back in `running` until it settles."""
        previous = job.status
        token = CancellationToken()
        self._tokens[job.job_id] = token
        job.status = JobStatus.RUNNING
        job.touch()
        metrics.add_gauge("active_jobs", 1)
        logger.info(f"[{job.job_id}] re-running a scene stage (was {previous.value})")
        try:
            await run(token)
        except JobAborted as e:
            raise e.error
        finally:
            metrics.add_gauge("active_jobs", -1)
            self._finalize_story(job, previous)

    async def generate_scene_image(self, job_id: str, scene_index: int) -> PipelineJob:
        """Re-run one scene's failed image stage."""
        name = scene_image_stage(scene_index)
        job, scene = self._retrigger_target(job_id, scene_index, name)
        await self._retrigger(job, lambda token: self._scene_image(job, scene, token))
        return job

    async def generate_scene_video(self, job_id: str, scene_index: int) -> PipelineJob:
        """Generate (or re-run) one scene's video."""
        name = scene_video_stage(scene_index)
        job, scene = self._retrigger_target(job_id, scene_index, name)
        if not job.has_stage(name):
            job.stages.append(StageResult(stage_name=name, scene_index=scene_index))
        await self._retrigger(job, lambda token: self._scene_video(job, scene, token))
        return job

    # ── Short ────────────────────────────────────────────────────────────

    async def _run_short(self, job: PipelineJob, token: CancellationToken):
        request: ShortRequest = self._requests[job.job_id]
        owner = self._owner(job)

        try:
            stage = self.stages["short_script"]
            script = await self._attempt(
                job, job.stage(SHORT_SCRIPT), stage,
                lambda: stage.execute(request.topic, token), token,
            )

            stage = self.stages["image_prompts"]
            prompts = await self._attempt(
                job, job.stage(IMAGE_PROMPTS), stage,
                lambda: stage.execute(ImagePromptsInput(script=script.script, count=request.image_count), token),
                token,
            )

            stage = self.stages["images"]
            image_urls = await self._attempt(
                job, job.stage(IMAGES), stage,
                lambda: stage.execute(StockImagesInput(prompts=prompts, user_id=owner), token),
                token,
                admit=ContentKind.VIDEO,
            )

            stage = self.stages["audio"]
            audio_url = await self._attempt(
                job, job.stage(AUDIO), stage,
                lambda: stage.execute(AudioInput(script=script.script, voice=request.voice, user_id=owner), token),
                token,
            )

            captions_text = None
            if request.include_captions:
                stage = self.stages["captions"]
                try:
                    captions_text = await self._attempt(
                        job, job.stage(CAPTIONS), stage,
                        lambda: stage.execute(audio_url, token), token,
                    )
                except GenerationError:
                    logger.info(f"[{job.job_id}] continuing without captions")

            stage = self.stages["compose"]
            compose_input = ComposeInput(
                script=script,
                audio_url=audio_url,
                image_urls=image_urls,
                captions_text=captions_text,
                is_public=job.is_public,
            )

            async def compose():
                short = await stage.execute(compose_input, token)
                await self.store.persist(
                    owner, ArtifactKind.VIDEO, short.video_url,
                    prompt=request.topic,
                    is_public=job.is_public,
                    metadata={
                        "job_id": job.job_id,
                        "title": short.title,
                        "description": short.description,
                        "script": short.script,
                        "audio_url": short.audio_url,
                        "image_urls": short.image_urls,
                        "captions": short.captions_text,
                        "thumbnail_url": short.thumbnail_url,
                    },
                )
                return short

            job.short = await self._attempt(job, job.stage(COMPOSE), stage, compose, token)
        except GenerationError as e:
            self._finish(job, JobStatus.FAILED, e)
            return

        self._finish(job, JobStatus.COMPLETE)
