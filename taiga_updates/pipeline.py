from __future__ import annotations

import asyncio
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional

from .errors import PushError
from .models import PipelineStage, PublishResult, TaigaUpdate
from .payload import parse_payload
from .render import TemplateRenderer
from .repo import GitRepository

logger = logging.getLogger("taiga_updates.pipeline")

DEFAULT_REMOTE = "origin"


@dataclass
class PublishJob:
    text: str
    future: "Future[PublishResult]"


class PipelineWorker:
    """Runs write, stage, commit and push launch one job at a time.

    Every mutation of the repository goes through this worker's single thread,
    so concurrent requests never interleave their writes and commits.
    """

    def __init__(self, repo: GitRepository, remote: str = DEFAULT_REMOTE) -> None:
        self.repo = repo
        self.remote = remote
        self._queue: "queue.Queue[Optional[PublishJob]]" = queue.Queue()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def start(self) -> None:
        with self._lock:
            if self._thread is not None or self._closed:
                return
            self._thread = threading.Thread(target=self._loop, name="taiga-publish-worker", daemon=True)
            self._thread.start()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, text: str) -> "Future[PublishResult]":
        future: "Future[PublishResult]" = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("publish worker is shut down")
            self._queue.put(PublishJob(text=text, future=future))
        self.start()
        return future

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs, finish the queued ones and join the thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
            self._queue.put(None)
        if thread is None:
            # Never started: run whatever was queued before close().
            self._drain()
            return
        thread.join(timeout)

    def _drain(self) -> None:
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return
            if job is not None:
                self._process(job)
            self._queue.task_done()

    def _loop(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._process(job)
            finally:
                self._queue.task_done()

    def _process(self, job: PublishJob) -> None:
        if not job.future.set_running_or_notify_cancel():
            return
        try:
            result = self.publish(job.text)
        except Exception as exc:
            job.future.set_exception(exc)
        else:
            job.future.set_result(result)

    def publish(self, text: str) -> PublishResult:
        self.repo.write_target(text)
        result = PublishResult(stage=PipelineStage.WRITTEN)

        result.commit = self.repo.commit_target()
        result.commit_sha = self.repo.head()
        result.stage = PipelineStage.COMMITTED

        # A no-op commit still pushes: an earlier push may have failed.
        try:
            result.push = self.repo.push(self.remote)
        except PushError:
            logger.exception("could not launch push to %s", self.remote)
        else:
            result.stage = PipelineStage.PUSH_LAUNCHED
        return result


class Pipeline:
    def __init__(self, renderer: TemplateRenderer, worker: PipelineWorker) -> None:
        self.renderer = renderer
        self.worker = worker

    def decode(self, body: bytes) -> TaigaUpdate:
        update = parse_payload(body)
        logger.info("update: %s", update)
        return update

    async def run(self, body: bytes) -> PublishResult:
        update = self.decode(body)
        text = self.renderer.render(update)
        result = await asyncio.wrap_future(self.worker.submit(text))
        logger.info(
            "published %s (%s, %s)",
            self.worker.repo.relative_target,
            result.commit.value if result.commit else "-",
            result.stage.value,
        )
        return result

    def close(self, timeout: Optional[float] = None) -> None:
        self.worker.close(timeout)
