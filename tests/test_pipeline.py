import asyncio
import threading
import unittest
from unittest.mock import patch

from repo_case import GitRepoTestCase, taiga_body

from taiga_updates.errors import CommitError, PushError, WriteError
from taiga_updates.models import CommitOutcome, PipelineStage
from taiga_updates.pipeline import Pipeline, PipelineWorker
from taiga_updates.render import TemplateRenderer


class PipelineTests(GitRepoTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.worker = PipelineWorker(self.repo, "origin")
        self.pipeline = Pipeline(
            TemplateRenderer.from_string("{{Title}} {{WatchedEps}}/{{TotalEps}}\n"),
            self.worker,
        )

    def tearDown(self) -> None:
        self.worker.close(timeout=30)
        super().tearDown()

    def test_run_writes_commits_and_launches_push(self) -> None:
        result = asyncio.run(self.pipeline.run(taiga_body(total_eps=12, watched_eps=5)))
        self.assertEqual(result.stage, PipelineStage.PUSH_LAUNCHED)
        self.assertEqual(result.commit, CommitOutcome.CHANGED)
        self.assertEqual(result.commit_sha, self.head())
        expected = "Frieren: Beyond Journey's End 5/12\n"
        self.assertEqual(self.target.read_text(encoding="utf-8"), expected)
        self.assertEqual(self.show_target("HEAD"), expected)
        self.assertEqual(result.push.wait(timeout=30), 0)
        self.assertEqual(self.head(cwd=self.remote_dir), self.head())

    def test_repeated_update_is_noop_and_still_pushes(self) -> None:
        asyncio.run(self.pipeline.run(taiga_body()))
        first = self.head()
        result = asyncio.run(self.pipeline.run(taiga_body()))
        self.assertEqual(result.commit, CommitOutcome.NOOP)
        self.assertEqual(result.stage, PipelineStage.PUSH_LAUNCHED)
        self.assertIsNotNone(result.push)
        self.assertEqual(self.head(), first)
        result.push.wait(timeout=30)

    def test_concurrent_updates_commit_sequentially(self) -> None:
        count = 8
        bodies = [taiga_body(title=f"Show%20{i}", watched_eps=i) for i in range(count)]
        expected = {f"Show {i} {i}/28\n" for i in range(count)}

        async def fire() -> list:
            return await asyncio.gather(*(self.pipeline.run(body) for body in bodies))

        results = asyncio.run(fire())
        for result in results:
            if result.push is not None:
                result.push.wait(timeout=30)

        commits = self.bot_commits()
        self.assertGreaterEqual(len(commits), 1)
        self.assertLessEqual(len(commits), count)
        contents = [self.show_target(sha) for sha in commits]
        self.assertEqual(len(set(contents)), len(contents))
        for content in contents:
            self.assertIn(content, expected)
        self.assertEqual(self.target.read_text(encoding="utf-8"), self.show_target("HEAD"))
        # Each parent is the previous bot commit, so history is strictly linear.
        for sha in commits:
            parents = self.run_git("show", "-s", "--format=%P", sha).split()
            self.assertEqual(len(parents), 1)

    def test_worker_never_overlaps_jobs(self) -> None:
        active = 0
        overlaps: list[int] = []
        guard = threading.Lock()
        original = self.repo.commit_target

        def tracking_commit():
            nonlocal active
            with guard:
                active += 1
                overlaps.append(active)
            try:
                return original()
            finally:
                with guard:
                    active -= 1

        with patch.object(self.repo, "commit_target", side_effect=tracking_commit):
            futures = [self.worker.submit(f"text {i}\n") for i in range(6)]
            for future in futures:
                future.result(timeout=60)
        self.assertEqual(max(overlaps), 1)
        for future in futures:
            future.result().push.wait(timeout=30)

    def test_write_error_stops_before_commit(self) -> None:
        before = self.head()
        with patch.object(self.repo, "write_target", side_effect=WriteError("disk full")):
            with patch.object(self.repo, "push") as push:
                with self.assertRaises(WriteError):
                    asyncio.run(self.pipeline.run(taiga_body()))
        push.assert_not_called()
        self.assertEqual(self.head(), before)

    def test_commit_error_skips_push(self) -> None:
        with patch.object(self.repo, "commit_target", side_effect=CommitError("locked", "index.lock exists")):
            with patch.object(self.repo, "push") as push:
                with self.assertRaises(CommitError):
                    asyncio.run(self.pipeline.run(taiga_body()))
        push.assert_not_called()

    def test_push_launch_failure_is_not_reported(self) -> None:
        with patch.object(self.repo, "push", side_effect=PushError("no git")):
            with self.assertLogs("taiga_updates.pipeline", level="ERROR"):
                result = asyncio.run(self.pipeline.run(taiga_body()))
        self.assertEqual(result.stage, PipelineStage.COMMITTED)
        self.assertEqual(result.commit, CommitOutcome.CHANGED)
        self.assertIsNone(result.push)

    def test_close_finishes_queued_jobs_and_rejects_new_ones(self) -> None:
        worker = PipelineWorker(self.repo, "origin")
        futures = [worker.submit(f"queued {i}\n") for i in range(3)]
        worker.close(timeout=60)
        for future in futures:
            self.assertTrue(future.done())
            future.result().push.wait(timeout=30)
        self.assertEqual(self.target.read_text(encoding="utf-8"), "queued 2\n")
        with self.assertRaises(RuntimeError):
            worker.submit("late\n")

    def test_close_before_start_runs_queued_jobs(self) -> None:
        worker = PipelineWorker(self.repo, "origin")
        with patch.object(worker, "start"):
            future = worker.submit("never started\n")
        worker.close()
        self.assertEqual(future.result().commit, CommitOutcome.CHANGED)
        future.result().push.wait(timeout=30)


if __name__ == "__main__":
    unittest.main()
