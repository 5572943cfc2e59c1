from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Optional

from .errors import CommitError, ConfigError, PushError, WriteError
from .models import CommitOutcome

COMMIT_MESSAGE = "Updated currently watching"
BOT_NAME = "Taiga Anime Updates"
BOT_EMAIL = "@taiga_updates"

logger = logging.getLogger("taiga_updates.git")


def find_git() -> Optional[str]:
    return shutil.which("git")


def is_inside(path: Path, root: Path) -> bool:
    path = path.resolve()
    root = root.resolve()
    return path != root and path.is_relative_to(root)


def _bot_env() -> dict[str, str]:
    env = dict(os.environ)
    env.update(
        {
            "GIT_AUTHOR_NAME": BOT_NAME,
            "GIT_AUTHOR_EMAIL": BOT_EMAIL,
            "GIT_COMMITTER_NAME": BOT_NAME,
            "GIT_COMMITTER_EMAIL": BOT_EMAIL,
            "GIT_TERMINAL_PROMPT": "0",
        }
    )
    return env


@dataclass
class PendingPush:
    """A `git push` that runs detached from the request that started it."""

    remote: str
    process: subprocess.Popen
    _watcher: Optional[threading.Thread] = field(default=None, repr=False)

    @property
    def returncode(self) -> Optional[int]:
        return self.process.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        if self._watcher is not None:
            self._watcher.join(timeout)
            if self._watcher.is_alive():
                return None
        return self.process.poll()


def _pump_lines(stream: IO[str], level: int) -> None:
    with stream:
        for line in stream:
            line = line.rstrip("\r\n")
            if line:
                logger.log(level, "git: %s", line)


def _watch_push(push: PendingPush) -> None:
    readers = [
        threading.Thread(target=_pump_lines, args=(push.process.stdout, logging.DEBUG), daemon=True),
        threading.Thread(target=_pump_lines, args=(push.process.stderr, logging.ERROR), daemon=True),
    ]
    for reader in readers:
        reader.start()
    for reader in readers:
        reader.join()
    code = push.process.wait()
    if code == 0:
        logger.info("push to %s finished", push.remote)
    else:
        logger.error("push to %s failed with exit code %d", push.remote, code)


class GitRepository:
    """The single handle to one working tree and the file published into it.

    Not thread-safe: callers serialize ``write_target`` and ``commit_target``
    (see ``taiga_updates.pipeline.PipelineWorker``).
    """

    def __init__(self, root: Path, target: Path, git: str = "git") -> None:
        self.root = Path(root).resolve()
        self.target = Path(target).resolve()
        self.git = git
        self.relative_target = self.target.relative_to(self.root).as_posix()

    @classmethod
    def open(cls, root: Path, target: Path, git: Optional[str] = None) -> "GitRepository":
        git = git or find_git()
        if not git:
            raise ConfigError("Cannot find git on PATH, is it installed?")
        root = Path(root)
        if not (root / ".git").exists():
            raise ConfigError(f"Repository {root} does not exist!")
        if not is_inside(Path(target), root):
            raise ConfigError(f"File {Path(target).resolve()} not in {root.resolve()}!")
        repo = cls(root, target, git)
        result = repo._run("rev-parse", "--git-dir")
        if result.returncode != 0:
            raise ConfigError(f"Cannot open repository {root}: {result.stderr.strip()}")
        return repo

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.git, *args],
            cwd=self.root,
            env=_bot_env(),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )

    def write_target(self, text: str) -> None:
        try:
            with self.target.open("w", encoding="utf-8", newline="") as handle:
                handle.write(text)
        except OSError as exc:
            raise WriteError(f"Cannot write {self.target}: {exc}") from exc

    def head(self) -> Optional[str]:
        result = self._run("rev-parse", "--verify", "--quiet", "HEAD")
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def commit_target(self) -> CommitOutcome:
        staged = self._run("add", "--", self.relative_target)
        if staged.returncode != 0:
            raise CommitError(f"git add failed for {self.relative_target}", staged.stderr.strip())

        diff = self._run("diff", "--cached", "--quiet", "--", self.relative_target)
        if diff.returncode == 0:
            logger.info("%s unchanged, nothing to commit", self.relative_target)
            return CommitOutcome.NOOP
        if diff.returncode != 1:
            raise CommitError("git diff failed", diff.stderr.strip())

        committed = self._run("commit", "--quiet", "-m", COMMIT_MESSAGE, "--", self.relative_target)
        if committed.returncode != 0:
            raise CommitError("git commit failed", (committed.stderr or committed.stdout).strip())
        return CommitOutcome.CHANGED

    def push(self, remote: str) -> PendingPush:
        try:
            process = subprocess.Popen(
                [self.git, "push", remote],
                cwd=self.root,
                env=_bot_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise PushError(f"Cannot launch git push {remote}: {exc}") from exc
        pending = PendingPush(remote=remote, process=process)
        watcher = threading.Thread(
            target=_watch_push,
            args=(pending,),
            name=f"taiga-push-{process.pid}",
            daemon=True,
        )
        pending._watcher = watcher
        watcher.start()
        logger.debug("launched git push %s (pid %d)", remote, process.pid)
        return pending
