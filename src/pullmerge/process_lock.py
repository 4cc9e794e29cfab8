from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import errno
import json
import os
from pathlib import Path
import re
import secrets
from typing import Iterator


_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ProcessLockError(RuntimeError):
    """Raised when another run already holds the lock for the same repository branch."""


@dataclass(frozen=True)
class _LockHolder:
    pid: int | None
    target: str | None
    started_at: str | None
    token: str | None


_NO_HOLDER = _LockHolder(pid=None, target=None, started_at=None, token=None)


def lock_path_for(*, base_dir: Path, repo_full_name: str, branch: str) -> Path:
    safe_repo = _UNSAFE_NAME_CHARS.sub("_", repo_full_name.replace("/", "__"))
    safe_branch = _UNSAFE_NAME_CHARS.sub("_", branch)
    return base_dir / "locks" / f"{safe_repo}__{safe_branch}.lock"


@contextmanager
def branch_run_lock(*, base_dir: Path, repo_full_name: str, branch: str) -> Iterator[Path]:
    """Serializes lifecycle runs that target the same repository and branch.

    Two concurrent runs against one branch would race between the open pull request
    lookup and creation, so only one may proceed per host.
    """
    lock = _BranchRunLock(
        lock_path=lock_path_for(base_dir=base_dir, repo_full_name=repo_full_name, branch=branch),
        target=f"{repo_full_name}:{branch}",
    )
    lock.acquire()
    try:
        yield lock.path
    finally:
        lock.release()


class _BranchRunLock:
    def __init__(self, *, lock_path: Path, target: str) -> None:
        self.path = lock_path
        self._target = target
        self._inode: int | None = None
        self._token: str | None = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._token = None
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                if self._reclaim_if_holder_dead():
                    continue
                raise ProcessLockError(self._held_message()) from None

            token = secrets.token_hex(16)
            try:
                self._inode = os.fstat(fd).st_ino
                record = {
                    "pid": os.getpid(),
                    "target": self._target,
                    "started_at": _utc_now_iso8601(),
                    "token": token,
                }
                os.write(fd, (json.dumps(record, sort_keys=True) + "\n").encode("utf-8"))
                os.fsync(fd)
            except Exception:
                try:
                    os.close(fd)
                finally:
                    try:
                        os.unlink(self.path)
                    except FileNotFoundError:
                        pass
                self._inode = None
                raise
            os.close(fd)
            self._token = token
            return

        raise ProcessLockError(self._held_message())

    def release(self) -> None:
        inode, token = self._inode, self._token
        self._inode = None
        self._token = None
        if inode is None or token is None:
            return
        try:
            current = self.path.stat()
        except FileNotFoundError:
            return
        # Someone reclaimed and re-created the file; it is no longer ours to remove.
        if current.st_ino != inode or _read_holder(self.path).token != token:
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def _reclaim_if_holder_dead(self) -> bool:
        holder = _read_holder(self.path)
        if holder.pid is None or holder.pid == os.getpid():
            return False
        if _pid_is_running(holder.pid):
            return False
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            return True
        except OSError:
            return False
        return True

    def _held_message(self) -> str:
        holder = _read_holder(self.path)
        details = []
        if holder.pid is not None:
            details.append(f"pid={holder.pid}")
        if holder.started_at:
            details.append(f"started_at={holder.started_at}")
        suffix = f" ({', '.join(details)})" if details else ""
        return (
            f"Another pullmerge run is already active for {self._target}{suffix}. "
            f"Lock file: {self.path}. If no run is active, remove the lock file and retry."
        )


def _read_holder(lock_path: Path) -> _LockHolder:
    try:
        text = lock_path.read_text(encoding="utf-8").strip()
    except OSError:
        return _NO_HOLDER
    if not text:
        return _NO_HOLDER
    try:
        record = json.loads(text)
    except json.JSONDecodeError:
        return _NO_HOLDER
    if not isinstance(record, dict):
        return _NO_HOLDER
    pid = record.get("pid")
    target = record.get("target")
    started_at = record.get("started_at")
    token = record.get("token")
    return _LockHolder(
        pid=pid if isinstance(pid, int) else None,
        target=target if isinstance(target, str) else None,
        started_at=started_at if isinstance(started_at, str) else None,
        token=token if isinstance(token, str) else None,
    )


def _pid_is_running(pid: int) -> bool:
    if pid < 1:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as exc:
        return exc.errno != errno.ESRCH
    return True


def _utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
