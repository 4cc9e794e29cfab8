from __future__ import annotations

from collections.abc import Mapping
import logging
import os
import subprocess


class CommandError(RuntimeError):
    pass


LOGGER = logging.getLogger("pullmerge.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    input_text: str | None = None,
    env_overrides: Mapping[str, str] | None = None,
    check: bool = True,
) -> str:
    env: dict[str, str] | None = None
    if env_overrides:
        env = dict(os.environ)
        env.update(env_overrides)
    try:
        proc = subprocess.run(
            argv,
            input=input_text,
            env=env,
            text=True,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as exc:
        LOGGER.error("event=command_not_found command=%s", argv[0] if argv else "<empty>")
        raise CommandError(f"Command not found: {argv[0] if argv else '<empty>'}") from exc
    if check and proc.returncode != 0:
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            " ".join(argv),
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {' '.join(argv)}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n"
            f"stderr:\n{proc.stderr}"
        )
    return proc.stdout
