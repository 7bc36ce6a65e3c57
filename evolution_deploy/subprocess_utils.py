from __future__ import annotations

import queue
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from textwrap import shorten
from typing import Mapping, Sequence

from .logging_utils import get_logger


logger = get_logger(__name__)


class CommandError(RuntimeError):
    """외부 명령 실행 실패. returncode 가 None 이면 실행 자체가 되지 않은 경우."""

    def __init__(self, message: str, *, cmd: Sequence[str], returncode: int | None = None) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = returncode


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _is_tty(stream) -> bool:  # noqa: ANN001
    try:
        return bool(getattr(stream, "isatty") and stream.isatty())
    except Exception:  # noqa: BLE001
        return False


def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:0.1f}s"
    minutes = int(seconds // 60)
    sec = int(seconds % 60)
    return f"{minutes}m{sec:02d}s"


_BRAILLE_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]


class Spinner:
    """
    간단한 CLI 스피너(로딩 애니메이션).

    - stderr 에만 출력하여 stdout 로그와 섞이지 않게 한다.
    - TTY 가 아니면(CI, 파이프) 아무것도 그리지 않는다.
    """

    def __init__(self, message: str = "작업 처리 중", *, interval: float = 0.12, stream=None) -> None:  # noqa: ANN001
        self._message = message
        self._interval = max(float(interval), 0.02)
        self._stream = stream if stream is not None else sys.stderr
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_len = 0

    def start(self) -> None:
        if self._thread is not None or not _is_tty(self._stream):
            return
        started = time.monotonic()

        def _run() -> None:
            idx = 0
            while not self._stop.is_set():
                frame = _BRAILLE_FRAMES[idx % len(_BRAILLE_FRAMES)]
                text = f"{frame} {self._message}  {_format_elapsed(time.monotonic() - started)}"
                self._last_len = max(self._last_len, len(text))
                self._stream.write("\r" + text)
                self._stream.flush()
                idx += 1
                time.sleep(self._interval)

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is None:
            return
        self._thread.join(timeout=1.0)
        # 줄 정리
        self._stream.write("\r" + (" " * self._last_len) + "\r")
        self._stream.flush()

    def __enter__(self) -> "Spinner":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.stop()


def _not_found(cmd: Sequence[str]) -> CommandError:
    return CommandError(
        f"필요한 명령을 찾을 수 없습니다: {cmd[0]} (gcloud/docker 가 설치되어 있는지 확인하세요)",
        cmd=cmd,
    )


def _timed_out(cmd: Sequence[str], timeout: float | None) -> CommandError:
    return CommandError(
        f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {' '.join(cmd)}",
        cmd=cmd,
    )


def _failed(cmd: Sequence[str], returncode: int, stdout: str, stderr: str) -> CommandError:
    stdout = (stdout or "").strip()
    stderr = (stderr or "").strip()
    detail = ""
    if stderr:
        detail = "\nstderr:\n" + shorten(stderr, width=2000)
    elif stdout:
        detail = "\nstdout:\n" + shorten(stdout, width=2000)
    return CommandError(
        f"명령 실행 실패: {' '.join(cmd)} (exit={returncode}){detail}",
        cmd=cmd,
        returncode=returncode,
    )


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    proc.wait()


def _run_streaming(
    cmd: Sequence[str],
    *,
    cwd: str | None,
    env: Mapping[str, str] | None,
    timeout: float | None,
) -> RunResult:
    # docker compose 는 stderr 로 진행 로그를 내보내므로 STDOUT 으로 합친다.
    try:
        proc = subprocess.Popen(  # noqa: S603
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise _not_found(cmd) from e

    out_lines: list[str] = []
    deadline = None if timeout is None else time.monotonic() + float(timeout)
    q: queue.Queue[str | None] = queue.Queue()

    def _reader() -> None:
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                q.put(line)
        finally:
            q.put(None)

    reader_thread = threading.Thread(target=_reader, daemon=True)
    reader_thread.start()

    try:
        while True:
            if deadline is not None and time.monotonic() >= deadline:
                _kill(proc)
                raise _timed_out(cmd, timeout)
            try:
                item = q.get(timeout=0.1)
            except queue.Empty:
                if proc.poll() is None:
                    continue
                # 자식이 남긴 프로세스가 stdout 을 계속 잡고 있을 수 있으므로 잠깐만 더 읽는다.
                try:
                    item = q.get(timeout=0.2)
                except queue.Empty:
                    break
            if item is None:
                break
            out_lines.append(item)
            sys.stdout.write(item)
            sys.stdout.flush()

        reader_thread.join(timeout=1.0)
        wait_timeout = None
        if deadline is not None:
            wait_timeout = max(deadline - time.monotonic(), 0.0)
        returncode = proc.wait(timeout=wait_timeout)
    except subprocess.TimeoutExpired as e:
        _kill(proc)
        raise _timed_out(cmd, timeout) from e
    finally:
        # reader 가 아직 읽는 중이면 close 가 막히므로 그대로 둔다.
        if proc.stdout is not None and not reader_thread.is_alive():
            proc.stdout.close()

    return RunResult(returncode=returncode, stdout="".join(out_lines), stderr="")


def run_command(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = 900.0,
    stream_output: bool = False,
    check: bool = True,
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    - stream_output=False: stdout/stderr 캡처, 실패 시 요약 포함
    - stream_output=True : 출력을 실시간으로 터미널에 흘린다 (pull/up 진행 상황 확인용)
    - check=False        : exit code 가 0 이 아니어도 예외 없이 RunResult 를 돌려준다

    env 는 그대로 자식 프로세스 환경이 되므로 secret 값이 들어갈 수 있다.
    여기서는 env 를 절대 로그로 남기지 않는다.
    """
    logger.info("명령 실행: %s", " ".join(cmd))

    if stream_output:
        result = _run_streaming(cmd, cwd=cwd, env=env, timeout=timeout)
    else:
        try:
            proc = subprocess.run(  # noqa: S603
                list(cmd),
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=cwd,
                env=dict(env) if env is not None else None,
            )
        except FileNotFoundError as e:
            raise _not_found(cmd) from e
        except subprocess.TimeoutExpired as e:
            raise _timed_out(cmd, timeout) from e

        if proc.stdout:
            logger.debug("명령 stdout: %s", shorten(proc.stdout.strip(), width=2000))
        if proc.stderr:
            logger.debug("명령 stderr: %s", shorten(proc.stderr.strip(), width=2000))
        result = RunResult(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")

    if check and result.returncode != 0:
        raise _failed(cmd, result.returncode, result.stdout, result.stderr)
    return result
