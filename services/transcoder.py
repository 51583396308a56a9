"""
Media transcoding strategies.

Different browsers record media in different containers and codecs, so every
upload is converted to one canonical format before it is stored. A transcoder
reads a staged upload and returns the path of a temporary canonical file that
is unique to the upload attempt (the job id). Failure is reported as a single TranscodeError; any
partial output is removed before raising.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Optional, Protocol, Sequence, runtime_checkable

from media_utils import build_ffmpeg_command, converted_path, remove_temp_file
from services.errors import TranscodeError

logger = logging.getLogger(__name__)


@runtime_checkable
class Transcoder(Protocol):
    """Out-of-band conversion of an upload into the canonical format."""

    async def transcode(self, job_id: str, source: Path) -> Path:
        ...


class FFmpegTranscoder:
    """Runs ffmpeg as a child process so a crash or hang stays outside the server."""

    def __init__(
        self,
        work_dir: Path,
        ffmpeg_path: str = "ffmpeg",
        output_args: Sequence[str] = ("-c:v", "libx264", "-f", "mp4"),
        suffix: str = ".mp4",
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.ffmpeg_path = ffmpeg_path
        self.output_args = list(output_args)
        self.suffix = suffix
        self.timeout_seconds = timeout_seconds or None
        self.work_dir.mkdir(parents=True, exist_ok=True)

    async def _drain_stderr(
        self, process: asyncio.subprocess.Process, job_id: str, tail: Deque[str]
    ) -> None:
        # ffmpeg reports progress on stderr; it is only logged
        if process.stderr is None:
            await process.wait()
            return
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            for line in chunk.decode("utf-8", errors="ignore").splitlines():
                line = line.strip()
                if line:
                    tail.append(line)
                    logger.debug(f"[ffmpeg {job_id}] {line}")
        await process.wait()

    async def _abort(self, process: asyncio.subprocess.Process, output: Path) -> None:
        if process.returncode is None:
            process.kill()
            await process.wait()
        remove_temp_file(output)

    async def transcode(self, job_id: str, source: Path) -> Path:
        output = converted_path(self.work_dir, job_id, self.suffix)
        cmd = build_ffmpeg_command(self.ffmpeg_path, source, output, self.output_args)
        logger.info(f"Launching ffmpeg for job {job_id}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"Could not start ffmpeg: {e}", note_id=job_id) from e

        tail: Deque[str] = deque(maxlen=20)
        try:
            await asyncio.wait_for(
                self._drain_stderr(process, job_id, tail),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._abort(process, output)
            raise TranscodeError(
                f"Transcoding timed out after {self.timeout_seconds}s", note_id=job_id
            )
        except asyncio.CancelledError:
            await self._abort(process, output)
            raise

        if process.returncode != 0:
            remove_temp_file(output)
            last_line = tail[-1] if tail else "no output"
            raise TranscodeError(
                f"ffmpeg exited with code {process.returncode}: {last_line}", note_id=job_id
            )
        if not output.exists() or output.stat().st_size == 0:
            remove_temp_file(output)
            raise TranscodeError("Seems to be an FFmpeg error: file is corrupted", note_id=job_id)

        logger.info(f"FFmpeg converting ended for job {job_id}")
        return output


class FunctionTranscoder:
    """In-process strategy: applies a bytes -> bytes function on a worker thread."""

    def __init__(
        self,
        func: Callable[[bytes], bytes],
        work_dir: Path,
        suffix: str = ".mp4",
    ) -> None:
        self.func = func
        self.work_dir = Path(work_dir)
        self.suffix = suffix
        self.work_dir.mkdir(parents=True, exist_ok=True)

    def _run(self, job_id: str, source: Path) -> Path:
        output = converted_path(self.work_dir, job_id, self.suffix)
        try:
            converted = self.func(source.read_bytes())
            if not converted:
                raise ValueError("transcoder produced no output")
            output.write_bytes(converted)
        except Exception as e:
            remove_temp_file(output)
            raise TranscodeError(f"Transcoding failed: {e}", note_id=job_id) from e
        return output

    async def transcode(self, job_id: str, source: Path) -> Path:
        return await asyncio.to_thread(self._run, job_id, source)
