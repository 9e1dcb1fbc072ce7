"""FFmpeg/ffprobe invocation.

Every call runs the binary as an asyncio subprocess, so the event loop stays
free to publish progress while the encoder works. Failures of any kind are
raised as `ProcessingError` tagged with the phase that broke.
"""

import asyncio
import json
import logging
from collections import deque
from typing import Callable, List, Optional

from videopipe.errors import ProcessingError
from videopipe.media_utils import THUMBNAIL_SIZE, EncodingTier, VideoInfo

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Fixed x264 tuning: bounded GOP, single reference frame, no scene-cut keyframes.
X264_PARAMS = (
    "me=hex:subme=4:trellis=0:weightb=0:mixed-refs=0:8x8dct=0:fast-pskip=1"
)
AUDIO_BITRATE = "64k"
STDERR_TAIL_LINES = 20


def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """
    Turn one `-progress` key=value line into a percentage of `duration`.
    Returns None for lines that carry no position.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 100.0
    # ffmpeg reports out_time_ms in microseconds as well
    if key in ("out_time_us", "out_time_ms") and duration > 0:
        try:
            micros = int(value)
        except ValueError:
            return None
        return min(100.0, max(0.0, micros / 1_000_000 / duration * 100.0))
    return None


def parse_probe_output(raw: str) -> VideoInfo:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProcessingError(f"Unreadable ffprobe output: {e}", phase="probe") from e

    video_stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        raise ProcessingError("No video stream found", phase="probe")

    try:
        duration = float(data.get("format", {}).get("duration") or 0)
    except (TypeError, ValueError):
        duration = 0.0

    return VideoInfo(
        width=int(video_stream.get("width") or 0),
        height=int(video_stream.get("height") or 0),
        duration=duration,
    )


class FFmpeg:
    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        preset: str = "fast",
        threads: int = 0,
        target_resolution: tuple[int, int] | None = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.preset = preset
        self.threads = threads
        self.target_resolution = target_resolution

    async def probe(self, path: str) -> VideoInfo:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        stdout = await self._run(cmd, phase="probe")
        return parse_probe_output(stdout)

    def build_transcode_command(
        self, input_path: str, output_path: str, tier: EncodingTier
    ) -> List[str]:
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-fflags", "+genpts",
            "-i", input_path,
            "-c:v", "libx264",
            "-b:v", f"{tier.bitrate_kbps}k",
            "-maxrate", f"{tier.maxrate_kbps}k",
            "-bufsize", f"{tier.bufsize_kbps}k",
            "-crf", str(tier.crf),
            "-preset", self.preset,
            "-tune", "film",
            "-profile:v", "high",
            "-level", "4.1",
            "-pix_fmt", "yuv420p",
            "-g", "240",
            "-keyint_min", "120",
            "-refs", "1",
            "-bf", "2",
            "-sc_threshold", "0",
            "-flags", "-cgop",
            "-qmin", "18",
            "-qmax", "40",
            "-qdiff", "15",
            "-x264-params", X264_PARAMS,
            "-threads", str(self.threads),
            "-c:a", "aac",
            "-b:a", AUDIO_BITRATE,
            "-movflags", "+faststart",
            "-avoid_negative_ts", "make_zero",
        ]
        if self.target_resolution:
            width, height = self.target_resolution
            cmd.extend([
                "-vf",
                f"scale={width}:{height}:force_original_aspect_ratio=decrease"
                ":force_divisible_by=2",
            ])
        cmd.extend(["-progress", "pipe:1", "-nostats", output_path])
        return cmd

    async def transcode(
        self,
        input_path: str,
        output_path: str,
        tier: EncodingTier,
        duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        cmd = self.build_transcode_command(input_path, output_path, tier)
        logger.debug("Running %s", " ".join(cmd))

        proc = await self._spawn(cmd, phase="encode")
        stderr_task = asyncio.create_task(_tail(proc.stderr))
        try:
            async for raw in proc.stdout:
                percent = parse_progress_line(raw.decode(errors="replace"), duration)
                if percent is not None and on_progress is not None:
                    on_progress(percent)
            returncode = await proc.wait()
            stderr_tail = await stderr_task
        except BaseException:
            await _kill(proc)
            stderr_task.cancel()
            raise

        if returncode != 0:
            raise ProcessingError(
                f"ffmpeg transcode exited with {returncode}: {stderr_tail}",
                phase="encode",
            )

    def build_thumbnail_command(
        self, input_path: str, output_path: str, at_seconds: float
    ) -> List[str]:
        width, height = THUMBNAIL_SIZE
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-ss", f"{at_seconds:.3f}",
            "-i", input_path,
            "-frames:v", "1",
            "-vf", f"scale={width}:{height}",
            output_path,
        ]

    async def generate_thumbnail(
        self, input_path: str, output_path: str, at_seconds: float
    ) -> None:
        cmd = self.build_thumbnail_command(input_path, output_path, at_seconds)
        await self._run(cmd, phase="thumbnail")

    async def _spawn(self, cmd: List[str], phase: str) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessingError(f"Cannot start {cmd[0]}: {e}", phase=phase) from e

    async def _run(self, cmd: List[str], phase: str) -> str:
        proc = await self._spawn(cmd, phase=phase)
        try:
            stdout, stderr = await proc.communicate()
        except BaseException:
            await _kill(proc)
            raise
        if proc.returncode != 0:
            raise ProcessingError(
                f"{cmd[0]} exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()[-2000:]}",
                phase=phase,
            )
        return stdout.decode(errors="replace")


async def _tail(stream: asyncio.StreamReader) -> str:
    lines: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
    async for raw in stream:
        lines.append(raw.decode(errors="replace").rstrip())
    return "\n".join(lines)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()
