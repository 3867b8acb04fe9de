"""
Recording post-processing using FFmpeg.

Moves the raw Playwright recording into place as ``{id}.webm`` and makes a
best-effort ``{id}.mp4`` next to it. Nothing here raises to the caller.
"""
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from typing import Optional
from dataclasses import dataclass

from playwright.async_api import Video, Error as PlaywrightError

from config.settings import (
    OUTPUT_DIR, FFMPEG_BIN, TRANSCODE_TIMEOUT, TRANSCODE_SEEK, TRANSCODE_FILTER,
    VIDEO_CODEC, VIDEO_PRESET, VIDEO_CRF, RAW_VIDEOS_SUBDIR, get_output_paths,
)
from .errors import EncodingUnavailable, IOWarning
from .log import get_logger

log = get_logger("postprocess")


class TranscodeStatus(str, Enum):
    UNAVAILABLE = "unavailable"   # Encoder binary missing
    FAILED = "failed"             # Encoder ran and failed
    SUCCEEDED = "succeeded"


@dataclass
class TranscodeResult:
    """Result of a best-effort MP4 transcode."""
    status: TranscodeStatus
    path: Optional[Path] = None
    exit_code: Optional[int] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == TranscodeStatus.SUCCEEDED


@dataclass
class VideoOutcome:
    """What post-processing produced for one template."""
    template_id: str
    webm_path: Optional[Path] = None
    transcode: Optional[TranscodeResult] = None

    @property
    def video_paths(self) -> list[Path]:
        paths = [self.webm_path] if self.webm_path else []
        if self.transcode and self.transcode.succeeded:
            paths.append(self.transcode.path)
        return paths


def build_transcode_command(ffmpeg_bin: str, webm_path: Path, mp4_path: Path) -> list[str]:
    """
    FFmpeg command for webm -> mp4.

    Input-seeks slightly and drops the first decoded frame to avoid a leading
    white frame, rebases timestamps, forces even dimensions for yuv420p and
    drops audio.
    """
    return [
        ffmpeg_bin, "-y",
        "-ss", TRANSCODE_SEEK,
        "-i", str(webm_path),
        "-vf", TRANSCODE_FILTER,
        "-c:v", VIDEO_CODEC,
        "-preset", VIDEO_PRESET,
        "-crf", str(VIDEO_CRF),
        "-movflags", "+faststart",
        "-an",
        str(mp4_path),
    ]


def _run_encoder(cmd: list[str], timeout: float):
    """Run the encoder; raise EncodingUnavailable when it is missing or fails."""
    if not shutil.which(cmd[0]):
        raise EncodingUnavailable(f"{cmd[0]} not found on PATH", missing=True)

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise EncodingUnavailable(f"{cmd[0]} not found on PATH", missing=True) from e
    except subprocess.TimeoutExpired as e:
        raise EncodingUnavailable(f"{cmd[0]} timed out after {timeout}s") from e

    if result.stderr.strip():
        log.debug(f"[ffmpeg stderr] {result.stderr.strip()[-2000:]}")
    if result.returncode != 0:
        raise EncodingUnavailable(
            f"{cmd[0]} exited with code {result.returncode}", exit_code=result.returncode
        )


def transcode_to_mp4(webm_path: Path, mp4_path: Path,
                     ffmpeg_bin: str = FFMPEG_BIN,
                     timeout: float = TRANSCODE_TIMEOUT) -> TranscodeResult:
    """Best-effort webm -> mp4. Never raises."""
    cmd = build_transcode_command(ffmpeg_bin, webm_path, mp4_path)
    try:
        _run_encoder(cmd, timeout)
    except EncodingUnavailable as e:
        status = TranscodeStatus.UNAVAILABLE if e.missing else TranscodeStatus.FAILED
        return TranscodeResult(status=status, exit_code=e.exit_code, message=str(e))
    return TranscodeResult(status=TranscodeStatus.SUCCEEDED, path=mp4_path, exit_code=0)


class VideoPostProcessor:
    """Finalizes one template's recording."""

    def __init__(self, output_dir: Path = OUTPUT_DIR, ffmpeg_bin: str = FFMPEG_BIN,
                 transcode_timeout: float = TRANSCODE_TIMEOUT):
        self.output_dir = Path(output_dir)
        self.ffmpeg_bin = ffmpeg_bin
        self.transcode_timeout = transcode_timeout

    @property
    def raw_dir(self) -> Path:
        return self.output_dir / RAW_VIDEOS_SUBDIR

    async def resolve_recording(self, video: Optional[Video]) -> Optional[Path]:
        """Prefer the page's own video handle, else any webm in the raw dir."""
        if video is not None:
            try:
                source = Path(await video.path())
                if source.exists():
                    return source
            except PlaywrightError as e:
                log.debug(f"Could not resolve page video path: {e}")

        if not self.raw_dir.is_dir():
            return None
        candidates = sorted(self.raw_dir.glob("*.webm"), key=lambda p: p.stat().st_mtime, reverse=True)
        return candidates[0] if candidates else None

    def move_recording(self, source: Path, template_id: str) -> Path:
        """Move (not copy) the raw recording to videos/{id}.webm."""
        target = get_output_paths(self.output_dir, template_id)["webm"]
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.exists():
                target.unlink()
            shutil.move(str(source), str(target))
        except OSError as e:
            raise IOWarning(f"Could not move {source} to {target}: {e}") from e
        return target

    def purge_raw_dir(self):
        """Empty the raw recording scratch directory."""
        raw_dir = self.raw_dir
        if not raw_dir.exists():
            return
        for entry in raw_dir.iterdir():
            try:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as e:
                log.warning(f"Could not remove raw recording {entry}: {e}")

    async def process(self, template_id: str, video: Optional[Video] = None) -> VideoOutcome:
        """Resolve, move and transcode; always purge the raw dir afterwards."""
        outcome = VideoOutcome(template_id=template_id)
        try:
            source = await self.resolve_recording(video)
            if source is None:
                raise IOWarning("No video file found to process")

            outcome.webm_path = self.move_recording(source, template_id)
            log.info(f"Video saved: {outcome.webm_path}")

            mp4_path = get_output_paths(self.output_dir, template_id)["mp4"]
            outcome.transcode = transcode_to_mp4(
                outcome.webm_path, mp4_path, self.ffmpeg_bin, self.transcode_timeout
            )
            if outcome.transcode.succeeded:
                log.info(f"MP4 saved: {mp4_path}")
            else:
                log.warning(f"Skipping MP4 for {template_id}: {outcome.transcode.message}")
        except IOWarning as e:
            log.warning(f"Video not processed for {template_id}: {e}")
        finally:
            self.purge_raw_dir()

        return outcome
