"""
Central configuration for the hdisplay template capture system.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).parent.parent
OUTPUT_DIR = Path(os.getenv("CAPTURE_OUTPUT_DIR", "./captures"))
PROFILES_DIR = Path(os.getenv("CAPTURE_PROFILES_DIR", "./capture-profiles"))

# Output subdirectories (relative to the output dir)
SCREENSHOTS_SUBDIR = "screenshots"
VIDEOS_SUBDIR = "videos"
RAW_VIDEOS_SUBDIR = "videos-raw"
GALLERY_FILE = "gallery.html"

# Server / control
SERVER_URL = os.getenv("HDISPLAY_SERVER", "http://localhost:3000")
CLEAR_COMMAND = os.getenv("HDISPLAY_CLEAR_COMMAND", "hdisplay --server {server} clear")
CLEAR_TIMEOUT = 15  # seconds
CLEAR_GRACE_MS = 1200  # frontend crossfade (~520ms) plus headroom

# Debug
CAPTURE_DEBUG = os.getenv("CAPTURE_DEBUG", "").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if CAPTURE_DEBUG else "INFO").upper()

# Browser settings
VIEWPORT_WIDTH = 1280
VIEWPORT_HEIGHT = 400
DEVICE_SCALE_FACTOR = 2
BROWSER_ARGS = ["--font-render-hinting=none"]
NAVIGATION_TIMEOUT_MS = 10000

# Apply / confirm
TITLE_FORMAT = "hdisplay - {template_id}"
APPLY_CONFIRM_TIMEOUT_MS = 4000
APPLY_MAX_ATTEMPTS = 3
APPLY_RETRY_BACKOFF_MS = 500

# Capture timing
DEFAULT_SCREENSHOT_DELAY_MS = 500

# Video settings
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
TRANSCODE_TIMEOUT = 120  # seconds
VIDEO_CODEC = "libx264"
VIDEO_PRESET = "veryfast"
VIDEO_CRF = 23
TRANSCODE_SEEK = "0.1"
TRANSCODE_FILTER = (
    "select=not(eq(n\\,0)),setpts=N/FRAME_RATE/TB,"
    "scale=trunc(iw/2)*2:trunc(ih/2)*2,format=yuv420p"
)


def title_for(template_id: str) -> str:
    """Page title the display shows once a template is live."""
    return TITLE_FORMAT.format(template_id=template_id)


def get_output_paths(output_dir: Path, template_id: str) -> dict:
    """Get all output paths for a template capture."""
    output_dir = Path(output_dir)
    return {
        "screenshot": output_dir / SCREENSHOTS_SUBDIR / f"{template_id}.png",
        "webm": output_dir / VIDEOS_SUBDIR / f"{template_id}.webm",
        "mp4": output_dir / VIDEOS_SUBDIR / f"{template_id}.mp4",
        "raw_dir": output_dir / RAW_VIDEOS_SUBDIR,
    }
