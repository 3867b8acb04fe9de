"""
HTML gallery over captured screenshots and videos.
"""
import html
from pathlib import Path
from dataclasses import dataclass

from config.settings import OUTPUT_DIR, SCREENSHOTS_SUBDIR, VIDEOS_SUBDIR, GALLERY_FILE
from .errors import GalleryError
from .log import get_logger

log = get_logger("gallery")


@dataclass
class GalleryEntry:
    template_id: str
    has_video: bool


def collect_entries(output_dir: Path) -> list[GalleryEntry]:
    """One entry per captured screenshot, flagged when a webm exists."""
    screenshots_dir = Path(output_dir) / SCREENSHOTS_SUBDIR
    videos_dir = Path(output_dir) / VIDEOS_SUBDIR

    if not screenshots_dir.is_dir():
        raise GalleryError("No screenshots found. Run capture first.")

    videos = {p.name for p in videos_dir.iterdir()} if videos_dir.is_dir() else set()
    entries = [
        GalleryEntry(template_id=p.stem, has_video=f"{p.stem}.webm" in videos)
        for p in sorted(screenshots_dir.glob("*.png"))
    ]
    if not entries:
        raise GalleryError("No screenshots found. Run capture first.")
    return entries


def _entry_html(entry: GalleryEntry) -> str:
    tid = html.escape(entry.template_id)
    if entry.has_video:
        media = f'''<video controls muted>
                <source src="videos/{tid}.webm" type="video/webm">
                Your browser does not support video.
            </video>'''
    else:
        media = '<p class="no-video">No video available</p>'

    return f'''
        <div class="template-demo">
            <h2 class="template-title">{tid}</h2>
            <img class="screenshot" src="screenshots/{tid}.png" alt="{tid} screenshot" />
            {media}
        </div>'''


def generate_gallery_html(entries: list[GalleryEntry]) -> str:
    cards = "".join(_entry_html(e) for e in entries)
    return f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>hdisplay Template Gallery</title>
<style>
body {{
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
    max-width: 1200px;
    margin: 0 auto;
    padding: 2rem;
    background: #f5f5f5;
}}
.header {{ text-align: center; margin-bottom: 3rem; }}
.template-grid {{
    display: grid;
    grid-template-columns: repeat(auto-fit, minmax(400px, 1fr));
    gap: 2rem;
}}
.template-demo {{
    background: white;
    border-radius: 8px;
    padding: 1.5rem;
    box-shadow: 0 2px 8px rgba(0,0,0,0.1);
}}
.template-title {{
    font-size: 1.5rem;
    font-weight: 600;
    margin-bottom: 1rem;
    color: #333;
}}
.screenshot, video {{
    width: 100%;
    border: 1px solid #ddd;
    border-radius: 4px;
}}
.screenshot {{ margin-bottom: 1rem; }}
.no-video {{ color: #666; font-style: italic; }}
</style>
</head>
<body>
    <div class="header">
        <h1>hdisplay Template Gallery</h1>
        <p>Automatically generated screenshots and videos of all available templates</p>
    </div>
    <div class="template-grid">{cards}
    </div>
</body>
</html>'''


def generate_gallery(output_dir: Path = OUTPUT_DIR) -> Path:
    """Write gallery.html into the output dir; fails fast without screenshots."""
    entries = collect_entries(output_dir)
    gallery_path = Path(output_dir) / GALLERY_FILE
    gallery_path.write_text(generate_gallery_html(entries))
    log.info(f"Gallery generated: {gallery_path}")
    return gallery_path
