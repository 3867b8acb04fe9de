"""
Screenshot frame metrics.

Frames are decoded from PNG bytes to single-channel luminance and only live
for the duration of a comparison.
"""
import io
from dataclasses import dataclass

from PIL import Image, ImageChops, ImageStat, UnidentifiedImageError

from .errors import DetectionFailure

# Luminance at or below this is treated as background
COVERAGE_LUMINANCE_THRESHOLD = 10


@dataclass
class FrameSample:
    """One decoded screenshot in luminance ("L") mode."""
    image: Image.Image

    @classmethod
    def from_bytes(cls, data: bytes) -> "FrameSample":
        try:
            with Image.open(io.BytesIO(data)) as img:
                return cls(image=img.convert("L"))
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise DetectionFailure(f"Could not decode screenshot: {e}") from e

    @property
    def pixel_count(self) -> int:
        width, height = self.image.size
        return width * height


def frame_diff(previous: bytes, current: bytes) -> float:
    """
    Mean absolute luminance difference between two screenshots, in [0, 1].

    Frames with a different number of pixels count as maximally different.
    """
    a = FrameSample.from_bytes(previous)
    b = FrameSample.from_bytes(current)

    if a.pixel_count != b.pixel_count:
        return 1.0
    if a.pixel_count == 0:
        return 0.0

    other = b.image
    if a.image.size != b.image.size:
        # Same buffer length, different shape: compare the flat buffers
        other = Image.frombytes("L", a.image.size, b.image.tobytes())

    diff = ImageChops.difference(a.image, other)
    mean = ImageStat.Stat(diff).mean[0]
    return min(1.0, max(0.0, mean / 255))


def coverage(screenshot: bytes, threshold: int = COVERAGE_LUMINANCE_THRESHOLD) -> float:
    """Fraction of pixels brighter than the background threshold."""
    frame = FrameSample.from_bytes(screenshot)
    total = frame.pixel_count
    if total == 0:
        return 0.0
    histogram = frame.image.histogram()
    return sum(histogram[threshold + 1:]) / total
