"""
hdisplay black-box template capture.

Submodules pull in Playwright and Pillow, so nothing is imported here;
use ``get_orchestrator()`` or import the submodule directly.
"""

__all__ = ["get_orchestrator"]


def get_orchestrator():
    """CaptureOrchestrator class, imported on first use."""
    from .orchestrator import CaptureOrchestrator

    return CaptureOrchestrator
