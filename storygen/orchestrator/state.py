"""Stage constants for a single generation run.

A run moves strictly forward through these stages; there is no resume. A
failure anywhere ends the run and nothing is written to the cache.
"""

from typing import Optional

# Run stages in execution order
PIPELINE_STATES = {
    "pending": "Run accepted, guard acquired",
    "storyboarding": "Planning scenes from the descriptor",
    "keyframing": "Rendering one still image per scene",
    "video_gen": "Rendering transition clips between consecutive scenes",
    "stitching": "Concatenating clips into the final MP4",
    "complete": "Video saved to the cache",
    "failed": "Run ended with an unrecoverable error",
}

STEP_TRANSITIONS = {
    "pending": "storyboarding",
    "storyboarding": "keyframing",
    "keyframing": "video_gen",
    "video_gen": "stitching",
    "stitching": "complete",
}

TERMINAL_STATES = {"complete", "failed"}


def next_state(status: str) -> Optional[str]:
    """Stage that follows status, or None for terminal stages."""
    return STEP_TRANSITIONS.get(status)


def describe(status: str) -> str:
    return PIPELINE_STATES.get(status, status)
