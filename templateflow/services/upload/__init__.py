"""Upload planning and chunked transfer to the object store."""

from .planner import UploadPlan, iter_part_ranges, part_count, plan
from .uploader import ChunkedUploader, ProgressCallback, UploadProgress

__all__ = [
    "UploadPlan",
    "plan",
    "part_count",
    "iter_part_ranges",
    "ChunkedUploader",
    "UploadProgress",
    "ProgressCallback",
]
