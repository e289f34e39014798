"""API routers for the Clipex render service."""

from .render import router as render_router, set_render_supervisor, set_job_store
from .upload import router as upload_router, set_uploads_dir

__all__ = [
    "render_router",
    "upload_router",
    "set_render_supervisor",
    "set_job_store",
    "set_uploads_dir",
]
