"""
Weekly tracker feature package.

Everything that decides whether a character has done its weekly activities
lives in this slice: the reset clock and evaluators (services), catalog and
payload models (domain), storage (repository), the refresh and reset jobs
(jobs) and the status routes (api).
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as tracker_router  # noqa: F401
from .wiring import TrackerServices, build_tracker_services  # noqa: F401
