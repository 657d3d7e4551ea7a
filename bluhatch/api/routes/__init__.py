"""API routes package — import all routers here for inclusion in the app."""

from bluhatch.api.routes.evidence import router as evidence_router  # noqa: F401
from bluhatch.api.routes.jobs import router as jobs_router  # noqa: F401
from bluhatch.api.routes.reports import router as reports_router  # noqa: F401
from bluhatch.api.routes.storage import router as storage_router  # noqa: F401
