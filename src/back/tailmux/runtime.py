"""Production runtime app for tailmux.

Entry point for ``uvicorn tailmux.runtime:app``; all settings come from the
environment (see ``APIConfig``).
"""

from __future__ import annotations

from .api import APIConfig, create_app
from .observability import configure_logging

configure_logging()
app = create_app(APIConfig())
