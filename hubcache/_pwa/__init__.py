"""Progressive Web App assets for browser-side offline support.

PWA Features:
- Offline support via Service Worker caching
- Cache versioning through the configured cache name
"""

from ._service_worker import render_service_worker

__all__ = [
    "render_service_worker",
]
