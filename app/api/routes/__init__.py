from __future__ import annotations

from app.api.routes.health import ENDPOINTS as health_endpoints
from app.api.routes.posts import ENDPOINTS as post_endpoints
from app.api.routes.secure import ENDPOINTS as secure_endpoints

__all__ = ["health_endpoints", "post_endpoints", "secure_endpoints"]
