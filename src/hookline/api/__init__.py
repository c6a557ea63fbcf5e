"""FastAPI REST API for Hookline.

This module provides the administrative REST API for webhook
subscriptions and their delivery history.

Example:
    ```python
    import uvicorn
    from hookline.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn hookline.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
