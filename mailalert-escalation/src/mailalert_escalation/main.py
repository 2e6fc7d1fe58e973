"""
Entry point for running the escalation service as an ASGI server.
"""
import uvicorn

from .config import EscalationSettings
from .logging_utils import configure_logging


def main():
    """Serve ``create_app`` with uvicorn on the configured port."""
    configure_logging()
    settings = EscalationSettings()
    uvicorn.run(
        "mailalert_escalation.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
