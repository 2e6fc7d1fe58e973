"""Allows ``python -m mailalert_escalation <command>``."""
from .cli import main


if __name__ == "__main__":
    main()
