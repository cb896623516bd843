"""Command-line entrypoint for running the sportscache proxy."""

from __future__ import annotations

from ..common.observability import configure_logging
from ..common.settings import ProxySettings
from .manager import WorkerSupervisor


def main() -> None:
    settings = ProxySettings()
    configure_logging("sportscache.supervisor", settings.log_level)
    WorkerSupervisor(settings).run()


if __name__ == "__main__":
    main()
