"""
Framework wiring.

``Workguard`` owns one dispatcher, the three category recoverers and the
component boundary, all sharing a clock, a notifier and a resource store.
Collaborators receive the instance (or its parts) explicitly.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from workguard.boundary import ComponentHealthBoundary
from workguard.clock import AsyncioClock, Clock
from workguard.config import WorkguardConfig, load_config
from workguard.dispatcher import ErrorDispatcher
from workguard.error_log import ErrorLog
from workguard.notifications import LoggingNotifier, Notifier
from workguard.recoverers.filesystem import FileSystemRecoverer
from workguard.recoverers.parsing import ParsingRecoverer
from workguard.recoverers.provider import ProviderRecoverer
from workguard.storage import LocalResourceStore, ResourceStore

logger = logging.getLogger(__name__)


class Workguard:
    """A wired framework instance."""

    def __init__(
        self,
        config: Optional[WorkguardConfig] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        store: Optional[ResourceStore] = None,
    ):
        self.config = (config or WorkguardConfig()).validate()
        self.clock = clock or AsyncioClock()
        self.notifier = notifier or LoggingNotifier()
        self.store = store or LocalResourceStore()

        self.error_log = ErrorLog(self.config.dispatcher.max_log_entries)
        self.dispatcher = ErrorDispatcher(self.config.dispatcher, self.clock, self.notifier,
                                          self.error_log)
        self.filesystem = FileSystemRecoverer(self.dispatcher, self.config.filesystem,
                                              self.store, self.clock)
        self.parsing = ParsingRecoverer(self.dispatcher, self.config.parsing, self.store, self.clock)
        self.provider = ProviderRecoverer(self.dispatcher, self.config.provider, self.clock)
        self.boundary = ComponentHealthBoundary(self.dispatcher, self.config.boundary, self.clock)
        self._disposed = False

    @classmethod
    def from_config_file(cls, path: Optional[Union[str, Path]] = None, **kwargs) -> "Workguard":
        return cls(load_config(path), **kwargs)

    @property
    def fatal_sink(self):
        return self.boundary.fatal_sink

    def status(self) -> Dict[str, Any]:
        """Combined snapshot for dashboards and the CLI."""
        return {
            "components": self.boundary.get_system_status_summary(),
            "providers": self.provider.get_provider_status_summary(),
            "statistics": self.dispatcher.get_statistics().to_dict(),
        }

    def dispose(self) -> None:
        """Cancel every timer and clear every registry. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self.boundary.dispose()
        self.provider.dispose()
        self.parsing.dispose()
        self.filesystem.dispose()
        self.dispatcher.dispose()
        logger.info("Workguard disposed")


def create_framework(
    config: Optional[WorkguardConfig] = None,
    clock: Optional[Clock] = None,
    notifier: Optional[Notifier] = None,
    store: Optional[ResourceStore] = None,
) -> Workguard:
    return Workguard(config, clock, notifier, store)
