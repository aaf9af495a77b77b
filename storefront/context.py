"""Explicitly wired application context.

Built once per process (or per test) in dependency order: storage, blob store,
publish channel, notifier, then the services that use them. ``close`` releases
everything in reverse.
"""

from typing import Optional

import structlog

from .blobs import BlobStore, LocalBlobStore
from .catalog import Catalog
from .config import Settings
from .database import init_db, make_engine, make_session_factory, session_scope
from .notifier import Broadcaster, Notifier
from .orders import OrderCoordinator
from .status import StatusTransitionHandler
from .stock import StockLedger

logger = structlog.get_logger(__name__)


class AppContext:
    def __init__(self, settings: Settings, blobs: Optional[BlobStore] = None):
        self.settings = settings
        self.engine = make_engine(settings.database_url)
        init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)
        self.blobs = blobs or LocalBlobStore(settings.uploads_dir, settings.uploads_url_prefix)
        self.broadcaster = Broadcaster()
        self.notifier = Notifier(self.session_factory, self.broadcaster, workers=settings.notifier_workers)
        self.ledger = StockLedger()
        self.orders = OrderCoordinator(self.session_factory, self.ledger, self.notifier)
        self.statuses = StatusTransitionHandler(self.session_factory, self.notifier)
        self.catalog = Catalog(self.session_factory, self.blobs, self.notifier)
        self._closed = False
        logger.info("context_started", database=self.engine.url.render_as_string(hide_password=True))

    def session(self):
        return session_scope(self.session_factory)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.notifier.close()
        self.broadcaster.close()
        self.engine.dispose()
        logger.info("context_closed")
