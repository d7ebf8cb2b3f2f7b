from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request
from supabase import Client, ClientOptions, create_client

from .config import DEFAULT_STORE_CONFIG, StoreConfig
from .executor import BoundedExecutor

logger = logging.getLogger(__name__)


def create_store_client(config: StoreConfig = DEFAULT_STORE_CONFIG) -> Client:
    """Build the Supabase client used for every store round trip."""
    missing = [
        name
        for name, value in {
            "SUPABASE_URL": config.url.strip(),
            "SUPABASE_SERVICE_ROLE": config.service_role_key.strip(),
        }.items()
        if not value
    ]
    if missing:
        raise RuntimeError("Missing Supabase credential(s): " + ", ".join(missing))

    options = ClientOptions(
        schema=config.schema,
        auto_refresh_token=False,
        persist_session=False,
    )
    client = create_client(config.url.strip(), config.service_role_key.strip(), options=options)
    logger.info("Initialized Supabase client for schema '%s'", config.schema)
    return client


@dataclass
class Store:
    """Long-lived store handle shared by all requests.

    ``client`` is any object exposing the supabase-py query interface
    (``table(...)`` and ``rpc(...)``), which lets tests pass a fake.
    """

    client: Any
    query_timeout_ms: int = DEFAULT_STORE_CONFIG.query_timeout_ms
    controller_timeout_ms: int = DEFAULT_STORE_CONFIG.controller_timeout_ms
    max_workers: int = DEFAULT_STORE_CONFIG.max_workers
    executor: BoundedExecutor = field(init=False)
    controller_executor: BoundedExecutor = field(init=False)

    def __post_init__(self) -> None:
        # Composites run on their own pool so they never wait on a worker
        # slot held by themselves.
        self.executor = BoundedExecutor(self.max_workers, name="store")
        self.controller_executor = BoundedExecutor(self.max_workers, name="controller")

    def run(self, operation, *, label: str = "store operation"):
        """Execute a single store round trip under the query deadline."""
        return self.executor.run(operation, self.query_timeout_ms, label=label)

    def run_composite(self, operation, *, label: str = "request"):
        """Execute a controller-level composite under the controller deadline."""
        return self.controller_executor.run(operation, self.controller_timeout_ms, label=label)

    def close(self) -> None:
        self.executor.shutdown()
        self.controller_executor.shutdown()

    @classmethod
    def from_config(cls, config: StoreConfig = DEFAULT_STORE_CONFIG) -> Store:
        return cls(
            client=create_store_client(config),
            query_timeout_ms=config.query_timeout_ms,
            controller_timeout_ms=config.controller_timeout_ms,
            max_workers=config.max_workers,
        )


_store_lock = threading.Lock()


def get_store(request: Request) -> Store:
    """FastAPI dependency returning the application's store handle, built on first use."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        with _store_lock:
            store = getattr(request.app.state, "store", None)
            if store is None:
                store = Store.from_config()
                request.app.state.store = store
    return store
