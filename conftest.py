"""Root conftest: shared PostgreSQL fixtures for DB-backed tests.

Unit tests never touch these.  Integration tests request
``provisioned_postgres_pool`` (an empty database) or ``migrated_postgres_pool``
(the core schema applied) and are skipped when Docker is unavailable.
"""

from __future__ import annotations

import logging
import shutil
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

docker_available = shutil.which("docker") is not None
logger = logging.getLogger(__name__)

_TESTCONTAINER_STOP_RETRY_ATTEMPTS = 4
_TESTCONTAINER_STOP_BASE_DELAY_SECONDS = 0.1
_TRANSIENT_DOCKER_TEARDOWN_ERROR_MARKERS = (
    "did not receive an exit event",
    "no such container",
    "removal of container",
    "is already in progress",
)


def _is_transient_teardown_error(exc: BaseException) -> bool:
    text = f"{getattr(exc, 'explanation', '') or ''} {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_DOCKER_TEARDOWN_ERROR_MARKERS)


def _patch_testcontainers_stop_with_retry() -> None:
    """Retry container removal on known Docker daemon teardown races."""
    try:
        from testcontainers.core.container import DockerContainer
    except ImportError:
        return

    if getattr(DockerContainer.stop, "_jobtrack_retry_patch", False):
        return

    original_stop = DockerContainer.stop

    def _stop_with_retry(self: Any, force: bool = True, delete_volume: bool = True) -> None:
        delay = _TESTCONTAINER_STOP_BASE_DELAY_SECONDS
        for attempt in range(1, _TESTCONTAINER_STOP_RETRY_ATTEMPTS + 1):
            try:
                original_stop(self, force=force, delete_volume=delete_volume)
                return
            except Exception as exc:
                if attempt >= _TESTCONTAINER_STOP_RETRY_ATTEMPTS or not _is_transient_teardown_error(
                    exc
                ):
                    raise
                logger.warning("Transient Docker teardown race (attempt %s): %s", attempt, exc)
                time.sleep(delay)
                delay *= 2

    _stop_with_retry._jobtrack_retry_patch = True  # type: ignore[attr-defined]
    DockerContainer.stop = _stop_with_retry


_patch_testcontainers_stop_with_retry()


def _unique_test_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """One Postgres server per session; each test provisions its own database."""
    if not docker_available:
        pytest.skip("Docker not available")

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


def _make_provisioner(
    postgres_container: PostgresContainer, *, migrate: bool
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    from jobtrack.db import Database
    from jobtrack.migrations import run_migrations

    @asynccontextmanager
    async def _provision(
        *,
        min_pool_size: int = 1,
        max_pool_size: int = 3,
    ) -> AsyncIterator[Pool]:
        db = Database(
            db_name=_unique_test_db_name(),
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            min_pool_size=min_pool_size,
            max_pool_size=max_pool_size,
        )
        await db.provision()
        if migrate:
            await run_migrations(db.url)
        pool = await db.connect()
        try:
            yield pool
        finally:
            await db.close()

    return _provision


@pytest.fixture
def provisioned_postgres_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Fresh empty database per use::

    async with provisioned_postgres_pool() as pool:
        ...
    """
    return _make_provisioner(postgres_container, migrate=False)


@pytest.fixture
def migrated_postgres_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Fresh database with the core migration chain applied."""
    return _make_provisioner(postgres_container, migrate=True)
