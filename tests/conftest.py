from __future__ import annotations

from collections.abc import Callable

import pytest

from dormant.config import Settings
from dormant.model import InstanceDescriptor
from dormant.workflows import Orchestrator
from tests.fakes import FakeChannel, FakeCompute, FakeDns, FakeNotifier, FakeStore, make_instance, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def dns() -> FakeDns:
    return FakeDns()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


type OrchestratorFactory = Callable[[InstanceDescriptor], tuple[Orchestrator, FakeCompute]]


@pytest.fixture
def orchestrator_for(
    settings: Settings,
    channel: FakeChannel,
    store: FakeStore,
    dns: FakeDns,
    notifier: FakeNotifier,
) -> OrchestratorFactory:
    """Build an orchestrator over a fake compute plane holding ``instance``."""

    def _build(instance: InstanceDescriptor | None = None) -> tuple[Orchestrator, FakeCompute]:
        compute = FakeCompute(instance or make_instance())
        orchestrator = Orchestrator(
            compute,
            channel,
            store,
            dns=dns,
            notifier=notifier,
            settings=settings,
        )
        return orchestrator, compute

    return _build
