import pytest

import chimerascan.models  # noqa: F401 register tables on Base.metadata
from chimerascan.config import Settings
from chimerascan.database import Base, make_engine, make_session_factory
from chimerascan.enrichment import Enricher
from chimerascan.reports import ReportGenerator
from chimerascan.worker import ScanManager

from .helpers import FakeInference, FakeRunner


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'scans.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'scans.db'}",
        reports_dir=str(tmp_path / "reports"),
        max_workers=2,
    )


@pytest.fixture
def make_manager(session_factory, settings):
    managers = []

    def factory(runner=None, inference=None, reports=None, executor=None, **overrides):
        for key, value in overrides.items():
            setattr(settings, key, value)
        manager = ScanManager(
            session_factory=session_factory,
            runner=runner or FakeRunner(),
            enricher=Enricher(inference or FakeInference()),
            reports=reports or ReportGenerator(settings.reports_dir),
            settings=settings,
            executor=executor,
        )
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.shutdown(wait=True)
