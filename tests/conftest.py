import pytest

from notecalc.constants import GlobalConstantStore, InMemoryConstantFile
from notecalc.engine import CalcEngine
from notecalc.settings import EngineSettings
from notecalc.units import UnitSession


@pytest.fixture
def session():
    return UnitSession()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def constants_file():
    return InMemoryConstantFile()


@pytest.fixture
def store(session, settings, constants_file):
    return GlobalConstantStore(session, settings, file=constants_file)


@pytest.fixture
def engine(settings, session, store):
    return CalcEngine(settings, session=session, constants=store)
