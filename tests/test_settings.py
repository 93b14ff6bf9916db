import pytest
from pydantic import ValidationError

from notecalc.catalog import CatalogError, UnitCatalog, default_catalog
from notecalc.scope import NoteScope, ScopeStore
from notecalc.settings import EngineSettings


def test_defaults():
    s = EngineSettings()
    assert s.auto_recalculate and s.unit_system == "SI" and s.precision == 4
    assert not s.global_variables_enabled and not s.equation_rendering_enabled
    assert s.format_key == ("SI", 4)

def test_from_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NOTECALC_AUTO_RECALC", "false")
    monkeypatch.setenv("NOTECALC_UNIT_SYSTEM", "us")
    monkeypatch.setenv("NOTECALC_PRECISION", "2")
    monkeypatch.setenv("NOTECALC_GLOBAL_VARS", "yes")
    monkeypatch.setenv("NOTECALC_EQUATIONS", "1")
    monkeypatch.setenv("NOTECALC_CONSTANTS_PATH", str(tmp_path / "c.yaml"))
    s = EngineSettings.from_env()
    assert not s.auto_recalculate
    assert s.unit_system == "US" and s.precision == 2
    assert s.global_variables_enabled and s.equation_rendering_enabled
    assert s.constants_path.endswith("c.yaml")

def test_invalid_settings_are_rejected():
    with pytest.raises(ValidationError):
        EngineSettings(unit_system="metric")
    s = EngineSettings()
    with pytest.raises(ValidationError):
        s.precision = 40

def test_default_catalog():
    cat = default_catalog()
    assert cat.systems() == ["SI", "US"]
    assert list(cat.units_for_system("US"))[0] == "Length"
    assert {"system": "SI", "category": "Area", "name": "square meter",
            "symbol": "m²", "insert": "m^2"} in cat.list_units()

def test_catalog_rejects_bad_yaml():
    with pytest.raises(CatalogError):
        UnitCatalog.from_yaml_text("units: []")
    with pytest.raises(CatalogError):
        UnitCatalog.from_yaml_text("systems:\n  SI:\n    Length:\n      - { name: meter }\n")

def test_scope_downstream_and_consistency():
    scope = NoteScope()
    scope.set_dependencies("b", {"a"})
    scope.set_dependencies("c", {"b"})
    assert scope.downstream("a") == {"b", "c"}
    assert scope.set_dependencies("c", {"b"}) is False
    scope.set_dependencies("c", set())
    assert "b" not in scope.dependents
    assert scope.is_consistent()

def test_scope_store():
    store = ScopeStore()
    first = store.get("doc")
    assert store.get("doc") is first
    assert "doc" in store and len(store) == 1
    assert store.clear("doc") is True
    assert store.clear("doc") is False
    assert store.peek("doc") is None
