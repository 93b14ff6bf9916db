import pytest

from notecalc.engine import CalcEngine, block_key_for
from notecalc.models import CommentResult, ConversionResult, ErrorResult, ExpressionResult
from notecalc.settings import EngineSettings


def _trace(engine, doc, kind):
    return [s["detail"] for s in engine.last_trace(doc) if s["kind"] == kind]


def test_results_per_non_blank_line(engine):
    out = engine.evaluate_block("// masses\n\nm1 = 5 kg\n2 * m1\nm1 -> lb", "doc")
    assert [r.kind for r in out] == ["comment", "assignment", "expression", "conversion"]
    assert out[1].display == "5 kg"
    assert out[2].display == "10 kg"
    assert out[3].display == "11.0231 lb"

def test_same_block_twice_is_idempotent(engine):
    src = "a = 2 m\nb = a * 3\nb / 2\nb to ft"
    first = engine.evaluate_block(src, "doc")
    scope = engine.peek_scope("doc")
    deps = {k: set(v) for k, v in scope.depends_on.items()}
    cache = dict(scope.line_cache)

    second = engine.evaluate_block(src, "doc")
    assert second == first
    assert scope.depends_on == deps
    assert scope.line_cache == cache
    kinds = {s["kind"] for s in engine.last_trace("doc")}
    assert kinds == {"reuse", "cache_hit"}

def test_changed_input_propagates(engine):
    engine.evaluate_block("a = 1\nb = a + 1", "doc")
    out = engine.evaluate_block("a = 2\nb = a + 1", "doc")
    assert out[1].display == "3"
    names = {d["name"] for d in _trace(engine, "doc", "recompute")}
    assert names == {"a", "b"}

def test_unrelated_change_skips_dependents(engine):
    engine.evaluate_block("a = 1\nb = 5\nc = b + 1", "doc")
    engine.evaluate_block("a = 2\nb = 5\nc = b + 1", "doc")
    assert [d["name"] for d in _trace(engine, "doc", "recompute")] == ["a"]
    assert {d["name"] for d in _trace(engine, "doc", "reuse")} == {"b", "c"}

def test_change_seen_across_blocks(engine):
    engine.evaluate_block("width = 2 m", "doc", block_position=0)
    engine.evaluate_block("area2 = width * 3 m", "doc", block_position=5)
    engine.evaluate_block("width = 4 m", "doc", block_position=0)
    out = engine.evaluate_block("area2 = width * 3 m", "doc", block_position=5)
    assert out[0].display == "12 m^2"

def test_si_normalization(engine):
    out = engine.evaluate_block("m2 = 2 lb\nf = 10 lbf\nq = 15 gal/min", "doc")
    assert [r.display for r in out] == ["0.9072 kg", "44.4822 N", "0.0009 m^3/s"]

def test_us_normalization(session, store):
    engine = CalcEngine(EngineSettings(unit_system="US"), session=session, constants=store)
    out = engine.evaluate_block("mass = 5 kg\nf = 100 N\nq = 0.001 m^3/s\nt = 20 degC", "doc")
    assert [r.display for r in out] == ["11.0231 lb", "22.4809 lbf", "2.1189 ft^3/min", "68 °F"]

def test_derived_unit_is_named(engine):
    out = engine.evaluate_block("F = 2 kg * 3 m/s^2", "doc")
    assert out[0].display == "6 N"

def test_inline_conversion(engine):
    r = engine.evaluate_inline("72 km/h to m/s", "doc")
    assert isinstance(r, ConversionResult)
    assert r.display == "20 m/s"

def test_inline_sees_block_variables(engine):
    engine.evaluate_block("speed = 10 m/s", "doc")
    r = engine.evaluate_inline("speed * 2 s", "doc")
    assert isinstance(r, ExpressionResult)
    assert r.display == "20 m"

def test_inline_empty_is_blank_comment(engine):
    assert engine.evaluate_inline("   ", "doc") == CommentResult(text="")

def test_plain_number_conversion_passes_through(engine):
    out = engine.evaluate_block("12 -> m", "doc")
    assert out[0].display == "12"

def test_errors_stay_on_their_line(engine):
    out = engine.evaluate_block("a = 5\nb = a + undefinedVar\nc = 10 kg", "doc")
    assert isinstance(out[1], ErrorResult)
    assert "undefinedVar" in out[1].message
    assert out[1].source == "b = a + undefinedVar"
    assert out[2].display == "10 kg"
    assert "b" not in engine.peek_scope("doc").variables

def test_bad_conversion_and_mismatch_errors(engine):
    out = engine.evaluate_block("-> m\n5 kg -> m\n5 kg -> furlongz", "doc")
    assert out[0].message == "Bad convert syntax. Use: expr -> unit"
    assert out[1].message == "Cannot convert kg to m"
    assert out[2].message == "Unknown unit: furlongz"

def test_failed_reassignment_keeps_last_value(engine):
    engine.evaluate_block("x = 5 kg", "doc")
    out = engine.evaluate_block("x = 5 kg + nothing_here", "doc")
    assert isinstance(out[0], ErrorResult)
    scope = engine.peek_scope("doc")
    assert scope.variables["x"].display == "5 kg"
    assert "x" not in scope.formulas
    out = engine.evaluate_block("x = 5 kg", "doc")
    assert out[0].display == "5 kg"

def test_scopes_are_isolated(engine):
    engine.evaluate_block("load = 5 kg", "notes/a.md")
    engine.evaluate_block("load = 7 kg", "notes/b.md")
    assert engine.peek_scope("notes/a.md").variables["load"].display == "5 kg"
    assert engine.peek_scope("notes/b.md").variables["load"].display == "7 kg"
    out = engine.evaluate_block("y = load", "notes/c.md")
    assert isinstance(out[0], ErrorResult)

def test_graph_edges_are_pruned(engine):
    engine.evaluate_block("a = 1\nb = 2\nc = a + b", "doc")
    scope = engine.peek_scope("doc")
    assert scope.depends_on["c"] == {"a", "b"}
    engine.evaluate_block("a = 1\nb = 2\nc = a * 3", "doc")
    assert scope.depends_on["c"] == {"a"}
    assert "b" not in scope.dependents
    assert scope.dependents["a"] == {"c"}
    assert scope.is_consistent()

def test_removed_lines_leave_the_cache(engine):
    engine.evaluate_block("a = 1\na + 1\na + 2", "doc", block_position=0)
    scope = engine.peek_scope("doc")
    assert sorted(scope.line_cache) == ["pos:0:1", "pos:0:2"]
    engine.evaluate_block("a = 1\na + 1", "doc", block_position=0)
    assert sorted(scope.line_cache) == ["pos:0:1"]
    assert _trace(engine, "doc", "prune") == [{"keys": ["pos:0:2"]}]

def test_other_blocks_keep_their_cache(engine):
    engine.evaluate_block("1 + 1", "doc", block_position=0)
    engine.evaluate_block("2 + 2", "doc", block_position=9)
    assert sorted(engine.peek_scope("doc").line_cache) == ["pos:0:0", "pos:9:0"]

def test_settings_change_rerenders(engine):
    engine.evaluate_block("m = 5 kg\nm * 2", "doc")
    engine.settings.unit_system = "US"
    out = engine.evaluate_block("m = 5 kg\nm * 2", "doc")
    assert [r.display for r in out] == ["11.0231 lb", "22.0462 lb"]
    engine.settings.precision = 1
    out = engine.evaluate_block("m = 5 kg", "doc")
    assert out[0].display == "11 lb"

def test_without_auto_recalculate_each_block_starts_clean(session, store):
    engine = CalcEngine(EngineSettings(auto_recalculate=False), session=session, constants=store)
    engine.evaluate_block("width = 3", "doc")
    out = engine.evaluate_block("double = width * 2", "doc")
    assert out[0].message == "Undefined symbol: width"

def test_auto_recalculate_shares_scope(engine):
    engine.evaluate_block("width = 3", "doc")
    out = engine.evaluate_block("double = width * 2", "doc")
    assert out[0].display == "6"

def test_defining_line_tracks_position(engine):
    engine.evaluate_block("// header\nh = 2 m", "doc", block_position=10)
    var = engine.peek_scope("doc").variables["h"]
    assert var.defining_line.note_line == 12
    engine.evaluate_block("\n\n// header\nh = 2 m", "doc", block_position=10)
    assert engine.peek_scope("doc").variables["h"].defining_line.note_line == 14

def test_clear_scope_and_listeners(engine):
    seen = []
    unsubscribe = engine.subscribe(lambda doc, scope: seen.append((doc, scope is None)))
    engine.evaluate_block("x = 1", "doc")
    engine.clear_scope("doc")
    assert engine.peek_scope("doc") is None
    assert seen == [("doc", False), ("doc", True)]
    unsubscribe()
    engine.evaluate_block("x = 1", "doc")
    assert len(seen) == 2

def test_failing_listener_does_not_break_evaluation(engine):
    def boom(doc, scope):
        raise RuntimeError("listener bug")
    engine.subscribe(boom)
    out = engine.evaluate_block("x = 1", "doc")
    assert out[0].display == "1"

def test_clear_all_scopes(engine):
    engine.evaluate_block("x = 1", "a")
    engine.evaluate_block("x = 1", "b")
    engine.clear_all_scopes()
    assert engine.peek_scope("a") is None and engine.peek_scope("b") is None

def test_global_constants_bind_when_enabled(engine):
    engine.upsert_global_var("g0", "10 m/s^2")
    out = engine.evaluate_block("f = 2 kg * g0", "doc")
    assert isinstance(out[0], ErrorResult)
    engine.settings.global_variables_enabled = True
    out = engine.evaluate_block("f = 2 kg * g0", "doc")
    assert out[0].display == "20 N"

def test_local_variable_overrides_global(engine):
    engine.settings.global_variables_enabled = True
    engine.upsert_global_var("rate", "3")
    out = engine.evaluate_block("rate = 5\nrate * 2", "doc")
    assert out[1].display == "10"

def test_global_change_reaches_dependents(engine):
    engine.settings.global_variables_enabled = True
    engine.upsert_global_var("rate", "3")
    engine.evaluate_block("total = rate * 2", "doc")
    engine.upsert_global_var("rate", "4")
    out = engine.evaluate_block("total = rate * 2", "doc")
    assert out[0].display == "8"

def test_equation_rendering(engine):
    engine.settings.equation_rendering_enabled = True
    out = engine.evaluate_block("F = 2 kg * 3 m/s^2\nF -> kN", "doc")
    assert out[0].equation.symbolic.startswith("F = ")
    assert out[0].equation.result == "= 6\\,\\mathrm{N}"
    assert "\\to \\mathrm{kN}" in out[1].equation.symbolic
    assert out[1].equation.result == "= 0.006\\,\\mathrm{kN}"

def test_no_equation_when_disabled(engine):
    assert engine.evaluate_block("F = 2 kg", "doc")[0].equation is None

def test_block_keys():
    assert block_key_for("a = 1", 3) == "pos:3"
    assert block_key_for("a = 1") == block_key_for("a = 1")
    assert block_key_for("a = 1") != block_key_for("a = 2")

def test_recalculate_note(engine):
    note = "\n".join([
        "# Beam",
        "```calc",
        "L = 3 m",
        "```",
        "text",
        "~~~calc",
        "w = L * 2",
        "oops = nope + 1",
        "~~~",
    ])
    report = engine.recalculate_note(note, "beam.md")
    assert [[r.kind for r in block] for block in report.blocks] == [["assignment"], ["assignment", "error"]]
    assert report.blocks[1][0].display == "6 m"
    assert report.errors == ["Error: Undefined symbol: nope"]
    assert report.summary == "Recalculated with 1 error. Error: Undefined symbol: nope"
    assert engine.peek_scope("beam.md").variables["w"].defining_line.note_line == 6

def test_recalculate_note_without_blocks(engine):
    report = engine.recalculate_note("just prose", "doc")
    assert report.summary == "No calc blocks found in this note."

def test_list_variables(engine):
    engine.upsert_global_var("Beta", "2 m")
    engine.evaluate_block("alpha = 1\ngamma = 3 kg", "doc", block_position=0)
    rows = engine.list_variables("doc")
    assert [(r.name, r.group) for r in rows] == [("alpha", "local"), ("Beta", "global"), ("gamma", "local")]
    assert rows[0].source_line == 1
    assert [r.name for r in engine.list_variables("doc", filter="global")] == ["Beta"]
    with pytest.raises(ValueError):
        engine.list_variables("doc", filter="nope")

def test_scope_completions(engine):
    engine.settings.global_variables_enabled = True
    engine.upsert_global_var("density", "1000 kg/m^3")
    engine.evaluate_block("depth = 2 m\nwidth = 3 m", "doc")
    labels = [c.label for c in engine.scope_completions("doc", "de")]
    assert labels == ["density", "depth"]
    assert len(engine.scope_completions("doc", "zzz")) == 3
    engine.evaluate_block("density = 5", "doc")
    groups = {c.label: c.group for c in engine.scope_completions("doc")}
    assert groups["density"] == "local"

def test_unit_listings(engine):
    known = engine.list_known_units()
    assert "kg" in known and "lbf" in known
    library = engine.unit_library()
    assert "Length" in library
    assert library["Temperature"][1].insert == "degC"
    assert [u.symbol for u in engine.unit_library("US")["Force"]] == ["lbf"]

def test_inline_cache_holds_one_statement(engine):
    for i in range(200):
        engine.evaluate_inline(f"{i} m + 1 m", "doc")
    cache = engine.peek_scope("doc").line_cache
    assert list(cache) == ["inline:0"]
    assert cache["inline:0"].display == "200 m"

def test_inline_repeat_hits_cache(engine):
    engine.evaluate_inline("2 m * 3", "doc")
    engine.evaluate_inline("2 m * 3", "doc")
    assert [s["kind"] for s in engine.last_trace("doc")] == ["cache_hit"]

def test_inline_assignment_drops_previous_inline_entry(engine):
    engine.evaluate_block("1 + 1", "doc", block_position=0)
    engine.evaluate_inline("5 kg * 2", "doc")
    engine.evaluate_inline("w = 5 kg", "doc")
    assert sorted(engine.peek_scope("doc").line_cache) == ["pos:0:0"]

def test_trace_steps_carry_block_and_line(engine):
    engine.evaluate_block("// note\na = 1\na * 2\nb = nope", "doc", block_position=4)
    steps = engine.last_trace("doc")
    assert [(s["kind"], s["line"]) for s in steps] == [("recompute", 1), ("cache_miss", 2), ("error", 3)]
    assert {s["block"] for s in steps} == {"pos:4"}
    assert steps[2]["detail"] == {"message": "Undefined symbol: nope"}
