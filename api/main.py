# --- Note Calc: Calculation Engine API (FastAPI) -------------------------------
# Purpose: HTTP surface for the document side: evaluate calc blocks and inline
# statements against per-note scopes, manage scopes and global constants, and
# introspect units.
# ------------------------------------------------------------------------------

from __future__ import annotations
from dataclasses import asdict
from typing import List, Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from notecalc.engine import CalcEngine
from notecalc.errors import ConstantError, ValidationError
from notecalc.models import ConstantView, LineResult, NoteReport, TraceView, VariableRow
from notecalc.notes import update_variable_assignment
from notecalc.settings import EngineSettings

# Engine configured from NOTECALC_* environment variables (.env supported)
_settings = EngineSettings.from_env()
_engine = CalcEngine(_settings)

app = FastAPI(title="Note Calc Engine API")

# ----------------------------- Schemas ----------------------------------------
class EvaluateRequest(BaseModel):
    # Raw calc block text plus the note it belongs to.
    source: str
    document_id: str = "untitled"
    block_position: Optional[int] = None

class InlineRequest(BaseModel):
    expression: str
    document_id: str = "untitled"

class RecalculateRequest(BaseModel):
    # Full markdown of a note; every calc block is evaluated in order.
    note: str
    document_id: str = "untitled"

class ConstantRequest(BaseModel):
    expression: str

class EvaluateResponse(BaseModel):
    document_id: str
    results: List[LineResult]

class InlineResponse(BaseModel):
    document_id: str
    result: LineResult

class RecalculateResponse(BaseModel):
    document_id: str
    report: NoteReport
    summary: str

# ----------------------------- Routes -----------------------------------------
@app.get("/health")
def health(): return {"ok": True}

@app.post("/evaluate", response_model=EvaluateResponse)
def evaluate(req: EvaluateRequest):
    """Evaluate one calc block; one result per non-blank line, in order."""
    results = _engine.evaluate_block(req.source, req.document_id, block_position=req.block_position)
    return EvaluateResponse(document_id=req.document_id, results=results)

@app.post("/inline", response_model=InlineResponse)
def inline(req: InlineRequest):
    """Evaluate one free-standing statement against the note's scope."""
    result = _engine.evaluate_inline(req.expression, req.document_id)
    return InlineResponse(document_id=req.document_id, result=result)

@app.post("/recalculate", response_model=RecalculateResponse)
def recalculate(req: RecalculateRequest):
    report = _engine.recalculate_note(req.note, req.document_id)
    return RecalculateResponse(document_id=req.document_id, report=report, summary=report.summary)

@app.delete("/scopes/{document_id:path}")
def clear_scope(document_id: str):
    _engine.clear_scope(document_id)
    return {"ok": True}

@app.delete("/scopes")
def clear_all_scopes():
    _engine.clear_all_scopes()
    return {"ok": True}

@app.get("/variables/{document_id:path}", response_model=List[VariableRow])
def list_variables(document_id: str, filter: str = "all"):
    """Local variables of a note and/or global constants, sorted by name."""
    if filter not in ("all", "local", "global"):
        raise HTTPException(status_code=400, detail=f"Unknown filter: {filter}")
    return _engine.list_variables(document_id, filter=filter)

@app.get("/trace/{document_id:path}", response_model=TraceView)
def last_trace(document_id: str):
    return TraceView(document_id=document_id, steps=_engine.last_trace(document_id))

@app.get("/globals", response_model=List[ConstantView])
def list_globals():
    return [ConstantView.of(c) for c in _engine.list_global_vars()]

@app.put("/globals/{name}", response_model=ConstantView)
def upsert_global(name: str, req: ConstantRequest):
    """
    Create or replace a global constant.
    400: illegal name, empty expression, or the expression failed to evaluate.
    """
    try:
        return ConstantView.of(_engine.upsert_global_var(name, req.expression))
    except ConstantError as e:
        raise HTTPException(status_code=400, detail=e.message)

@app.delete("/globals/{name}")
def delete_global(name: str):
    try:
        removed = _engine.delete_global_var(name)
    except ConstantError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"ok": True, "removed": removed}

@app.get("/units")
def list_units(system: Optional[str] = None):
    """Known unit symbols from the registry plus the picker library."""
    system = system or _settings.unit_system
    if system not in _engine.catalog.systems():
        raise HTTPException(status_code=400, detail=f"Unknown unit system: {system}")
    library = {cat: [asdict(u) for u in units] for cat, units in _engine.unit_library(system).items()}
    return {"system": system, "known": _engine.list_known_units(), "library": library}

class WriteBackRequest(BaseModel):
    note: str
    magnitude: str
    unit: str = ""
    source_line: Optional[int] = None

@app.post("/writeback/{name}")
def write_back(name: str, req: WriteBackRequest):
    """Rewrite `name = ...` in the note text; 404 when no calc block assigns it."""
    try:
        text = update_variable_assignment(req.note, name, req.magnitude, req.unit, req.source_line)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    if text is None:
        raise HTTPException(status_code=404, detail=f"No assignment of {name} in a calc block.")
    return {"note": text}
