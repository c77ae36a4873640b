"""
Portfolio Planner - Schedule API
================================

Endpoints REST para o schedule engine (Gantt view).

Endpoints:
- GET  /schedule/status                 - Estado do engine e flags ativas
- POST /schedule/cpm                    - CPM sobre um snapshot enviado no body
- GET  /schedule/cpm                    - CPM sobre o store em memória
- POST /schedule/violations             - Flags de violação por dependência
- POST /schedule/dependencies/validate  - Validação de uma nova dependência
- PUT  /schedule/snapshot               - Carrega registos no store
- POST /schedule/move                   - Move uma entidade (cascata)
- POST /schedule/resize                 - Redimensiona uma entidade (cascata)
- POST /schedule/undo                   - Desfaz a última alteração
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..feature_flags import FeatureFlags
from .change_propagation import ChangePropagationEngine, PropagationResult, ScheduleChange
from .cpm_engine import compute_cpm
from .critical_path import summarize_slack
from .entity_store import InMemoryEntityStore
from .errors import InvalidChangeError, PropagationError, ScheduleEngineError
from .graph_builder import build_schedule_graph, validate_new_dependency
from .schedule_model import EntityKind, EntityRef, ScheduleGraph
from .undo_log import UndoLog
from .violation_detector import detect_violations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedule", tags=["Schedule"])


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST/RESPONSE MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class ScheduleSnapshot(BaseModel):
    """Raw records as served by the persistence layer (camelCase fields)."""
    projects: List[Dict[str, Any]] = Field(default_factory=list)
    milestones: List[Dict[str, Any]] = Field(default_factory=list)
    dependencies: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "example": {
                "projects": [
                    {"id": 1, "name": "A", "startDate": "2025-01-01", "endDate": "2025-01-10"},
                    {"id": 2, "name": "B", "startDate": "2025-01-05", "endDate": "2025-01-15"},
                ],
                "milestones": [],
                "dependencies": [
                    {
                        "id": 1,
                        "predecessorType": "project", "predecessorId": 1, "predecessorPoint": "end",
                        "successorType": "project", "successorId": 2, "successorPoint": "start",
                        "dependencyType": "FS", "lagDays": 2, "isActive": True,
                    }
                ],
            }
        }
    }


class CPMResponse(BaseModel):
    """CPM nodes, critical path and violation flags."""
    nodes: List[Dict[str, Any]]
    critical_path: List[str]
    project_finish: Optional[date] = None
    slack: Dict[str, Any]
    violations: Dict[int, bool]
    broken_dependencies: List[int] = []
    warnings: List[str] = []


class MoveRequest(BaseModel):
    """
    Move request.

    `new_date` wins over `delta_days`. For milestones it is the target
    planned end (clamped when milestone constraints are on); for projects
    the target start.
    """
    entity_kind: EntityKind
    entity_id: int
    delta_days: int = Field(default=0, description="Dias a deslocar (negativo = antecipar)")
    new_date: Optional[date] = None
    description: str = ""


class ResizeRequest(BaseModel):
    """Resize request; an omitted anchor keeps its date."""
    entity_kind: EntityKind
    entity_id: int
    new_start: Optional[date] = None
    new_end: Optional[date] = None
    description: str = ""


class ChangeResponse(BaseModel):
    """Outcome of a move/resize/undo."""
    success: bool
    changed: bool
    record: Optional[Dict[str, Any]] = None
    updates: List[Dict[str, Any]] = []
    can_undo: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# GLOBAL SERVICE INSTANCES
# ═══════════════════════════════════════════════════════════════════════════════

_entity_store: Optional[InMemoryEntityStore] = None
_undo_log: Optional[UndoLog] = None


def get_entity_store() -> InMemoryEntityStore:
    """Get or create the in-memory entity store."""
    global _entity_store
    if _entity_store is None:
        _entity_store = InMemoryEntityStore()
    return _entity_store


def get_undo_log() -> UndoLog:
    """Get or create the single-slot undo log."""
    global _undo_log
    if _undo_log is None:
        _undo_log = UndoLog()
    return _undo_log


def get_engine(
    store: InMemoryEntityStore = Depends(get_entity_store),
    undo_log: UndoLog = Depends(get_undo_log),
) -> ChangePropagationEngine:
    return ChangePropagationEngine(store, undo_log)


def reset_schedule_state() -> None:
    """Drop the store and undo slot (tests, snapshot reloads)."""
    global _entity_store, _undo_log
    _entity_store = None
    _undo_log = None


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _cpm_response(graph: ScheduleGraph) -> CPMResponse:
    result = compute_cpm(graph)
    nodes = sorted(result.nodes.values(), key=lambda n: (n.earliest_start, n.ref))
    return CPMResponse(
        nodes=[node.to_dict() for node in nodes],
        critical_path=sorted(ref.key for ref in result.critical_path),
        project_finish=result.project_finish,
        slack=summarize_slack(result).to_dict(),
        violations=detect_violations(graph),
        broken_dependencies=[d.id for d in result.broken_dependencies],
        warnings=graph.warnings + result.warnings,
    )


def _change_response(result: Optional[PropagationResult], undo_log: UndoLog) -> ChangeResponse:
    if result is None:
        return ChangeResponse(success=True, changed=False, can_undo=undo_log.can_undo)
    return ChangeResponse(
        success=True,
        changed=True,
        record=result.record.to_dict(),
        updates=[u.to_dict() for u in result.updates],
        can_undo=undo_log.can_undo,
    )


def _raise_http(e: ScheduleEngineError) -> None:
    if isinstance(e, InvalidChangeError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PropagationError):
        raise HTTPException(
            status_code=502,
            detail={
                "error": str(e),
                "applied_updates": [u.to_dict() for u in e.applied_updates],
                "message": "Propagation aborted; re-fetch to reconcile",
            },
        )
    raise HTTPException(status_code=502, detail=str(e))


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/status")
async def get_schedule_status(
    store: InMemoryEntityStore = Depends(get_entity_store),
    undo_log: UndoLog = Depends(get_undo_log),
):
    """Get schedule engine status."""
    return {
        "service": "Schedule Engine",
        "status": "operational",
        "dependency_types": ["FS", "SS", "FF", "SF"],
        "store": {
            "projects": len(store.projects),
            "milestones": len(store.milestones),
            "dependencies": len(store.dependencies),
        },
        "can_undo": undo_log.can_undo,
        "flags": FeatureFlags.to_dict(),
    }


@router.post("/cpm", response_model=CPMResponse)
async def compute_snapshot_cpm(body: ScheduleSnapshot):
    """
    Calcula o CPM para um snapshot.

    Devolve earliest/latest por nó, slack, caminho crítico e violações.
    """
    graph = build_schedule_graph(body.projects, body.milestones, body.dependencies)
    return _cpm_response(graph)


@router.get("/cpm", response_model=CPMResponse)
async def compute_store_cpm(store: InMemoryEntityStore = Depends(get_entity_store)):
    """Calcula o CPM sobre o store em memória."""
    graph = await store.load_graph()
    return _cpm_response(graph)


@router.post("/violations")
async def compute_violations(body: ScheduleSnapshot) -> Dict[str, Any]:
    """Flags de violação por dependência, com as datas atuais."""
    graph = build_schedule_graph(body.projects, body.milestones, body.dependencies)
    flags = detect_violations(graph)
    return {
        "violations": flags,
        "violated": sorted(dep_id for dep_id, violated in flags.items() if violated),
        "warnings": graph.warnings,
    }


@router.post("/dependencies/validate")
async def validate_dependency(
    body: Dict[str, Any],
    store: InMemoryEntityStore = Depends(get_entity_store),
) -> Dict[str, Any]:
    """Validate a dependency before it is created (missing endpoint, self, duplicate, cycle)."""
    graph = await store.load_graph()
    problems = validate_new_dependency(graph, body)
    return {"valid": not problems, "problems": problems}


@router.put("/snapshot")
async def load_snapshot(
    body: ScheduleSnapshot,
    store: InMemoryEntityStore = Depends(get_entity_store),
    undo_log: UndoLog = Depends(get_undo_log),
) -> Dict[str, Any]:
    """Replace the store contents. Clears the undo slot."""
    projects, milestones, dependencies = store.load(body.projects, body.milestones, body.dependencies)
    undo_log.clear()
    return {
        "success": True,
        "projects": projects,
        "milestones": milestones,
        "dependencies": dependencies,
    }


@router.post("/move", response_model=ChangeResponse)
async def move_entity(
    body: MoveRequest,
    engine: ChangePropagationEngine = Depends(get_engine),
):
    """
    Move uma entidade e propaga pelas dependências.

    Projetos levam os milestones consigo; sucessores são ajustados por tipo
    de dependência (FS/SS/FF/SF).
    """
    ref = EntityRef(body.entity_kind, body.entity_id)
    try:
        if body.new_date is not None and ref.kind == EntityKind.MILESTONE:
            result = await engine.apply_milestone_move(ref, body.new_date)
        elif body.new_date is not None:
            result = await engine.apply_change(ScheduleChange.move_to(ref, body.new_date, body.description))
        else:
            result = await engine.apply_move(ref, body.delta_days, description=body.description)
    except ScheduleEngineError as e:
        _raise_http(e)
    return _change_response(result, engine.undo_log)


@router.post("/resize", response_model=ChangeResponse)
async def resize_entity(
    body: ResizeRequest,
    engine: ChangePropagationEngine = Depends(get_engine),
):
    """Redimensiona uma entidade; milestones mantêm a posição relativa."""
    ref = EntityRef(body.entity_kind, body.entity_id)
    try:
        result = await engine.apply_resize(ref, body.new_start, body.new_end, description=body.description)
    except ScheduleEngineError as e:
        _raise_http(e)
    return _change_response(result, engine.undo_log)


@router.post("/undo", response_model=ChangeResponse)
async def undo_last_change(engine: ChangePropagationEngine = Depends(get_engine)):
    """Desfaz a última alteração. Sem alteração registada é um no-op."""
    try:
        record = await engine.undo()
    except ScheduleEngineError as e:
        _raise_http(e)
    if record is None:
        return ChangeResponse(success=True, changed=False, can_undo=False)
    return ChangeResponse(success=True, changed=True, record=record.to_dict(), can_undo=engine.undo_log.can_undo)
