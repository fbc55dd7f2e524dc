from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from odesolver import (
    ODESolverError, SolverController, ToleranceConfig, create_scope,
)

app = FastAPI(title="ODESolver API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SolveRequest(BaseModel):
    equations: list[str]
    initial_conditions: dict[str, float]
    variable: str = "x"
    start: float = 0.0
    end: float = 1.0
    initial_step: float = 0.1
    atol: float = 1e-6
    rtol: float = 1e-6
    adaptive: bool = True


class RunSummary(BaseModel):
    accepted: int
    rejected: int
    runtime_ms: float


class SolveResponse(BaseModel):
    variables: list[str]
    base_variables: list[str]
    points: list[dict[str, float]]
    summary: RunSummary


class ScopeRequest(BaseModel):
    expression: str


@app.post("/api/solve", response_model=SolveResponse)
def solve(req: SolveRequest):
    equations = [eq.strip() for eq in req.equations if eq.strip()]
    if not equations:
        raise HTTPException(status_code=400, detail="At least one equation is required.")

    try:
        solver = SolverController(tolerance=ToleranceConfig(atol=req.atol, rtol=req.rtol))
        solver.set_range(req.variable, req.start, req.end, req.initial_step)
        solver.set_equations(equations)
        solver.set_initial_conditions(req.initial_conditions)
        points = solver.run(adaptive=req.adaptive)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ODESolverError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Solver error: {str(e)}")

    stats = solver.last_stats
    return {
        "variables": solver.variables,
        "base_variables": solver.base_variables,
        "points": points,
        "summary": {
            "accepted": stats.accepted,
            "rejected": stats.rejected,
            "runtime_ms": stats.runtime_ms,
        },
    }


@app.post("/api/scope")
def scope(req: ScopeRequest):
    try:
        return {"scope": create_scope(req.expression)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
