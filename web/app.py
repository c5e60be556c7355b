"""Photo Arena - FastAPI service.

Serves pairs to voters, records votes, and exposes the admin, stats and
ranking views. Bradley-Terry and Monte Carlo rankings are computed as
background tasks; GET /api/v1/rankings returns the latest finished run.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator, model_validator

# Add parent directory to sys.path so the arena and analysis packages import
_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from analysis.bt_ranking import RankingResult
from analysis.monte_carlo import SimulationResult
from arena.config import ArenaConfig
from arena.errors import (
    ConcurrentUpdateConflict,
    InsufficientItemsError,
    PersistenceError,
    UnknownItemError,
)
from arena.models import Bucket, Category, RatingRecord
from arena.scheduler import PairStatus
from arena.service import BRADLEY_TERRY, MONTE_CARLO, ArenaService

logger = logging.getLogger(__name__)


def _non_empty(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Value cannot be empty")
    return v


# -- Request / response models ---------------------------------------------------


class ItemCreate(BaseModel):
    id: str = Field(..., description="Item id, e.g. a storage object key")
    url: str = Field(..., description="Public URL of the photo")

    @field_validator("id", "url")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        return _non_empty(v)


class ItemPatch(BaseModel):
    active: bool


class BucketOut(BaseModel):
    elo: int
    glicko: float
    rd: float
    comparisons: int
    wins: int
    losses: int

    @classmethod
    def from_bucket(cls, b: Bucket) -> BucketOut:
        return cls(
            elo=b.elo,
            glicko=round(b.glicko, 2),
            rd=round(b.rd, 2),
            comparisons=b.comparisons,
            wins=b.wins,
            losses=b.losses,
        )


class ItemOut(BaseModel):
    id: str
    url: str
    active: bool
    version: int
    overall: BucketOut
    male: BucketOut
    female: BucketOut

    @classmethod
    def from_record(cls, r: RatingRecord) -> ItemOut:
        return cls(
            id=r.id,
            url=r.url,
            active=r.active,
            version=r.version,
            overall=BucketOut.from_bucket(r.overall),
            male=BucketOut.from_bucket(r.male),
            female=BucketOut.from_bucket(r.female),
        )


class PairRequest(BaseModel):
    voter_id: str | None = None
    segment: str | None = None


class PairResponse(BaseModel):
    exhausted: bool = False
    items: list[ItemOut] = Field(default_factory=list)


class VoteRequest(BaseModel):
    voter_id: str
    segment: str | None = None
    winner_id: str
    loser_id: str

    @field_validator("voter_id", "winner_id", "loser_id")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        return _non_empty(v)

    @model_validator(mode="after")
    def validate_distinct(self) -> VoteRequest:
        if self.winner_id == self.loser_id:
            raise ValueError("winner_id and loser_id must differ")
        return self


class VoteResponse(BaseModel):
    winner: ItemOut
    loser: ItemOut
    attempts: int


class StatsResponse(BaseModel):
    category: str
    total_votes: int
    top: list[ItemOut]


class VoterResponse(BaseModel):
    voter_id: str
    votes_cast: int
    unlocked: bool
    remaining: int


class RefreshRequest(BaseModel):
    segment: str | None = None
    seed: int | None = None


class BTEntryOut(BaseModel):
    item_id: str
    rank: int
    strength: float
    p_top_k: float
    p_exact_rank: float
    wins: int
    comparisons: int


class BTOut(BaseModel):
    converged: bool
    iterations: int
    n_votes: int
    n_bootstrap: int
    top_k: int
    entries: list[BTEntryOut]

    @classmethod
    def from_result(cls, result: RankingResult) -> BTOut:
        return cls(
            converged=result.converged,
            iterations=result.iterations,
            n_votes=result.n_votes,
            n_bootstrap=result.n_bootstrap,
            top_k=result.top_k,
            entries=[
                BTEntryOut(
                    item_id=e.item_id,
                    rank=e.rank + 1,
                    strength=round(e.strength, 6),
                    p_top_k=e.p_top_k,
                    p_exact_rank=e.p_exact_rank,
                    wins=e.wins,
                    comparisons=e.comparisons,
                )
                for e in result.entries
            ],
        )


class MCOut(BaseModel):
    trials: int
    top_probabilities: dict[str, float]
    exact_rank_probabilities: dict[str, float]
    median_ranks: dict[str, int]

    @classmethod
    def from_result(cls, result: SimulationResult) -> MCOut:
        return cls(
            trials=result.trials,
            top_probabilities=result.top_probabilities,
            exact_rank_probabilities=result.exact_rank_probabilities,
            median_ranks=result.median_ranks,
        )


class RankingsResponse(BaseModel):
    status: str
    category: str
    bradley_terry: BTOut | None = None
    monte_carlo: MCOut | None = None


# -- Shared logic ----------------------------------------------------------------


def get_service(request: Request) -> ArenaService:
    return request.app.state.service


def _vote_logic(service: ArenaService, req: VoteRequest) -> VoteResponse:
    """Submit a vote, replaying it from a fresh read on version conflicts."""
    attempts = max(1, service.config.vote_retry_attempts)
    for attempt in range(1, attempts + 1):
        try:
            outcome = service.submit_vote(req.voter_id, req.segment, req.winner_id, req.loser_id)
        except ConcurrentUpdateConflict as e:
            logger.info("Vote conflict (attempt %d/%d): %s", attempt, attempts, e)
            continue
        except UnknownItemError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
        return VoteResponse(
            winner=ItemOut.from_record(outcome.winner),
            loser=ItemOut.from_record(outcome.loser),
            attempts=attempt,
        )

    raise HTTPException(
        status_code=409,
        detail=f"Vote conflicted with concurrent updates {attempts} times; retry later",
    )


# -- API v1 router ---------------------------------------------------------------

api_v1 = APIRouter(prefix="/api/v1")


@api_v1.post("/items", response_model=ItemOut, status_code=201)
def api_add_item(req: ItemCreate, service: ArenaService = Depends(get_service)) -> ItemOut:
    try:
        return ItemOut.from_record(service.add_item(req.id, req.url))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")


@api_v1.get("/items", response_model=list[ItemOut])
def api_list_items(service: ArenaService = Depends(get_service)) -> list[ItemOut]:
    records = sorted(service.store.fetch_all_items(), key=lambda r: (-r.overall.elo, r.id))
    return [ItemOut.from_record(r) for r in records]


@api_v1.patch("/items/{item_id}", response_model=ItemOut)
def api_patch_item(
    item_id: str, req: ItemPatch, service: ArenaService = Depends(get_service),
) -> ItemOut:
    try:
        return ItemOut.from_record(service.set_active(item_id, req.active))
    except UnknownItemError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")


@api_v1.post("/pair", response_model=PairResponse)
def api_pair(req: PairRequest, service: ArenaService = Depends(get_service)) -> PairResponse:
    try:
        result = service.next_pair(req.voter_id, req.segment)
    except InsufficientItemsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
    if result is PairStatus.EXHAUSTED:
        return PairResponse(exhausted=True)
    return PairResponse(items=[ItemOut.from_record(r) for r in result])


@api_v1.post("/vote", response_model=VoteResponse)
def api_vote(req: VoteRequest, service: ArenaService = Depends(get_service)) -> VoteResponse:
    return _vote_logic(service, req)


@api_v1.get("/stats", response_model=StatsResponse)
def api_stats(
    segment: str | None = None, service: ArenaService = Depends(get_service),
) -> StatsResponse:
    stats = service.stats(segment)
    return StatsResponse(
        category=stats["category"],
        total_votes=stats["total_votes"],
        top=[ItemOut.from_record(r) for r in stats["top"]],
    )


@api_v1.get("/voters/{voter_id}", response_model=VoterResponse)
def api_voter(voter_id: str, service: ArenaService = Depends(get_service)) -> VoterResponse:
    return VoterResponse(**service.voter_status(voter_id))


@api_v1.post("/rankings/refresh", status_code=202)
def api_refresh_rankings(
    req: RefreshRequest,
    background_tasks: BackgroundTasks,
    service: ArenaService = Depends(get_service),
) -> dict[str, Any]:
    generations = service.request_rankings(req.segment)
    background_tasks.add_task(
        service.run_bradley_terry, req.segment, generations[BRADLEY_TERRY], req.seed,
    )
    background_tasks.add_task(service.run_monte_carlo, req.segment, generations[MONTE_CARLO])
    return {
        "category": Category.for_segment(req.segment).value,
        "generations": generations,
    }


@api_v1.get("/rankings", response_model=RankingsResponse)
def api_rankings(
    segment: str | None = None, service: ArenaService = Depends(get_service),
) -> RankingsResponse:
    bt, mc = service.latest_rankings(segment)
    category = Category.for_segment(segment).value
    if bt is None and mc is None:
        return RankingsResponse(status="pending", category=category)
    return RankingsResponse(
        status="ready",
        category=category,
        bradley_terry=BTOut.from_result(bt) if bt is not None else None,
        monte_carlo=MCOut.from_result(mc) if mc is not None else None,
    )


def create_app(service: ArenaService | None = None) -> FastAPI:
    """Build the app around ``service`` (default: one configured from ARENA_* env)."""
    application = FastAPI(title="Photo Arena", version="1.0.0")

    # CORS middleware - allow all origins
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.state.service = service or ArenaService.from_config(ArenaConfig.from_env())
    application.include_router(api_v1)
    return application


app = create_app()
