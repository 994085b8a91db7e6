"""
Grading formulas: Auto grading of props from a game snapshot.

Every formula has:
- A parameter model (keyed by ``formula_key`` in a discriminated union)
- An evaluator registered in FORMULA_REGISTRY

Evaluators never fetch data; the caller supplies a normalised
GameSnapshot (team line scores and per-player stats).
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..models import PropStatus
from .errors import FormulaInputError, FormulaNotConfiguredError

logger = logging.getLogger(__name__)

Comparator = Literal["gt", "gte", "eq", "lte", "lt"]
WinnerRule = Literal["higher", "lower"]

# Common aliases for team line-score columns
TEAM_METRIC_ALIASES = {
    "hits": "H",
    "h": "H",
    "runs": "R",
    "r": "R",
    "errors": "E",
    "e": "E",
}


# =============================================================================
# GAME SNAPSHOT
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LineScore(_CamelModel):
    home: dict[str, float] = Field(default_factory=dict)
    away: dict[str, float] = Field(default_factory=dict)


class PlayerLine(_CamelModel):
    team_abv: str = Field(default="", alias="teamAbv")
    stats: dict[str, float] = Field(default_factory=dict)

    @field_validator("team_abv")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class GameSnapshot(_CamelModel):
    """Final (or current) state of one game."""

    game_id: str | None = Field(default=None, alias="gameId")
    home: str
    away: str
    line_score: LineScore = Field(default_factory=LineScore, alias="lineScore")
    players: dict[str, PlayerLine] = Field(default_factory=dict)

    @field_validator("home", "away")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


# =============================================================================
# PARAMETER MODELS
# =============================================================================


class SideRule(_CamelModel):
    comparator: Comparator
    threshold: float


class SideRules(_CamelModel):
    a: SideRule = Field(alias="A")
    b: SideRule = Field(alias="B")


class _FormulaParamsBase(_CamelModel):
    espn_game_id: str | None = Field(default=None, alias="espnGameID")
    game_date: str | None = Field(default=None, alias="gameDate")


class WhoWinsMap(_CamelModel):
    side_a_map: Literal["home", "away"] = Field(alias="sideAMap")
    side_b_map: Literal["home", "away"] = Field(alias="sideBMap")

    @field_validator("side_a_map", "side_b_map", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class WhoWinsParams(_FormulaParamsBase):
    formula_key: Literal["who_wins"] = "who_wins"
    who_wins: WhoWinsMap = Field(alias="whoWins")


class StatOverUnderParams(_FormulaParamsBase):
    formula_key: Literal["stat_over_under"] = "stat_over_under"
    entity: Literal["player"] = "player"
    player_id: str = Field(alias="playerId", min_length=1)
    metric: str = Field(min_length=1)
    sides: SideRules


class TeamStatOverUnderParams(_FormulaParamsBase):
    formula_key: Literal["team_stat_over_under"] = "team_stat_over_under"
    entity: Literal["team"] = "team"
    team_abv: str = Field(alias="teamAbv", min_length=1)
    metric: str = Field(min_length=1)
    sides: SideRules


class TeamStatH2HParams(_FormulaParamsBase):
    formula_key: Literal["team_stat_h2h"] = "team_stat_h2h"
    team_abv_a: str = Field(alias="teamAbvA", min_length=1)
    team_abv_b: str = Field(alias="teamAbvB", min_length=1)
    metric: str = Field(min_length=1)
    winner_rule: WinnerRule = Field(default="higher", alias="winnerRule")


class PlayerH2HParams(_FormulaParamsBase):
    formula_key: Literal["player_h2h"] = "player_h2h"
    player_a_id: str = Field(alias="playerAId", min_length=1)
    player_b_id: str = Field(alias="playerBId", min_length=1)
    metric: str = Field(min_length=1)
    winner_rule: WinnerRule = Field(default="higher", alias="winnerRule")


class PlayerMultiStatOUParams(_FormulaParamsBase):
    formula_key: Literal["player_multi_stat_ou"] = "player_multi_stat_ou"
    entity: Literal["player"] = "player"
    player_id: str = Field(alias="playerId", min_length=1)
    metrics: list[str] = Field(min_length=1)
    sides: SideRules


FormulaParams = Annotated[
    Union[
        WhoWinsParams,
        StatOverUnderParams,
        TeamStatOverUnderParams,
        TeamStatH2HParams,
        PlayerH2HParams,
        PlayerMultiStatOUParams,
    ],
    Field(discriminator="formula_key"),
]

_params_adapter = TypeAdapter(FormulaParams)


@dataclass
class FormulaOutcome:
    status: PropStatus
    result_text: str


# =============================================================================
# REGISTRY
# =============================================================================


FORMULA_REGISTRY: dict[str, Callable[[Any, GameSnapshot], FormulaOutcome]] = {}


def register_formula(key: str):
    def decorator(fn: Callable[[Any, GameSnapshot], FormulaOutcome]):
        FORMULA_REGISTRY[key] = fn
        return fn
    return decorator


def parse_formula_params(formula_key: str | None, params: dict | None):
    """Validate stored params (plus overrides) into the model for ``formula_key``."""
    key = (formula_key or "").strip().lower()
    if not key:
        raise FormulaNotConfiguredError("Prop has no formula key")
    if key not in FORMULA_REGISTRY:
        raise FormulaNotConfiguredError(f"Unsupported formula: {key}")

    try:
        return _params_adapter.validate_python({**(params or {}), "formula_key": key})
    except ValidationError as e:
        raise FormulaInputError(f"Invalid params for {key}: {e}")


def evaluate_formula(
    formula_key: str | None,
    params: dict | None,
    snapshot: GameSnapshot,
) -> FormulaOutcome:
    """Parse params, check the snapshot matches, and run the evaluator."""
    parsed = parse_formula_params(formula_key, params)

    if parsed.espn_game_id and snapshot.game_id and parsed.espn_game_id != snapshot.game_id:
        raise FormulaInputError(
            f"Snapshot is for game {snapshot.game_id}, prop expects {parsed.espn_game_id}"
        )

    outcome = FORMULA_REGISTRY[parsed.formula_key](parsed, snapshot)
    logger.info(
        f"Formula {parsed.formula_key} -> {outcome.status.value} ({outcome.result_text})"
    )
    return outcome


# =============================================================================
# HELPERS
# =============================================================================


def compare(value: float, comparator: Comparator, threshold: float) -> bool:
    if comparator == "gt":
        return value > threshold
    if comparator == "gte":
        return value >= threshold
    if comparator == "eq":
        return value == threshold
    if comparator == "lte":
        return value <= threshold
    if comparator == "lt":
        return value < threshold
    return False


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _threshold_outcome(value: float, sides: SideRules, result_text: str) -> FormulaOutcome:
    a_pass = compare(value, sides.a.comparator, sides.a.threshold)
    b_pass = compare(value, sides.b.comparator, sides.b.threshold)
    if a_pass and not b_pass:
        status = PropStatus.GRADED_A
    elif b_pass and not a_pass:
        status = PropStatus.GRADED_B
    else:
        status = PropStatus.PUSH
    return FormulaOutcome(status=status, result_text=result_text)


def _h2h_status(value_a: float, value_b: float, rule: WinnerRule) -> PropStatus:
    if value_a == value_b:
        return PropStatus.PUSH
    a_wins = value_a > value_b if rule == "higher" else value_a < value_b
    return PropStatus.GRADED_A if a_wins else PropStatus.GRADED_B


def _finite(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _player(snapshot: GameSnapshot, player_id: str) -> PlayerLine:
    player = snapshot.players.get(player_id)
    if player is None:
        raise FormulaInputError(f"Player {player_id} not found in game data")
    return player


def _player_stat(snapshot: GameSnapshot, player_id: str, metric: str) -> float:
    value = _finite(_player(snapshot, player_id).stats.get(metric))
    if value is None:
        raise FormulaInputError(f"Metric {metric} not available for player {player_id}")
    return value


def team_metric_key(metric: str) -> str:
    return TEAM_METRIC_ALIASES.get(metric.strip().lower(), metric.strip())


def team_stat(snapshot: GameSnapshot, team_abv: str, metric: str) -> float:
    """
    A team's value for ``metric``: the line score when the team is in it,
    otherwise the sum of that team's player stats.
    """
    team_abv = team_abv.upper()
    key = team_metric_key(metric)

    line = None
    if team_abv == snapshot.home:
        line = snapshot.line_score.home
    elif team_abv == snapshot.away:
        line = snapshot.line_score.away

    if line is not None:
        value = _finite(line.get(key))
        if value is not None:
            return value

    total = 0.0
    found = False
    for player in snapshot.players.values():
        if player.team_abv != team_abv:
            continue
        for candidate in (key, metric, metric.lower()):
            value = _finite(player.stats.get(candidate))
            if value is not None:
                total += value
                found = True
                break

    if not found:
        raise FormulaInputError(f"Metric {metric} not available for team {team_abv}")
    return total


# =============================================================================
# EVALUATORS
# =============================================================================


@register_formula("who_wins")
def grade_who_wins(params: WhoWinsParams, snapshot: GameSnapshot) -> FormulaOutcome:
    home_r = _finite(snapshot.line_score.home.get("R"))
    away_r = _finite(snapshot.line_score.away.get("R"))
    if home_r is None or away_r is None:
        raise FormulaInputError("Score not available yet")

    if home_r > away_r:
        winner = "home"
    elif away_r > home_r:
        winner = "away"
    else:
        winner = None

    if winner is None:
        status = PropStatus.PUSH
    elif winner == params.who_wins.side_a_map:
        status = PropStatus.GRADED_A
    elif winner == params.who_wins.side_b_map:
        status = PropStatus.GRADED_B
    else:
        status = PropStatus.PUSH

    result_text = f"{snapshot.home} {_fmt(home_r)} - {_fmt(away_r)} {snapshot.away}"
    return FormulaOutcome(status=status, result_text=result_text)


@register_formula("stat_over_under")
def grade_stat_over_under(params: StatOverUnderParams, snapshot: GameSnapshot) -> FormulaOutcome:
    value = _player_stat(snapshot, params.player_id, params.metric)
    return _threshold_outcome(
        value, params.sides, f"player {params.player_id} {params.metric}={_fmt(value)}"
    )


@register_formula("team_stat_over_under")
def grade_team_stat_over_under(
    params: TeamStatOverUnderParams, snapshot: GameSnapshot
) -> FormulaOutcome:
    value = team_stat(snapshot, params.team_abv, params.metric)
    key = team_metric_key(params.metric)
    return _threshold_outcome(
        value, params.sides, f"team {params.team_abv.upper()} {key}={_fmt(value)}"
    )


@register_formula("team_stat_h2h")
def grade_team_stat_h2h(params: TeamStatH2HParams, snapshot: GameSnapshot) -> FormulaOutcome:
    value_a = team_stat(snapshot, params.team_abv_a, params.metric)
    value_b = team_stat(snapshot, params.team_abv_b, params.metric)
    key = team_metric_key(params.metric)
    return FormulaOutcome(
        status=_h2h_status(value_a, value_b, params.winner_rule),
        result_text=(
            f"A:{params.team_abv_a.upper()} {key}={_fmt(value_a)} "
            f"vs B:{params.team_abv_b.upper()} {key}={_fmt(value_b)}"
        ),
    )


@register_formula("player_h2h")
def grade_player_h2h(params: PlayerH2HParams, snapshot: GameSnapshot) -> FormulaOutcome:
    value_a = _player_stat(snapshot, params.player_a_id, params.metric)
    value_b = _player_stat(snapshot, params.player_b_id, params.metric)
    return FormulaOutcome(
        status=_h2h_status(value_a, value_b, params.winner_rule),
        result_text=(
            f"A:{params.player_a_id} {params.metric}={_fmt(value_a)} "
            f"vs B:{params.player_b_id} {params.metric}={_fmt(value_b)}"
        ),
    )


@register_formula("player_multi_stat_ou")
def grade_player_multi_stat_ou(
    params: PlayerMultiStatOUParams, snapshot: GameSnapshot
) -> FormulaOutcome:
    player = _player(snapshot, params.player_id)

    total = 0.0
    found = 0
    for metric in params.metrics:
        value = _finite(player.stats.get(metric))
        if value is not None:
            total += value
            found += 1
    if not found:
        raise FormulaInputError(
            f"None of {', '.join(params.metrics)} available for player {params.player_id}"
        )

    return _threshold_outcome(
        total, params.sides, f"sum({'+'.join(params.metrics)})={_fmt(total)}"
    )
