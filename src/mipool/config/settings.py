from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from functools import cache
from pathlib import Path
from typing import Any, Literal

import yaml

from mipool.utils.checks import beartype
from mipool.utils.coercion import (
    as_bool,
    as_float,
    as_int,
    as_optional_float,
    as_optional_int,
)
from mipool.utils.errors import InputValidationError

_CONFIG_DIR = Path(__file__).resolve().parent
_DEFAULTS_CONFIG = _CONFIG_DIR / "defaults.yaml"

VisitOrder = Literal["column", "monotone", "revmonotone"]
_VISIT_ORDERS = ("column", "monotone", "revmonotone")


@beartype
@dataclass(frozen=True)
class ImputationConfig:
    """Runtime settings for one chained-equations run.

    Attributes:
        m (int): Number of chains, one completed dataset per chain.
        maxit (int): Iterations per chain. Zero keeps the initial marginal fill.
        donors (int): Donor pool size for predictive mean matching.
        seed (int | None): Master seed combined with each chain index.
        visit_order (VisitOrder): Default visit order when none is supplied.
        parallel (bool): Run chains in a thread pool.
        max_workers (int | None): Thread pool size cap.
        ridge (float): Ridge added to normal equations before inversion.
        show_progress (bool): Render a rich progress bar over chains.
    """

    m: int = 5
    maxit: int = 5
    donors: int = 5
    seed: int | None = None
    visit_order: VisitOrder = "column"
    parallel: bool = False
    max_workers: int | None = None
    ridge: float = 1.0e-5
    show_progress: bool = False

    def __post_init__(self) -> None:
        if self.m < 1:
            raise InputValidationError("m must be >= 1.")
        if self.maxit < 0:
            raise InputValidationError("maxit must be >= 0.")
        if self.donors < 1:
            raise InputValidationError("donors must be >= 1.")
        if self.max_workers is not None and self.max_workers < 1:
            raise InputValidationError("max_workers must be >= 1.")
        if self.ridge < 0:
            raise InputValidationError("ridge must be non-negative.")

    @classmethod
    @beartype
    def from_mapping(cls, params: Mapping[str, Any] | None = None) -> ImputationConfig:
        """Merge caller overrides over the packaged `imputation` defaults."""

        merged = {**_section("imputation"), **dict(params or {})}
        visit_order = str(merged.get("visit_order", "column")).strip().lower()
        if visit_order not in _VISIT_ORDERS:
            raise InputValidationError(
                "visit_order must be one of: " + ", ".join(_VISIT_ORDERS) + "."
            )
        return cls(
            m=as_int(merged.get("m", 5), field_name="m"),
            maxit=as_int(merged.get("maxit", 5), field_name="maxit"),
            donors=as_int(merged.get("donors", 5), field_name="donors"),
            seed=as_optional_int(merged.get("seed"), field_name="seed"),
            visit_order=visit_order,
            parallel=as_bool(merged.get("parallel", False), field_name="parallel"),
            max_workers=as_optional_int(
                merged.get("max_workers"), field_name="max_workers"
            ),
            ridge=as_float(merged.get("ridge", 1.0e-5), field_name="ridge"),
            show_progress=as_bool(
                merged.get("show_progress", False), field_name="show_progress"
            ),
        )


@beartype
@dataclass(frozen=True)
class QuickpredConfig:
    """Thresholds for automatic predictor selection.

    Attributes:
        mincor (float): Minimum absolute correlation for inclusion.
        minpuc (float): Minimum proportion of usable cases.
    """

    mincor: float = 0.1
    minpuc: float = 0.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.mincor <= 1.0:
            raise InputValidationError("mincor must be between 0 and 1.")
        if not 0.0 <= self.minpuc <= 1.0:
            raise InputValidationError("minpuc must be between 0 and 1.")

    @classmethod
    @beartype
    def from_mapping(cls, params: Mapping[str, Any] | None = None) -> QuickpredConfig:
        merged = {**_section("predictors"), **dict(params or {})}
        return cls(
            mincor=as_float(merged.get("mincor", 0.1), field_name="mincor"),
            minpuc=as_float(merged.get("minpuc", 0.0), field_name="minpuc"),
        )


@beartype
@dataclass(frozen=True)
class PoolingConfig:
    """Defaults for Rubin's-rules pooling.

    Attributes:
        alpha (float): Two-sided confidence interval level is `1 - alpha`.
        dfcom (float | None): Complete-data degrees of freedom, enabling the
            Barnard-Rubin small-sample adjustment.
    """

    alpha: float = 0.05
    dfcom: float | None = None

    def __post_init__(self) -> None:
        if not 0.0 < self.alpha < 1.0:
            raise InputValidationError("alpha must be strictly between 0 and 1.")
        if self.dfcom is not None and self.dfcom <= 0:
            raise InputValidationError("dfcom must be positive.")

    @classmethod
    @beartype
    def from_mapping(cls, params: Mapping[str, Any] | None = None) -> PoolingConfig:
        merged = {**_section("pooling"), **dict(params or {})}
        return cls(
            alpha=as_float(merged.get("alpha", 0.05), field_name="alpha"),
            dfcom=as_optional_float(merged.get("dfcom"), field_name="dfcom"),
        )


@beartype
def _section(name: str) -> dict[str, Any]:
    raw = _load_yaml_config(_DEFAULTS_CONFIG).get(name) or {}
    if not isinstance(raw, dict):
        raise InputValidationError(
            f"Defaults config section `{name}` must be a YAML mapping."
        )
    return dict(raw)


@beartype
@cache
def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load one YAML config file and validate mapping root."""

    if not config_path.exists() or not config_path.is_file():
        raise InputValidationError(f"Missing config file: {config_path.resolve()}")

    with config_path.open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise InputValidationError(
            f"Config file `{config_path.name}` must contain a YAML mapping."
        )
    return loaded
