"""Configuration helpers for the Harvest capture engine."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class Limits(BaseModel):
    """Numeric thresholds shared by the extractor, filter and resolver."""

    min_content_length: int = Field(60, ge=0)
    min_single_line_length: int = Field(100, ge=0)
    marker_head_lines: int = Field(15, gt=0)
    context_lines: int = Field(5, gt=0)
    inference_window: int = Field(2000, gt=0)
    min_pre_length: int = Field(10, ge=0)
    min_code_length: int = Field(20, ge=0)
    max_context_chars: int = Field(1200, gt=0)


class LocaleTable(BaseModel):
    """Marker labels and natural-language lead-ins for one locale."""

    labels: list[str]
    lead_ins: list[str] = Field(default_factory=list)


class SignatureRule(BaseModel):
    """One content-shape rule: regexes that must (not) match the block."""

    name: str
    any_of: list[str] = Field(default_factory=list)
    all_of: list[str] = Field(default_factory=list)
    none_of: list[str] = Field(default_factory=list)
    every_line: str | None = None


class Heuristics(BaseModel):
    """Editable tables sourced from heuristics.yaml."""

    limits: Limits = Field(default_factory=Limits)
    extensions: list[str]
    filenames: list[str] = Field(default_factory=list)
    locales: dict[str, LocaleTable]
    languages: dict[str, str] = Field(default_factory=dict)
    signatures: list[SignatureRule] = Field(default_factory=list)
    shell_prefixes: list[str] = Field(default_factory=list)
    doc_exempt: list[str] = Field(default_factory=list)

    @property
    def labels(self) -> list[str]:
        return [label for table in self.locales.values() for label in table.labels]

    @property
    def lead_ins(self) -> list[str]:
        return [lead for table in self.locales.values() for lead in table.lead_ins]


class DetectorTimings(BaseModel):
    """Completion detector timings in seconds."""

    poll_interval: float = Field(0.2, gt=0)
    debounce: float = Field(0.2, ge=0)
    settle_quiet: float = Field(0.2, ge=0)
    done_settle: float = Field(0.15, ge=0)
    start_timeout: float = Field(15.0, gt=0)
    hard_timeout: float = Field(600.0, gt=0)
    snapshot_timeout: float = Field(10.0, gt=0)


class SurfaceSelectors(BaseModel):
    """CSS selector lists for one producing surface."""

    prompt: list[str]
    submit: list[str]
    busy: list[str] = Field(default_factory=list)
    done: list[str] = Field(default_factory=list)
    root: list[str] = Field(default_factory=lambda: ["main", "body"])
    submit_labels: list[str] = Field(default_factory=list)


class SurfaceProfile(BaseModel):
    """A named producer variant with its selectors and timings."""

    name: str
    url_pattern: str = ""
    input_delay: float = Field(0.4, ge=0)
    image_delay: float = Field(0.5, ge=0)
    selectors: SurfaceSelectors
    timings: DetectorTimings = Field(default_factory=DetectorTimings)


def harvest_home() -> Path:
    """State directory for logs and metrics (HARVEST_HOME or ~/.harvest)."""
    env_home = os.environ.get("HARVEST_HOME")
    if env_home:
        return Path(env_home)
    return Path.home() / ".harvest"


def _read_yaml(path: str | Path | None, env_var: str, default_name: str) -> dict:
    default_path = Path(__file__).with_name(default_name)
    config_path = Path(path or os.environ.get(env_var) or default_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    return yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}


def load_heuristics(
    path: str | Path | None = None,
    locales: list[str] | None = None,
) -> Heuristics:
    """Load heuristic tables from YAML.

    Priority:
        1. Explicit path argument
        2. Environment variable HARVEST_HEURISTICS
        3. Bundled `harvest/config/heuristics.yaml`

    Args:
        path: Optional override path.
        locales: Restrict active locales (defaults to HARVEST_LOCALES or all).

    Returns:
        Validated Heuristics.
    """
    data = _read_yaml(path, "HARVEST_HEURISTICS", "heuristics.yaml")
    heuristics = Heuristics(**data)

    env_locales = os.environ.get("HARVEST_LOCALES")
    active = locales or ([loc.strip() for loc in env_locales.split(",") if loc.strip()] if env_locales else None)
    if active:
        unknown = [loc for loc in active if loc not in heuristics.locales]
        if unknown:
            available = ", ".join(heuristics.locales) or "<empty>"
            raise KeyError(f"Unknown locale(s) {unknown}. Available: {available}")
        heuristics.locales = {loc: heuristics.locales[loc] for loc in active}
    return heuristics


@lru_cache(maxsize=1)
def default_heuristics() -> Heuristics:
    """Heuristics (HARVEST_HEURISTICS or bundled), loaded once per process."""
    return load_heuristics()


def _float_env(name: str) -> float | None:
    env_val = os.environ.get(name)
    if env_val:
        try:
            return float(env_val)
        except ValueError:
            return None
    return None


def _apply_timing_overrides(timings: DetectorTimings) -> DetectorTimings:
    hard = _float_env("HARVEST_HARD_TIMEOUT")
    start = _float_env("HARVEST_START_TIMEOUT")
    if hard is None and start is None:
        return timings
    return timings.model_copy(
        update={
            "hard_timeout": hard or timings.hard_timeout,
            "start_timeout": start or timings.start_timeout,
        }
    )


def load_timings(path: str | Path | None = None) -> DetectorTimings:
    """Default detector timings with HARVEST_* environment overrides applied."""
    data = _read_yaml(path, "HARVEST_SURFACES", "surfaces.yaml")
    return _apply_timing_overrides(DetectorTimings(**(data.get("defaults") or {})))


def available_surfaces(path: str | Path | None = None) -> list[str]:
    """List configured surface profile names."""
    try:
        data = _read_yaml(path, "HARVEST_SURFACES", "surfaces.yaml")
    except FileNotFoundError:
        return []
    return list((data.get("profiles") or {}).keys())


def load_surface_profile(name: str, path: str | Path | None = None) -> SurfaceProfile:
    """Load one surface profile, merging its timing overrides over the defaults.

    Supports environment overrides:
        HARVEST_SURFACES - alternate surfaces.yaml
        HARVEST_HARD_TIMEOUT / HARVEST_START_TIMEOUT - seconds
    """
    data = _read_yaml(path, "HARVEST_SURFACES", "surfaces.yaml")
    profiles = data.get("profiles") or {}
    if name not in profiles:
        available = ", ".join(profiles) or "<empty>"
        raise KeyError(f"No surface profile '{name}'. Available: {available}")

    raw = dict(profiles[name])
    timings = {**(data.get("defaults") or {}), **(raw.pop("timings", None) or {})}
    profile = SurfaceProfile(name=name, timings=DetectorTimings(**timings), **raw)
    profile.timings = _apply_timing_overrides(profile.timings)
    return profile


__all__ = [
    "Limits",
    "LocaleTable",
    "SignatureRule",
    "Heuristics",
    "DetectorTimings",
    "SurfaceSelectors",
    "SurfaceProfile",
    "harvest_home",
    "load_heuristics",
    "default_heuristics",
    "load_timings",
    "available_surfaces",
    "load_surface_profile",
]
