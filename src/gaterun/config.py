"""Run configuration loader.

Reads ``.gaterun.yaml`` (or ``.gaterun.yml``) from the repository root, an
explicit ``--config`` path, or ``GATERUN_CONFIG``; then applies environment
overrides (``GATERUN_POLICY``, ``GATERUN_TIMEOUT``, ``GATERUN_SKIP``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from gaterun.errors import GateConfigError
from gaterun.gates import GATE_KINDS, build_gate, default_gates
from gaterun.runner import DEFAULT_MAX_WORKERS, DEFAULT_TIMEOUT
from gaterun.types import FailurePolicy, GateSpec

CONFIG_FILENAMES = (".gaterun.yaml", ".gaterun.yml")


@dataclass(frozen=True)
class GateEntry:
    """One gate as declared in the config file."""

    name: str
    kind: str
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GateEntry:
        if "name" not in data:
            raise GateConfigError(f"gate entry without a name: {dict(data)}")
        name = str(data["name"])
        kind = data.get("kind")
        if kind is None:
            kind = name if name in GATE_KINDS else "command"
        return cls(name=name, kind=str(kind), options=dict(data))


@dataclass(frozen=True)
class RunConfig:
    """Deployment configuration for a run."""

    policy: FailurePolicy = FailurePolicy.CONTINUE
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    base_branch: str | None = "main"
    gates: tuple[GateEntry, ...] | None = None
    skip: tuple[str, ...] = ()
    source: Path | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: Path | None = None) -> RunConfig:
        """Parse and validate a config mapping."""
        try:
            policy = FailurePolicy(data.get("policy", FailurePolicy.CONTINUE.value))
        except ValueError as exc:
            raise GateConfigError(f"policy must be 'halt' or 'continue', got {data.get('policy')!r}") from exc

        gates = None
        if "gates" in data:
            raw_gates = data["gates"] or []
            if not isinstance(raw_gates, list) or not all(isinstance(g, Mapping) for g in raw_gates):
                raise GateConfigError("'gates' must be a list of mappings")
            gates = tuple(GateEntry.from_dict(g) for g in raw_gates)

        base_branch = data.get("base_branch", "main")
        return cls(
            policy=policy,
            timeout=_positive_number(data, "timeout", DEFAULT_TIMEOUT),
            max_workers=int(_positive_number(data, "max_workers", DEFAULT_MAX_WORKERS)),
            base_branch=str(base_branch) if base_branch else None,
            gates=gates,
            skip=_name_list(data.get("skip", [])),
            source=source,
        )

    def with_env(self, environ: Mapping[str, str] | None = None) -> RunConfig:
        """Apply ``GATERUN_*`` overrides."""
        env = os.environ if environ is None else environ
        updated = self

        policy = env.get("GATERUN_POLICY", "").strip()
        if policy:
            try:
                updated = replace(updated, policy=FailurePolicy(policy))
            except ValueError as exc:
                raise GateConfigError(f"GATERUN_POLICY must be 'halt' or 'continue', got {policy!r}") from exc

        timeout = env.get("GATERUN_TIMEOUT", "").strip()
        if timeout:
            try:
                seconds = float(timeout)
            except ValueError as exc:
                raise GateConfigError(f"GATERUN_TIMEOUT must be a number, got {timeout!r}") from exc
            if seconds <= 0:
                raise GateConfigError("GATERUN_TIMEOUT must be positive")
            updated = replace(updated, timeout=seconds)

        skip = env.get("GATERUN_SKIP", "").strip()
        if skip:
            updated = replace(updated, skip=tuple(dict.fromkeys([*updated.skip, *_name_list(skip)])))

        return updated

    def gate_specs(self) -> list[GateSpec]:
        """Instantiate the declared gates, or the defaults when none are declared."""
        if self.gates is None:
            return default_gates()
        return [build_gate(entry.name, entry.kind, entry.options) for entry in self.gates]


def _positive_number(data: Mapping[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        raise GateConfigError(f"'{key}' must be a positive number, got {value!r}")
    return float(value)


def _name_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(name.strip() for name in value.split(",") if name.strip())
    if isinstance(value, list):
        return tuple(str(name) for name in value)
    raise GateConfigError(f"expected a list of gate names, got {value!r}")


def find_config(
    repo_root: Path,
    explicit: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path | None:
    """Locate the config file; an explicit path that does not exist is an error."""
    env = os.environ if environ is None else environ
    chosen = explicit or (Path(env["GATERUN_CONFIG"]) if env.get("GATERUN_CONFIG") else None)
    if chosen is not None:
        path = chosen if chosen.is_absolute() else repo_root / chosen
        if not path.is_file():
            raise GateConfigError(f"config file not found: {path}")
        return path

    for filename in CONFIG_FILENAMES:
        candidate = repo_root / filename
        if candidate.is_file():
            return candidate
    return None


def load_config(
    repo_root: Path,
    explicit: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunConfig:
    """Load the run configuration with environment overrides applied.

    Raises:
        GateConfigError: If the config file is malformed or invalid
    """
    path = find_config(repo_root, explicit, environ)
    if path is None:
        return RunConfig().with_env(environ)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise GateConfigError(f"Malformed YAML config at {path}: {exc}") from exc

    if not isinstance(data, Mapping):
        raise GateConfigError(f"Invalid config structure in {path}: expected a mapping at the top level")

    try:
        config = RunConfig.from_dict(data, source=path)
    except GateConfigError as exc:
        raise GateConfigError(f"Invalid config in {path}: {exc}") from exc
    return config.with_env(environ)
