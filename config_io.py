"""Parameter files and run bundles for the field sandbox drivers.

A parameter file is TOML (stdlib `tomllib`) or JSON. Keys may use dashes or
underscores. Two optional tables are recognised:

  [sim]   SimConfig fields (grid_size, levels, iterations, ...)
  [args]  driver flags (scenario, ticks, view, ...)

Top-level keys outside those tables are routed by name: SimConfig fields go
to [sim], anything else to [args].

Every run directory also gets the resolved configuration (run_config.json),
the command line (command.txt) and a copy of the input file.
"""

from __future__ import annotations

from dataclasses import asdict, fields, is_dataclass
import datetime as _dt
from enum import Enum
import json
from pathlib import Path
import subprocess
import sys
from typing import Any, Callable, Dict, Optional

from simulation import SimConfig


def _load_toml(text: str) -> Any:
    import tomllib

    return tomllib.loads(text)


_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".json": json.loads,
    ".toml": _load_toml,
    ".tml": _load_toml,
}


def _underscore_keys(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k).replace("-", "_"): _underscore_keys(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_underscore_keys(v) for v in obj]
    return obj


def load_config_file(path: Optional[str | Path]) -> Dict[str, Any]:
    """Parse a .toml/.json parameter file into a dict (empty for None)."""
    if path is None:
        return {}
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(p)
    parser = _PARSERS.get(p.suffix.lower())
    if parser is None:
        raise ValueError(f"cannot read {p.name}: expected one of {sorted(_PARSERS)}")
    data = _underscore_keys(parser(p.read_text()))
    if not isinstance(data, dict):
        raise ValueError(f"{p.name}: top level must be a table")
    return data


def split_sections(cfg_raw: Dict[str, Any]) -> tuple[Dict[str, Any], Dict[str, Any]]:
    """(sim, args) from a loaded file; the [sim]/[args] tables win over flat keys."""
    sim_names = {f.name for f in fields(SimConfig)}
    sim = {k: v for k, v in cfg_raw.items() if k in sim_names}
    args = {k: v for k, v in cfg_raw.items() if k not in sim_names and k not in ("sim", "args")}
    for name, target in (("sim", sim), ("args", args)):
        table = cfg_raw.get(name)
        if isinstance(table, dict):
            target.update(table)
    return sim, args


def sim_config_from_dict(d: Dict[str, Any], base: Optional[SimConfig] = None) -> SimConfig:
    """Overlay plain values on `base` (defaults if None); unknown keys raise ValueError."""
    unknown = sorted(set(d) - {f.name for f in fields(SimConfig)})
    if unknown:
        raise ValueError(f"unknown sim keys: {unknown}")
    kw = dict(d)
    its = kw.get("iterations")
    if its is not None:
        kw["iterations"] = (int(its),) if isinstance(its, int) else tuple(int(k) for k in its)
    return (base or SimConfig()).with_overrides(**kw)


def _plain(x: Any) -> Any:
    """JSON-friendly copy of dataclasses, enums, paths and containers."""
    if is_dataclass(x):
        x = asdict(x)
    if isinstance(x, dict):
        return {str(k): _plain(v) for k, v in x.items()}
    if isinstance(x, (list, tuple, set)):
        return [_plain(v) for v in x]
    if isinstance(x, Enum):
        return x.value
    if isinstance(x, Path):
        return str(x)
    return x


def _git(args: list[str], cwd: Path) -> str:
    return subprocess.check_output(["git", *args], cwd=str(cwd), text=True, stderr=subprocess.DEVNULL).strip()


def _git_info(cwd: Path) -> Dict[str, Any]:
    """Commit and dirty flag of the checkout containing `cwd`; {} outside git."""
    try:
        status = _git(["status", "--porcelain"], cwd)
        return {
            "commit": _git(["rev-parse", "HEAD"], cwd),
            "dirty": bool(status),
            "status_porcelain": status.splitlines()[:200],
        }
    except (OSError, subprocess.CalledProcessError):
        return {}


def _versions() -> Dict[str, str]:
    import jax
    import numpy as np

    return {
        "python": sys.version.split()[0],
        "numpy": np.__version__,
        "jax": jax.__version__,
        "backend": jax.default_backend(),
    }


def write_repro_bundle(
    outdir: Path,
    *,
    argv: list[str],
    resolved_args: Dict[str, Any],
    scenario: str,
    cfg_obj: Any = None,
    config_path: Optional[str | Path] = None,
    config_dict: Optional[Dict[str, Any]] = None,
) -> None:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    payload: Dict[str, Any] = {
        "timestamp_utc": _dt.datetime.now(tz=_dt.timezone.utc).isoformat(),
        "scenario": scenario,
        "argv": list(argv),
        "resolved_args": _plain(resolved_args),
        "versions": _versions(),
        "git": _git_info(outdir),
    }
    if cfg_obj is not None:
        payload["sim_config"] = _plain(cfg_obj)
    if config_dict is not None:
        payload["config_dict"] = _plain(config_dict)

    src = Path(config_path) if config_path is not None else None
    if src is not None:
        payload["config_path"] = str(src)
        if src.is_file():
            (outdir / f"config_input{src.suffix.lower()}").write_text(src.read_text())

    (outdir / "run_config.json").write_text(json.dumps(payload, indent=2, sort_keys=True))
    (outdir / "command.txt").write_text(" ".join(argv) + "\n")
