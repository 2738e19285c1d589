#!/usr/bin/env python3
"""Headless driver: run a scripted scenario for a fixed number of ticks.

Example:
  python run_sim.py --scenario dipole --ng 128 --ticks 300 --animate
  python run_sim.py --config runs/vortex.toml --view curl

Outputs
-------
Writes a directory per scenario under --outdir:
  <outdir>/<scenario>/<outstem>/
containing:
  - final.png          last frame (inspected level / view)
  - convergence.png    level-0 residual per tick
  - anim.gif           (if --animate)
  - metrics.json
  - run_config.json / command.txt (reproducibility bundle)
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, fields
import json
from pathlib import Path
import sys
import time
from typing import Any, Dict, List

import numpy as np

import jax

_THIS_DIR = Path(__file__).resolve().parent
if str(_THIS_DIR) not in sys.path:
    sys.path.insert(0, str(_THIS_DIR))

import config_io as C  # noqa: E402
import injection as I  # noqa: E402
import particles as PT  # noqa: E402
import scenarios as SC  # noqa: E402
import simulation as S  # noqa: E402
import vcycle as V  # noqa: E402
import visualize as VZ  # noqa: E402


@dataclass
class RunResult:
    name: str
    state: S.SimState
    div_rms_hist: np.ndarray  # level-0 rms divergence residual after each tick
    curl_rms_hist: np.ndarray
    count_hist: np.ndarray  # particle count after each tick
    walltime_s: float
    frames: List[Dict[str, Any]]
    stopped_early: bool


def parse_iterations(s: Any) -> tuple[int, ...]:
    if isinstance(s, (list, tuple)):
        return tuple(int(k) for k in s)
    if isinstance(s, int):
        return (int(s),)
    toks = [t for t in str(s).split(",") if t.strip()]
    if not toks:
        raise SystemExit("--iterations must be a comma list like 8,8,16,32,64")
    return tuple(int(t) for t in toks)


def _capture_frame(frames: List[Dict[str, Any]], *, state: S.SimState, cfg: S.SimConfig, level: int, view: I.ViewMode) -> None:
    img = VZ.display_frame(
        state.pyramid,
        state.particles,
        level=level,
        view=view,
        scaling=1,
        max_charge=cfg.max_charge,
        max_field=cfg.max_field,
    )
    frames.append({"tick": int(state.tick), "image": img})


def run(
    name: str,
    state0: S.SimState,
    *,
    cfg: S.SimConfig,
    ticks: int,
    level: int = 0,
    view: I.ViewMode = I.ViewMode.FIELD,
    animate: bool = False,
    anim_every: int = 10,
    verbose_every: int = 25,
) -> RunResult:
    """Tick the scenario with no pointer input (sources stay as drawn)."""
    div_hist: List[float] = []
    curl_hist: List[float] = []
    count_hist: List[int] = []
    frames: List[Dict[str, Any]] = []
    if animate:
        _capture_frame(frames, state=state0, cfg=cfg, level=level, view=view)

    state = state0
    stopped = False
    t0 = time.perf_counter()
    for it in range(1, int(ticks) + 1):
        state = S.step(state, cfg)

        norms = V.residual_norms(state.pyramid, use_curl=cfg.use_curl)[0]
        div_rms = float(norms["div_rms"])
        curl_rms = float(norms.get("curl_rms", 0.0))
        count = PT.particle_count(state.particles)
        div_hist.append(div_rms)
        curl_hist.append(curl_rms)
        count_hist.append(count)

        # Non-finite fields are not an error for the solver; stop the run so the
        # partial outputs can be inspected.
        if not np.isfinite(div_rms) or not np.isfinite(curl_rms):
            print(f"[{name}] STOP: non-finite residual at tick {it} (div_rms={div_rms}, curl_rms={curl_rms}).")
            stopped = True
            break

        if verbose_every and (it % int(verbose_every) == 0 or it == 1 or it == int(ticks)):
            curl_str = f" curl_rms={curl_rms:.3e}" if cfg.use_curl else ""
            print(f"[{name}][tick {it:04d}/{int(ticks)}] div_rms={div_rms:.3e}{curl_str} particles={count}")

        if animate and (it % int(anim_every) == 0 or it == int(ticks)):
            _capture_frame(frames, state=state, cfg=cfg, level=level, view=view)

    walltime_s = float(time.perf_counter() - t0)
    return RunResult(
        name=name,
        state=state,
        div_rms_hist=np.array(div_hist, dtype=np.float64),
        curl_rms_hist=np.array(curl_hist, dtype=np.float64),
        count_hist=np.array(count_hist, dtype=np.int64),
        walltime_s=walltime_s,
        frames=frames,
        stopped_early=stopped,
    )


def compute_metrics(result: RunResult, *, cfg: S.SimConfig) -> Dict[str, Any]:
    norms = V.residual_norms(result.state.pyramid, use_curl=cfg.use_curl)
    out: Dict[str, Any] = {
        "ticks_run": int(result.div_rms_hist.size),
        "walltime_s": float(result.walltime_s),
        "stopped_early": bool(result.stopped_early),
        "particles_initial": int(result.count_hist[0]) if result.count_hist.size else 0,
        "particles_final": int(result.count_hist[-1]) if result.count_hist.size else 0,
        "charge_total": float(np.sum(np.asarray(result.state.pyramid.charge[0]))),
    }
    for row in norms:
        out[f"level{row['level']}_div_rms"] = row["div_rms"]
        if "curl_rms" in row:
            out[f"level{row['level']}_curl_rms"] = row["curl_rms"]
    return out


_SIM_FLAGS = {
    "grid_size", "scaling", "levels", "iterations", "omega", "multigrid", "use_curl",
    "max_charge", "max_field", "magnet_strength", "brush_radius", "gain", "dt", "trail_decay", "tick_rate",
}


def main() -> None:
    # Pre-parse --config so we can apply file defaults before full parsing.
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default=None, help="TOML/JSON parameter file (optional).")
    pre_args, _ = pre.parse_known_args()
    cfg_raw = C.load_config_file(pre_args.config) if pre_args.config else {}
    sim_file, args_file = C.split_sections(cfg_raw)
    try:
        base = C.sim_config_from_dict(sim_file)
    except ValueError as e:
        raise SystemExit(f"bad [sim] config: {e}")

    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, default=None, help="TOML/JSON parameter file (optional).")
    ap.add_argument("--scenario", type=str, default="dipole", choices=sorted(SC.SCENARIOS))

    # Grid / solver
    ap.add_argument("--ng", dest="grid_size", type=int, help="level-0 cells per axis")
    ap.add_argument("--levels", type=int)
    ap.add_argument("--iterations", type=str, help="Jacobi passes per level, e.g. 8,8,16,32,64 (or one count)")
    ap.add_argument("--omega", type=float)
    g_mg = ap.add_mutually_exclusive_group()
    g_mg.add_argument("--multigrid", dest="multigrid", action="store_true")
    g_mg.add_argument("--no-multigrid", dest="multigrid", action="store_false", help="single-resolution relaxation")
    ap.add_argument("--curl", dest="use_curl", action="store_true", help="enable curl (magnet) constraints")

    # Injection / particles
    ap.add_argument("--max-charge", type=float)
    ap.add_argument("--magnet-strength", type=float)
    ap.add_argument("--brush-radius", type=int)
    ap.add_argument("--gain", type=float)
    ap.add_argument("--dt", type=float)
    ap.add_argument("--trail-decay", type=float)
    ap.add_argument("--spacing", type=int, default=8, help="particle lattice spacing (cells)")
    ap.add_argument("--npart", type=int, default=0, help="additional randomly placed particles")
    ap.add_argument("--seed", type=int, default=0)

    # Run / display
    ap.add_argument("--ticks", type=int, default=200)
    ap.add_argument("--view", type=str, default="field", choices=[v.value for v in I.ViewMode])
    ap.add_argument("--inspect-level", type=int, default=0)
    ap.add_argument("--scaling", type=int)
    ap.add_argument("--max-field", type=float)
    ap.add_argument("--tick-rate", type=float)
    ap.add_argument("--verbose-every", type=int, default=25)

    g_anim = ap.add_mutually_exclusive_group()
    g_anim.add_argument("--animate", dest="animate", action="store_true", help="Write a GIF animation.")
    g_anim.add_argument("--no-animate", dest="animate", action="store_false")
    ap.add_argument("--anim-every", type=int, default=5)
    ap.add_argument("--anim-fps", type=int, default=12)

    ap.add_argument("--outdir", type=str, default="./sim_outputs")
    ap.add_argument("--out", type=str, default="run", help="used only for naming")

    # Keep defaults stable even with config/override groups; sim flags default to the file's SimConfig.
    ap.set_defaults(animate=False, **{f.name: getattr(base, f.name) for f in fields(S.SimConfig) if f.name in _SIM_FLAGS})
    # an unset schedule follows --levels
    ap.set_defaults(iterations=sim_file.get("iterations"))

    # Apply config defaults (CLI always overrides config).
    if args_file:
        known_dests = {a.dest for a in ap._actions}
        ap.set_defaults(**{k: v for k, v in args_file.items() if k in known_dests})

    args = ap.parse_args()

    sim_kw = {k: getattr(args, k) for k in _SIM_FLAGS}
    if sim_kw["iterations"] is not None:
        sim_kw["iterations"] = parse_iterations(sim_kw["iterations"])
    try:
        cfg = S.SimConfig(**sim_kw)
    except ValueError as e:
        raise SystemExit(f"invalid configuration: {e}")
    if not (0 <= int(args.inspect_level) < cfg.levels):
        raise SystemExit(f"--inspect-level must be in [0, {cfg.levels})")
    view = I.ViewMode(args.view)

    scenario = str(args.scenario)
    root = Path(args.outdir) / scenario / Path(args.out).stem
    root.mkdir(parents=True, exist_ok=True)

    C.write_repro_bundle(
        root,
        argv=sys.argv,
        resolved_args=vars(args),
        scenario=scenario,
        cfg_obj=cfg,
        config_path=args.config,
        config_dict=cfg_raw if cfg_raw else None,
    )

    try:
        state0 = SC.build(scenario, cfg, spacing=int(args.spacing))
    except ValueError as e:
        raise SystemExit(str(e))
    if int(args.npart) > 0:
        state0 = SC.random_particles(state0, count=int(args.npart), seed=int(args.seed))

    result = run(
        scenario,
        state0,
        cfg=cfg,
        ticks=int(args.ticks),
        level=int(args.inspect_level),
        view=view,
        animate=bool(args.animate),
        anim_every=int(args.anim_every),
        verbose_every=int(args.verbose_every),
    )

    img = VZ.display_frame(
        result.state.pyramid,
        result.state.particles,
        level=int(args.inspect_level),
        view=view,
        scaling=cfg.scaling,
        max_charge=cfg.max_charge,
        max_field=cfg.max_field,
    )
    VZ.save_frame_png(img, root / "final.png")
    hist = {"div_rms": result.div_rms_hist}
    if cfg.use_curl:
        hist["curl_rms"] = result.curl_rms_hist
    VZ.save_convergence_figure(hist, out_path=root / "convergence.png", title=f"{scenario} (multigrid={cfg.multigrid})", ylabel="level-0 residual (rms)")
    if bool(args.animate):
        VZ.save_animation_gif(result.frames, out_path=root / "anim.gif", fps=int(args.anim_fps), title_prefix=f"{scenario} ")

    metrics = compute_metrics(result, cfg=cfg)
    (root / "metrics.json").write_text(json.dumps(metrics, indent=2, sort_keys=True))
    print("\n[metrics]")
    print(metrics)
    print(f"\n[run_sim] wrote outputs to {root}")


if __name__ == "__main__":
    jax.config.update("jax_enable_x64", False)
    main()
