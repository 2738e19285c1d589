#!/usr/bin/env python3
"""Interactive window: draw charges/particles with the mouse, watch the field relax.

Mouse (written on press and drag, then again every tick while held):
  left   negative charge        right   positive charge
  middle particles              back/forward  +/- magnet (with --curl)
Keys:
  up/down  inspected level      v  cycle view (field/divergence/curl/trail)
  m        toggle multigrid     q  quit (matplotlib default)

Example:
  python viewer.py --ng 128 --scaling 6 --scenario point
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
import time

_THIS_DIR = Path(__file__).resolve().parent
if str(_THIS_DIR) not in sys.path:
    sys.path.insert(0, str(_THIS_DIR))

import config_io as C  # noqa: E402
import injection as I  # noqa: E402
import run_sim as RS  # noqa: E402
import scenarios as SC  # noqa: E402
import simulation as S  # noqa: E402
import visualize as VZ  # noqa: E402


def release_default_keymaps(rc) -> None:
    """Drop our keys and the back/forward mouse buttons from matplotlib's toolbar keymaps."""
    taken = set(I.KEY_ACTIONS) | {"MouseButton.BACK", "MouseButton.FORWARD"}
    for name in [k for k in rc if k.startswith("keymap.")]:
        rc[name] = [k for k in rc[name] if k not in taken]


class Viewer:
    def __init__(self, cfg: S.SimConfig, state: S.SimState) -> None:
        import matplotlib.pyplot as plt

        release_default_keymaps(plt.rcParams)

        self.cfg = cfg
        self.state = state
        self.rt = S.make_runtime(cfg)
        self.clock = S.TickClock(cfg.tick_rate)
        self.closed = False

        px = cfg.grid_size * cfg.scaling
        dpi = 100
        self.fig = plt.figure(figsize=(px / dpi, px / dpi), dpi=dpi)
        self.ax = self.fig.add_axes([0.0, 0.0, 1.0, 1.0])
        self.ax.set_axis_off()
        self.im = self.ax.imshow(self._frame(), interpolation="nearest", origin="upper")

        canvas = self.fig.canvas
        canvas.mpl_connect("button_press_event", self._on_press)
        canvas.mpl_connect("button_release_event", self._on_release)
        canvas.mpl_connect("motion_notify_event", self._on_move)
        canvas.mpl_connect("key_press_event", self._on_key)
        canvas.mpl_connect("close_event", self._on_close)

        self.timer = canvas.new_timer(interval=max(1, int(1000.0 / cfg.tick_rate)))
        self.timer.add_callback(self._on_timer)
        self.t_start = time.perf_counter()

    def _frame(self):
        return VZ.display_frame(
            self.state.pyramid,
            self.state.particles,
            level=self.rt.level,
            view=self.rt.view,
            scaling=self.cfg.scaling,
            max_charge=self.cfg.max_charge,
            max_field=self.cfg.max_field,
        )

    def _update_cursor(self, event) -> None:
        if event.inaxes is not self.ax or event.xdata is None or event.ydata is None:
            self.rt.cursor = None
            return
        # imshow puts pixel centres on integers
        self.rt.cursor = I.pointer_to_cell(event.xdata + 0.5, event.ydata + 0.5, self.cfg.scaling, self.cfg.grid_size)

    def _paint(self) -> None:
        # pointer writes land on the event, not on the next tick
        self.state = S.inject(self.state, self.cfg, self.rt)

    def _on_press(self, event) -> None:
        self._update_cursor(event)
        try:
            self.rt.buttons.add(I.Button(int(event.button)))
        except (TypeError, ValueError):
            return
        self._paint()

    def _on_release(self, event) -> None:
        try:
            self.rt.buttons.discard(I.Button(int(event.button)))
        except (TypeError, ValueError):
            return

    def _on_move(self, event) -> None:
        self._update_cursor(event)
        if self.rt.buttons:
            self._paint()

    def _on_key(self, event) -> None:
        if I.handle_key(self.rt, event.key):
            self.fig.canvas.manager.set_window_title(self._title())
            self._redraw()

    def _on_close(self, event) -> None:
        self.closed = True
        self.timer.stop()

    def _title(self) -> str:
        return f"level={self.rt.level} view={self.rt.view.value} multigrid={self.rt.multigrid} tick={self.state.tick}"

    def _redraw(self) -> None:
        self.im.set_data(self._frame())
        self.fig.canvas.draw_idle()

    def _on_timer(self) -> None:
        if self.closed:
            return
        due = self.clock.due(time.perf_counter() - self.t_start)
        for _ in range(due):
            self.state = S.step(self.state, self.cfg, self.rt)
        if due:
            self._redraw()

    def show(self) -> None:
        import matplotlib.pyplot as plt

        self.fig.canvas.manager.set_window_title(self._title())
        self.timer.start()
        plt.show()


def main() -> None:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default=None)
    pre_args, _ = pre.parse_known_args()
    cfg_raw = C.load_config_file(pre_args.config) if pre_args.config else {}
    sim_file, _ = C.split_sections(cfg_raw)

    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, default=None, help="TOML/JSON parameter file (optional).")
    ap.add_argument("--scenario", type=str, default="empty", choices=sorted(SC.SCENARIOS))
    ap.add_argument("--ng", type=int, default=None)
    ap.add_argument("--levels", type=int, default=None)
    ap.add_argument("--iterations", type=str, default=None)
    ap.add_argument("--scaling", type=int, default=None)
    ap.add_argument("--brush-radius", type=int, default=None)
    ap.add_argument("--curl", action="store_true")
    args = ap.parse_args()

    overrides = dict(sim_file)
    if args.ng is not None:
        overrides["grid_size"] = int(args.ng)
    if args.levels is not None:
        overrides["levels"] = int(args.levels)
    if args.iterations is not None:
        overrides["iterations"] = RS.parse_iterations(args.iterations)
    if args.scaling is not None:
        overrides["scaling"] = int(args.scaling)
    if args.brush_radius is not None:
        overrides["brush_radius"] = int(args.brush_radius)
    if args.curl:
        overrides["use_curl"] = True
    try:
        cfg = C.sim_config_from_dict(overrides)
        state = SC.build(args.scenario, cfg)
    except ValueError as e:
        raise SystemExit(f"invalid configuration: {e}")

    Viewer(cfg, state).show()


if __name__ == "__main__":
    main()
