"""In-memory statistics recording.

The engine's only output obligation is to supply community statistics,
per-population stage counts and the environmental epsilon once per
(replicate, year, generation) after the statistics refresh. Recorders
collect them in memory and can save them to a compressed ``.npz``.

Usage:
    recorder = RangeRecorder(enabled=True, interval=1)
    # or, from the run's output section:
    recorder = RangeRecorder.from_context(ctx)

    # After each generation's statistics refresh:
    recorder.capture(rep, year, gen, community)

    # After the run:
    recorder.save("range.npz")

When enabled=False, all methods are no-ops.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import numpy as np

from rangeshifter.types import CommStats

if TYPE_CHECKING:
    from rangeshifter.community import Community
    from rangeshifter.context import SimulationContext


@dataclass
class RangeRow:
    """Community statistics at one call point."""
    rep: int
    year: int
    gen: int
    stats: CommStats
    stage_totals: np.ndarray
    eps: float


class RangeRecorder:
    """Records community range statistics."""

    def __init__(self, enabled: bool = False, interval: int = 1):
        """
        Args:
            enabled: Master switch. False = no-ops everywhere.
            interval: Capture every N years (1 = every year).
        """
        self.enabled = enabled
        self.interval = max(1, interval)
        self.rows: List[RangeRow] = []

    @classmethod
    def from_context(cls, ctx: 'SimulationContext') -> 'RangeRecorder':
        """Recorder driven by ``output.range_interval`` (0 disables it)."""
        interval = ctx.output.range_interval
        return cls(enabled=interval > 0, interval=interval)

    def should_capture(self, year: int) -> bool:
        if not self.enabled:
            return False
        return year % self.interval == 0

    def capture(self, rep: int, year: int, gen: int, community: 'Community') -> None:
        if not self.should_capture(year):
            return
        eps = 0.0
        stoch = community.ctx.stochasticity
        if stoch.enabled and not stoch.local:
            eps = community.landscape.get_global_stoch(year)
        self.rows.append(RangeRow(
            rep=rep,
            year=year,
            gen=gen,
            stats=community.get_stats(),
            stage_totals=community.stage_totals(),
            eps=eps,
        ))

    # ── array views ────────────────────────────────────────────────

    def _column(self, name: str, dtype=np.int64) -> np.ndarray:
        return np.array([getattr(r.stats, name) for r in self.rows], dtype=dtype)

    @property
    def ninds(self) -> np.ndarray:
        return self._column('ninds')

    @property
    def occupied(self) -> np.ndarray:
        return self._column('occupied')

    @property
    def suitable(self) -> np.ndarray:
        return self._column('suitable')

    @property
    def years(self) -> np.ndarray:
        return np.array([r.year for r in self.rows], dtype=np.int32)

    def as_arrays(self) -> Dict[str, np.ndarray]:
        """All recorded rows as parallel arrays."""
        n_stages = max((len(r.stage_totals) for r in self.rows), default=0)
        stages = np.zeros((len(self.rows), n_stages), dtype=np.int64)
        for i, r in enumerate(self.rows):
            stages[i, :len(r.stage_totals)] = r.stage_totals
        arrays = {
            'rep': np.array([r.rep for r in self.rows], dtype=np.int32),
            'year': self.years,
            'gen': np.array([r.gen for r in self.rows], dtype=np.int32),
            'eps': np.array([r.eps for r in self.rows], dtype=np.float32),
            'stage_totals': stages,
        }
        for name in ('ninds', 'nnonjuvs', 'suitable', 'occupied',
                     'min_x', 'max_x', 'min_y', 'max_y'):
            arrays[name] = self._column(name)
        return arrays

    def replicate(self, rep: int) -> Dict[str, np.ndarray]:
        """Arrays restricted to one replicate."""
        arrays = self.as_arrays()
        mask = arrays['rep'] == rep
        return {k: v[mask] for k, v in arrays.items()}

    def save(self, path: str) -> None:
        """Save to a compressed npz file (parent directories are created)."""
        if not self.rows:
            return
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(path, **self.as_arrays())

    @classmethod
    def load(cls, path: str) -> Dict[str, np.ndarray]:
        """Load arrays written by save()."""
        with np.load(path) as data:
            return {k: data[k] for k in data.files}


class PopulationRecorder:
    """Records one row per population at each call point."""

    def __init__(self, enabled: bool = False, interval: int = 1):
        self.enabled = enabled
        self.interval = max(1, interval)
        self.rows: List[dict] = []

    @classmethod
    def from_context(cls, ctx: 'SimulationContext') -> 'PopulationRecorder':
        interval = ctx.output.population_interval
        return cls(enabled=interval > 0, interval=interval)

    def capture(self, rep: int, year: int, gen: int, community: 'Community') -> None:
        if not self.enabled or year % self.interval != 0:
            return
        for row in community.population_rows():
            row = dict(row)
            row.update(rep=rep, year=year, gen=gen)
            self.rows.append(row)

    def patch_series(self, species: int, patch: int) -> Tuple[np.ndarray, np.ndarray]:
        """(years, n_inds) for one patch across all captured rows."""
        sel = [r for r in self.rows if r['species'] == species and r['patch'] == patch]
        return (np.array([r['year'] for r in sel], dtype=np.int32),
                np.array([r['n_inds'] for r in sel], dtype=np.int64))

    def totals_by_year(self, rep: Optional[int] = None) -> Dict[int, int]:
        out: Dict[int, int] = {}
        for r in self.rows:
            if rep is not None and r['rep'] != rep:
                continue
            out[r['year']] = out.get(r['year'], 0) + r['n_inds']
        return out
