"""Individuals and their dispersal status codes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from rangeshifter.types import Sex


class Status(IntEnum):
    """Life / dispersal status of an individual."""
    RESIDENT = 0            # in its patch, not dispersing
    DISPERSING = 1          # in transit, undecided
    POTENTIAL_SETTLER = 2   # reached a suitable patch this step
    WAITING = 3             # no suitable patch; waits for the next dispersal
    SETTLED = 4
    SETTLED_NEIGHBOUR = 5   # settled in a cell next to where it landed
    DIED_IN_TRANSFER = 6    # no suitable patch found, or max steps reached
    DIED_TRANSFER_MORT = 7  # per-step transfer mortality
    DIED_DEMOGRAPHIC = 8
    DIED_MAX_AGE = 9


SETTLED_STATES = (Status.SETTLED, Status.SETTLED_NEIGHBOUR)
DEAD_STATES = (Status.DIED_IN_TRANSFER, Status.DIED_TRANSFER_MORT,
               Status.DIED_DEMOGRAPHIC, Status.DIED_MAX_AGE)


@dataclass
class Individual:
    """One simulated organism.

    Cells are arena indices into the Landscape. ``natal_cell`` and
    ``natal_patch`` are where the current dispersal event started;
    ``pos_x`` / ``pos_y`` are continuous cell coordinates used by the
    movement processes.
    """
    id: int
    species_id: int
    cur_cell: Optional[int]
    stage: int = 1
    age: int = 1
    sex: Sex = Sex.FEMALE
    status: Status = Status.RESIDENT
    natal_cell: Optional[int] = None
    natal_patch: Optional[int] = None
    pos_x: float = 0.0
    pos_y: float = 0.0
    heading: Optional[float] = None
    prev_dx: int = 0
    prev_dy: int = 0
    steps: int = 0
    neighbour_move: bool = False

    @property
    def is_alive(self) -> bool:
        return self.status not in DEAD_STATES

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATES

    @property
    def in_transit(self) -> bool:
        return self.status in (Status.DISPERSING, Status.POTENTIAL_SETTLER,
                               Status.WAITING)

    def start_dispersal(self, patch_seq: Optional[int], x: int, y: int) -> None:
        """Mark as disperser leaving ``patch_seq`` from cell (x, y)."""
        self.status = Status.DISPERSING
        self.natal_cell = self.cur_cell
        self.natal_patch = patch_seq
        self.pos_x = x + 0.5
        self.pos_y = y + 0.5
        self.heading = None
        self.prev_dx = self.prev_dy = 0
        self.steps = 0
        self.neighbour_move = False

    def settle(self) -> None:
        """Become a resident of the patch it is recruited into."""
        self.status = Status.RESIDENT
        self.natal_cell = self.cur_cell
        self.steps = 0
        self.heading = None
        self.neighbour_move = False

    def develop(self, n_stages: int) -> None:
        if self.stage < n_stages - 1:
            self.stage += 1
