import math
from dataclasses import dataclass
from datetime import timedelta


@dataclass(slots=True)
class Config:
    """Stopping and budget settings for a factorisation run.

    - tolerance: relative stopping tolerance on the projected gradient norm
    - max_iter: maximum number of outer (alternating) iterations
    - time_limit: wall time budget in seconds (a timedelta is converted)
    - max_outer_sub, max_inner_sub: iteration caps of the NNLS subproblem's
      gradient loop and line search
    """

    tolerance: float
    max_iter: int
    time_limit: float
    max_outer_sub: int
    max_inner_sub: int

    def __post_init__(self):
        if isinstance(self.time_limit, timedelta):
            self.time_limit = self.time_limit.total_seconds()
        self.tolerance = float(self.tolerance)
        self.time_limit = float(self.time_limit)

        if not math.isfinite(self.tolerance) or self.tolerance < 0:
            raise ValueError(f"tolerance must be a finite non-negative number, got {self.tolerance!r}")
        if math.isnan(self.time_limit) or self.time_limit < 0:
            raise ValueError(f"time_limit must be non-negative, got {self.time_limit!r}")
        for name in ("max_iter", "max_outer_sub", "max_inner_sub"):
            value = getattr(self, name)
            if int(value) != value or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
            setattr(self, name, int(value))
