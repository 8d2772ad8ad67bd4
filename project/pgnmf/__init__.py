"""Non-negative matrix factorisation by projected gradient NNLS."""

from .config import Config
from .nmf_core import factors, init_factors, nnls_subproblem, reconstruction_error

__all__ = ["Config", "factors", "init_factors", "nnls_subproblem", "reconstruction_error"]
