"""
Non-negative matrix factorisation by alternating non-negative least squares
using projected gradients.

Chih-Jen Lin (2007) 'Projected Gradient Methods for Non-negative Matrix
Factorization.' Neural Computation 19:2756.
"""
import logging
import time

import numpy as np

from .config import Config


logger = logging.getLogger(__name__)


def projected_gradient(gradient, factor):
    """
    Restrict a gradient to the directions that can still decrease the objective
    under factor >= 0: entries are kept where the gradient is negative or the
    factor entry is positive, and zeroed elsewhere.
    """
    return np.where((gradient < 0) | (factor > 0), gradient, 0.0)


def project_nonnegative(X):
    # NaN entries fail the comparison and are zeroed as well
    return np.where(X > 0, X, 0.0)


def nnls_subproblem(V, W, Ho, tol, max_outer, max_inner):
    """
    Projected gradient NNLS: min_H>=0 0.5*||V - W H||^2 with W fixed.

    Parameters
    - V: (m, n) data matrix
    - W: (m, k) fixed factor
    - Ho: (k, n) starting point, not modified
    - tol: absolute stopping tolerance on the projected gradient norm
    - max_outer: maximum number of gradient steps
    - max_inner: maximum number of line search trials per step

    Returns
    - H: (k, n) non-negative solution
    - G: projected gradient computed at the start of the last step
    - iterations: number of gradient steps taken (0 when Ho already meets tol)
    - ok: whether a line search accepted a step after having to shrink alpha
    """
    V = np.asarray(V, dtype=np.float64)
    W = np.asarray(W, dtype=np.float64)
    H = np.array(Ho, dtype=np.float64)
    _check_dims(V, W, H)

    WtV = W.T @ V
    WtW = W.T @ W

    alpha, beta = 1.0, 0.1
    ok = False

    G = projected_gradient(WtW @ H - WtV, H)
    for i in range(max_outer):
        if i:
            G = projected_gradient(WtW @ H - WtV, H)

        if np.linalg.norm(G) < tol:
            break

        reduce = False
        Hp = H
        for j in range(max_inner):
            Hn = project_nonnegative(H - alpha * G)
            d = Hn - H
            gradd = np.sum(G * d)
            dQd = np.sum((WtW @ d) * d)
            # Armijo condition on the quadratic model along d
            sufficient = 0.99 * gradd + 0.5 * dQd < 0

            if j == 0:
                reduce = not sufficient
                Hp = H

            if reduce:
                if sufficient:
                    H = Hn
                    ok = True
                    break
                alpha *= beta
            else:
                # exact equality: a step that no longer moves any entry ends the expansion
                if not sufficient or np.array_equal(Hp, Hn):
                    H = Hp
                    break
                alpha /= beta
                Hp = Hn
    else:
        i = max_outer
        if max_outer:
            logger.debug("NNLS subproblem reached the iteration limit (%d)", max_outer)

    return H, G, i, ok


def _check_dims(V, W, H):
    for name, X in (("V", V), ("W", W), ("H", H)):
        if X.ndim != 2:
            raise ValueError(f"{name} must be a 2-D matrix, got {X.ndim} dimension(s)")

    m, n = V.shape
    wr, wc = W.shape
    hr, hc = H.shape
    if wr != m or hc != n or wc != hr:
        raise ValueError(
            f"dimension mismatch: V is {m}x{n}, W is {wr}x{wc}, H is {hr}x{hc}; "
            f"expected W as {m}xk and H as kx{n}"
        )


def factors(V, Wo, Ho, config: Config):
    """
    Non-negative factors W, H of V within the tolerance and computation limits of
    config, starting from the non-negative initial solutions Wo and Ho.

    Returns (W, H, ok). ok reports whether both subproblem solves of the last
    outer iteration accepted a step; it is False when no iteration ran. When the
    time limit expires the latest W, H are returned as a partial result.
    """
    start = time.monotonic()

    V = np.asarray(V, dtype=np.float64)
    W = np.asarray(Wo, dtype=np.float64)
    H = np.asarray(Ho, dtype=np.float64)
    _check_dims(V, W, H)

    gW = W @ (H @ H.T) - V @ H.T
    gH = (W.T @ W) @ H - W.T @ V

    # scale of the initial gradient anchors every tolerance of the run
    grad = np.linalg.norm(np.vstack([gW, gH.T]))
    tolW = max(0.001, config.tolerance) * grad
    tolH = tolW
    logger.debug("initial gradient norm %.6g, subproblem tolerance %.6g", grad, tolW)

    ok = False
    reason = "iteration limit"
    for it in range(config.max_iter):
        gW = projected_gradient(gW, W)
        gH = projected_gradient(gH, H)

        proj = np.sqrt(np.sum(gW * gW) + np.sum(gH * gH))
        logger.debug("iteration %d: projected gradient norm %.6g", it, proj)
        if proj < config.tolerance * grad:
            reason = "converged"
            break
        if time.monotonic() - start > config.time_limit:
            reason = "time limit"
            break

        # W is solved through the transposed problem V^T = H^T W^T
        Wt, gWt, iters, ok = nnls_subproblem(
            V.T, H.T, W.T, tolW, config.max_outer_sub, config.max_inner_sub
        )
        if iters == 0:
            tolW *= 0.1
        W, gW = Wt.T, gWt.T

        H, gH, iters, ok_h = nnls_subproblem(
            V, W, H, tolH, config.max_outer_sub, config.max_inner_sub
        )
        ok = ok and ok_h
        if iters == 0:
            tolH *= 0.1

    logger.info("factorisation stopped (%s), ok=%s", reason, ok)
    return W, H, ok


def init_factors(V, k, random_state=None):
    """
    Random non-negative starting factors for V: absolute values of standard
    normal draws, shapes (m, k) and (k, n).
    """
    m, n = np.shape(V)
    rng = np.random.default_rng(random_state)
    Wo = np.abs(rng.standard_normal((m, k)))
    Ho = np.abs(rng.standard_normal((k, n)))
    return Wo, Ho


def reconstruction_error(V, W, H):
    """Frobenius norm of V - W H."""
    return float(np.linalg.norm(np.asarray(V, dtype=np.float64) - W @ H, ord="fro"))
