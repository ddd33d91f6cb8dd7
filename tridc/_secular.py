"""
_secular.py
===========
Secular equation evaluation and root finding for rank-one merges.

Merging two solved sub-blocks reduces to the eigenproblem of
``diag(d) + rho * z z^T`` (rho > 0; the merge engine flips signs beforehand).
Its eigenvalues are the roots of the secular function

    f(x) = 1/rho + sum_i z_i**2 / (d_i - x)

with exactly one root strictly between each pair of consecutive poles and one
root above the largest pole.

Both root finders work on a private copy of the sorted poles.  While iterating
they shift that copy in place by every accepted correction, so that on return
``poles[i]`` holds ``d_i - lambda`` computed without cancellation.  The merge
engine reuses these differences to rescale z and to build eigenvectors.

Exported Functions
------------------
secular_eval : njit function
    Value, derivative, one-sided partial sums and error bound at a point.
solve_interior : njit function
    Root between poles[k] and poles[k+1].
solve_last : njit function
    Root above the largest pole.

Notes
-----
Iteration state is carried in the immutable ``RootState`` namedtuple; every
step builds a new state from the previous one.  All kernels use
``error_model="numpy"`` so degenerate steps yield inf/nan (rejected by the
bracket guard) instead of raising inside compiled code.
"""

from collections import namedtuple

import numpy as np
from numba import njit


MAXITERS = 50

# secular_eval modes
FULL = 0
EXCLUDE_ONE = 1
EXCLUDE_TWO = 2


SecularValue = namedtuple(
    "SecularValue", ["fx", "fdx", "gx", "gdx", "hx", "hdx", "er"]
)

RootState = namedtuple(
    "RootState",
    ["tau", "lowb", "uppb", "fx", "fdx", "gx", "gdx", "hx", "hdx", "er", "w", "fixed"],
)


# ============================================================================ #
# Evaluation                                                                   #
# ============================================================================ #


@njit(cache=True, error_model="numpy")
def secular_eval(mode, k, poles, z, p, cor, modif):
    """
    Evaluate the secular function at ``cor`` relative to the current poles.

    Parameters
    ----------
    mode : int
        FULL sums every pole.  EXCLUDE_ONE leaves pole ``k`` out and
        EXCLUDE_TWO leaves poles ``k`` and ``k+1`` out; the caller adds the
        excluded terms back with its own, better conditioned, formulas.
    k : int
        Pole index the mode refers to.  For FULL, poles ``0..k`` go to the
        lower sum and ``k+1..`` to the upper sum.
    poles : float64[dd]
        Pole array.  Shifted in place by ``cor`` when ``modif`` is True
        (including the excluded poles).
    z : float64[dd]
        Rank-one vector.
    p : float
        Constant term, ``1/rho``.
    cor : float
        Evaluation point, expressed as an offset from the current origin.
    modif : bool
        Whether to commit the shift to ``poles``.

    Returns
    -------
    SecularValue
        ``fx = p + gx + hx`` and ``fdx = gdx + hdx`` where g/h are the sums
        below and above the excluded pole(s); ``er`` is the running error
        bound of the accumulation.
    """
    dd = poles.shape[0]
    if mode == FULL:
        gout = k + 1
        hout = k
    elif mode == EXCLUDE_ONE:
        if modif:
            poles[k] -= cor
        gout = k
        hout = k
    else:
        if modif:
            poles[k] -= cor
            poles[k + 1] -= cor
        gout = k
        hout = k + 1

    gx = 0.0
    gdx = 0.0
    er = 0.0
    for i in range(gout):
        tmp = poles[i] - cor
        if modif:
            poles[i] = tmp
        t = z[i] / tmp
        gx += z[i] * t
        gdx += t * t
        er += gx
    er = abs(er)

    hx = 0.0
    hdx = 0.0
    for i in range(dd - 1, hout, -1):
        tmp = poles[i] - cor
        if modif:
            poles[i] = tmp
        t = z[i] / tmp
        hx += z[i] * t
        hdx += t * t
        er += hx

    return SecularValue(p + gx + hx, gdx + hdx, gx, gdx, hx, hdx, er)


@njit(cache=True, error_model="numpy")
def _absorb_origin(val, poles, z, kk, tau, pinv):
    """Add the origin pole back into an EXCLUDE_ONE evaluation."""
    bb = z[kk]
    w = bb / poles[kk]
    fdx = val.fdx + w * w
    bb = bb * w
    fx = val.fx + bb
    er = val.er + 8.0 * (val.hx - val.gx) + 2.0 * pinv + 3.0 * abs(bb) + abs(tau) * fdx
    return SecularValue(fx, fdx, val.gx, val.gdx, val.hx, val.hdx, er), w


# ============================================================================ #
# Step helpers                                                                 #
# ============================================================================ #


@njit(cache=True)
def _narrow(fx, tau, lowb, uppb):
    if fx <= 0.0:
        lowb = max(lowb, tau)
    else:
        uppb = min(uppb, tau)
    return lowb, uppb


@njit(cache=True)
def _converged(state, tol):
    """
    Stopping test.

    Either ``|f|`` is within the rounding error bound, or the bracket around
    ``tau`` has shrunk to a few units in the last place, so no step can
    improve the root any further.
    """
    if abs(state.fx) <= tol * state.er:
        return True
    lowb, uppb = _narrow(state.fx, state.tau, state.lowb, state.uppb)
    return uppb - lowb <= 4.0 * tol * max(abs(lowb), abs(uppb))


@njit(cache=True, error_model="numpy")
def _rational_eta(aa, bb, cc, aa_zero):
    """Root of the two-pole rational model ``cc*eta**2 - aa*eta + bb = 0``."""
    if cc == 0.0:
        if aa == 0.0:
            aa = aa_zero
        return bb / aa
    eta = np.sqrt(abs(aa * aa - 4.0 * bb * cc))
    if aa <= 0.0:
        return (aa - eta) / (2.0 * cc)
    return 2.0 * bb / (aa + eta)


@njit(cache=True, error_model="numpy")
def _safeguard(eta, tau, fx, slope, lowb, uppb, strict):
    """
    Validate a correction against the current bracket.

    A step that does not move against the sign of ``fx`` is replaced by the
    Newton step ``-fx/slope`` (``strict`` accepts ``fx*eta == 0``).  A step
    leaving ``[lowb, uppb]``, or a non-finite one, becomes a bisection.
    """
    s = fx * eta
    if s > 0.0 or (s == 0.0 and not strict):
        eta = -fx / slope
    if not (lowb <= tau + eta <= uppb):
        if fx < 0.0:
            eta = (uppb - tau) / 2.0
        else:
            eta = (lowb - tau) / 2.0
    return eta


# ============================================================================ #
# Interior root                                                                #
# ============================================================================ #


@njit(cache=True, error_model="numpy")
def _interior_step(state, poles, z, k, kk, up, dk, dk1, pinv, first):
    k1 = k + 1
    lowb, uppb = _narrow(state.fx, state.tau, state.lowb, state.uppb)

    ddk = poles[k]
    ddk1 = poles[k1]
    fx = state.fx
    fdx = state.fdx
    gdx = state.gdx
    hdx = state.hdx
    if state.fixed:
        # fixed-weight model: exact weight for the origin pole
        if up:
            cc = fx - ddk1 * fdx - (dk - dk1) * z[k] * z[k] / ddk / ddk
            aa_zero = z[k] * z[k] + ddk1 * ddk1 * (gdx + hdx)
        else:
            cc = fx - ddk * fdx - (dk1 - dk) * z[k1] * z[k1] / ddk1 / ddk1
            aa_zero = z[k1] * z[k1] + ddk * ddk * (gdx + hdx)
    else:
        # reweighted model: origin pole folded into its side's derivative
        if up:
            gdx += state.w * state.w
        else:
            hdx += state.w * state.w
        cc = fx - ddk * gdx - ddk1 * hdx
        aa_zero = ddk * ddk * gdx + ddk1 * ddk1 * hdx
    aa = (ddk + ddk1) * fx - ddk * ddk1 * fdx
    bb = ddk * ddk1 * fx

    eta = _rational_eta(aa, bb, cc, aa_zero)
    eta = _safeguard(eta, state.tau, fx, fdx, lowb, uppb, False)
    tau = state.tau + eta

    val = secular_eval(EXCLUDE_ONE, kk, poles, z, pinv, eta, True)
    val, w = _absorb_origin(val, poles, z, kk, tau, pinv)

    if first:
        sign = -1.0 if up else 1.0
        fixed = sign * val.fx > abs(fx) / 10.0
    elif val.fx * fx > 0.0 and abs(val.fx) > abs(fx) / 10.0:
        fixed = not state.fixed
    else:
        fixed = state.fixed

    return RootState(
        tau, lowb, uppb, val.fx, val.fdx, val.gx, val.gdx, val.hx, val.hdx,
        val.er, w, fixed,
    )


@njit(cache=True, error_model="numpy")
def solve_interior(poles, z, rho, k, tol):
    """
    Find the root of the secular equation in ``(poles[k], poles[k+1])``.

    Parameters
    ----------
    poles : float64[dd]
        Sorted, distinct poles.  Overwritten with ``poles - root``.
    z : float64[dd]
        Rank-one vector, no zero entries.
    rho : float
        Positive rank-one weight.
    k : int
        Interval index, ``0 <= k < dd - 1``.
    tol : float
        Relative convergence tolerance (machine epsilon).

    Returns
    -------
    tuple[float, int]
        ``(root, flag)`` with flag 0 on convergence and 1 if the iteration
        cap was reached first.
    """
    k1 = k + 1
    dk = poles[k]
    dk1 = poles[k1]
    width = dk1 - dk
    pinv = 1.0 / rho

    # sign of f at the midpoint decides which half holds the root
    mid = secular_eval(EXCLUDE_TWO, k, poles, z, pinv, (dk + dk1) / 2.0, False)
    cc = mid.fx
    gdx = z[k] * z[k]
    hdx = z[k1] * z[k1]
    fx = cc + 2.0 * (hdx - gdx) / width

    if fx > 0.0:
        up = True
        kk = k
        origin = dk
        lowb = 0.0
        uppb = width / 2.0
        aa = cc * width + gdx + hdx
        bb = gdx * width
        eta = np.sqrt(abs(aa * aa - 4.0 * bb * cc))
        if aa > 0.0:
            tau = 2.0 * bb / (aa + eta)
        else:
            tau = (aa - eta) / (2.0 * cc)
    else:
        up = False
        kk = k1
        origin = dk1
        lowb = -width / 2.0
        uppb = 0.0
        aa = cc * width - gdx - hdx
        bb = hdx * width
        eta = np.sqrt(abs(aa * aa + 4.0 * bb * cc))
        if aa < 0.0:
            tau = 2.0 * bb / (aa - eta)
        else:
            tau = -(aa + eta) / (2.0 * cc)

    # move the origin to the nearer pole, then to the initial guess
    secular_eval(FULL, kk, poles, z, pinv, origin, True)
    val = secular_eval(EXCLUDE_ONE, kk, poles, z, pinv, tau, True)
    val, w = _absorb_origin(val, poles, z, kk, tau, pinv)
    state = RootState(
        tau, lowb, uppb, val.fx, val.fdx, val.gx, val.gdx, val.hx, val.hdx,
        val.er, w, True,
    )

    converged = False
    for it in range(MAXITERS):
        if _converged(state, tol):
            converged = True
            break
        state = _interior_step(state, poles, z, k, kk, up, dk, dk1, pinv, it == 0)

    return origin + state.tau, 0 if converged else 1


# ============================================================================ #
# Last root                                                                    #
# ============================================================================ #


@njit(cache=True, error_model="numpy")
def _last_guess(cc, gap, gdx, hdx):
    aa = -cc * gap + gdx + hdx
    bb = hdx * gap
    eta = np.sqrt(abs(aa * aa + 4.0 * bb * cc))
    if aa < 0.0:
        return 2.0 * bb / (eta - aa)
    return (aa + eta) / (2.0 * cc)


@njit(cache=True, error_model="numpy")
def _last_error(val, tau, pinv):
    return val.er + abs(tau) * (val.hdx + val.gdx) - 8.0 * (val.hx + val.gx) - val.hx + pinv


@njit(cache=True, error_model="numpy")
def _last_step(state, poles, z, k, km1, pinv, first):
    lowb, uppb = _narrow(state.fx, state.tau, state.lowb, state.uppb)

    ddk = poles[k]
    ddkm1 = poles[km1]
    fx = state.fx
    gdx = state.gdx
    hdx = state.hdx
    cc = fx - ddkm1 * gdx - ddk * hdx
    if first:
        cc = abs(cc)
    aa = (ddk + ddkm1) * fx - ddk * ddkm1 * (gdx + hdx)
    bb = ddk * ddkm1 * fx
    if cc == 0.0:
        eta = uppb - state.tau
    else:
        eta = np.sqrt(abs(aa * aa - 4.0 * bb * cc))
        if aa >= 0.0:
            eta = (aa + eta) / (2.0 * cc)
        else:
            eta = 2.0 * bb / (aa - eta)

    eta = _safeguard(eta, state.tau, fx, gdx + hdx, lowb, uppb, True)
    tau = state.tau + eta

    val = secular_eval(FULL, km1, poles, z, pinv, eta, True)
    return RootState(
        tau, lowb, uppb, val.fx, val.fdx, val.gx, val.gdx, val.hx, val.hdx,
        _last_error(val, tau, pinv), 0.0, True,
    )


@njit(cache=True, error_model="numpy")
def solve_last(poles, z, rho, tol):
    """
    Find the root of the secular equation above the largest pole.

    The root lies in ``(poles[-1], poles[-1] + rho * |z|**2]``; the search is
    bracketed in ``(0, rho]`` relative to the largest pole.  Requires at
    least two poles.

    Parameters
    ----------
    poles : float64[dd]
        Sorted, distinct poles, ``dd >= 2``.  Overwritten with
        ``poles - root``.
    z : float64[dd]
        Rank-one vector with norm at most 1.
    rho : float
        Positive rank-one weight.
    tol : float
        Relative convergence tolerance.

    Returns
    -------
    tuple[float, int]
        ``(root, flag)`` with flag 0 on convergence, 1 otherwise.
    """
    dd = poles.shape[0]
    k = dd - 1
    km1 = dd - 2
    dk = poles[k]
    dkm1 = poles[km1]
    gap = dk - dkm1
    pinv = 1.0 / rho

    x = dk + rho / 2.0
    mid = secular_eval(EXCLUDE_TWO, km1, poles, z, pinv, x, False)
    cc = mid.fx
    gdx = z[km1] * z[km1]
    hdx = z[k] * z[k]
    fx = cc + gdx / (dkm1 - x) - 2.0 * hdx * pinv

    if fx > 0.0:
        lowb = 0.0
        uppb = rho / 2.0
        tau = _last_guess(cc, gap, gdx, hdx)
    else:
        lowb = rho / 2.0
        uppb = rho
        if cc <= gdx / (gap + rho) + hdx / rho:
            tau = rho
        else:
            tau = _last_guess(cc, gap, gdx, hdx)

    secular_eval(FULL, km1, poles, z, pinv, dk, True)
    val = secular_eval(FULL, km1, poles, z, pinv, tau, True)
    state = RootState(
        tau, lowb, uppb, val.fx, val.fdx, val.gx, val.gdx, val.hx, val.hdx,
        _last_error(val, tau, pinv), 0.0, True,
    )

    converged = False
    for it in range(MAXITERS):
        if _converged(state, tol):
            converged = True
            break
        state = _last_step(state, poles, z, k, km1, pinv, it == 0)

    return dk + state.tau, 0 if converged else 1
