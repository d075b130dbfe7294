"""
Extremum reduction with payload.

A plain min/max reducer keeps only the extremal scalar. Here the whole record
of the winning timestep is kept: the key band picks the timestep, and every
payload band (value, month of occurrence, ...) is taken from that timestep.

Tie-breaking: among timesteps sharing the extremal key, the one with the
lowest index along the reduced axis wins. Series are time-ordered, so this is
the earliest occurrence. Missing keys (NaN) never win; a pixel whose keys are
all missing gets NaN in every payload band.
"""

from typing import Union

import numpy as np

from climate_stack.shared.contracts.climate_data import Direction


def argextreme(keys: np.ndarray, direction: Union[Direction, str], axis: int = 0):
    """Index of the extremal key along ``axis`` and a mask of all-missing positions.

    ``np.argmin``/``np.argmax`` return the first occurrence of the extremum,
    which implements the earliest-wins tie-break.
    """
    direction = Direction(direction)
    keys = np.asarray(keys, dtype=float)
    missing = np.isnan(keys)
    fill = np.inf if direction is Direction.SEEK_MIN else -np.inf
    filled = np.where(missing, fill, keys)
    if direction is Direction.SEEK_MIN:
        index = np.argmin(filled, axis=axis)
    else:
        index = np.argmax(filled, axis=axis)
    all_missing = np.all(missing, axis=axis)
    return index, all_missing


def reduce_with_payload(keys, payload, direction: Union[Direction, str]) -> np.ndarray:
    """Reduce (key, payload) records along the leading axis.

    Args:
        keys: array of shape ``(T, ...)``, the sort key per record
        payload: array of shape ``(T, P, ...)``, the P-band record per key
        direction: ``Direction.SEEK_MIN`` or ``Direction.SEEK_MAX``

    Returns:
        Array of shape ``(P, ...)`` holding the payload of the extremal record.
    """
    keys = np.asarray(keys, dtype=float)
    payload = np.asarray(payload, dtype=float)
    if keys.ndim == 0 or keys.shape[0] == 0:
        raise ValueError("reduce_with_payload needs at least one record")
    if payload.ndim < 2 or payload.shape[0] != keys.shape[0] or payload.shape[2:] != keys.shape[1:]:
        raise ValueError(f"Payload shape {payload.shape} does not match keys shape {keys.shape}")

    index, all_missing = argextreme(keys, direction, axis=0)
    # (1, P, ...) gather along the record axis
    gather = np.expand_dims(np.expand_dims(index, 0), 1)
    gather = np.broadcast_to(gather, (1,) + payload.shape[1:])
    winner = np.take_along_axis(payload, gather, axis=0)[0]
    if all_missing.ndim == 0:
        if all_missing:
            winner[...] = np.nan
    else:
        winner[:, all_missing] = np.nan
    return winner
