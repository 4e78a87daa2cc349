"""
Helpers turning scattered lat/lon samples into regular grids.

Grids are published row-major from north to south and west to east,
with missing cells as ``null``.
"""

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..errors import TransformError


def frame_from_table(table: Dict[str, Any], required: List[str]) -> pd.DataFrame:
    """
    Build a DataFrame from an ERDDAP-style ``{columnNames, rows}`` table.
    """
    try:
        columns = table["columnNames"]
        rows = table["rows"]
    except (KeyError, TypeError) as e:
        raise TransformError(f"Not an ERDDAP table: missing {e}") from e

    missing = [c for c in required if c not in columns]
    if missing:
        raise TransformError(
            f"Missing expected columns {missing}; received {list(columns)}"
        )
    frame = pd.DataFrame(rows, columns=columns)
    for column in required:
        if column != "time":
            frame[column] = pd.to_numeric(frame[column], errors="coerce")
    return frame


def pivot_grid(
    frame: pd.DataFrame,
    value: str,
    lat: str = "latitude",
    lon: str = "longitude",
) -> pd.DataFrame:
    """
    Pivot samples into a lat x lon table, latitudes descending.

    Coordinates present only with missing values still get a row or
    column, so the grid stays regular.
    """
    frame = frame.dropna(subset=[lat, lon])
    if frame.empty:
        raise TransformError("No valid data points to grid")
    frame = frame.drop_duplicates(subset=[lat, lon], keep="last")
    grid = frame.pivot(index=lat, columns=lon, values=value)
    return grid.sort_index(ascending=False).sort_index(axis=1)


def axis_step(values: np.ndarray, default: float) -> float:
    if len(values) > 1:
        return float(abs(values[1] - values[0]))
    return default


def grid_header(grid: pd.DataFrame, default_step: float) -> Dict[str, Any]:
    """``{nx, ny, lo1, la1, dx, dy}`` header for a pivoted grid."""
    lats = grid.index.to_numpy(dtype=float)
    lons = grid.columns.to_numpy(dtype=float)
    return {
        "nx": int(len(lons)),
        "ny": int(len(lats)),
        "lo1": float(lons[0]),
        "la1": float(lats[0]),
        "dx": axis_step(lons, default_step),
        "dy": axis_step(lats, default_step),
    }


def to_json_values(values: Any, decimals: Optional[int] = None) -> List[Any]:
    """Flatten an array to a list with NaN as None."""
    array = np.asarray(values, dtype=float).ravel()
    if decimals is not None:
        array = np.round(array, decimals)
    out = array.astype(object)
    out[np.isnan(array)] = None
    return out.tolist()


def to_json_rows(grid: pd.DataFrame, decimals: Optional[int] = None) -> List[List[Any]]:
    """Nested row lists with NaN as None."""
    array = grid.to_numpy(dtype=float)
    nx = array.shape[1]
    flat = to_json_values(array, decimals)
    return [flat[i : i + nx] for i in range(0, len(flat), nx)]


def velocity_layer(
    header: Dict[str, Any],
    category: int,
    number: int,
    name: str,
    unit: str,
    data: List[Any],
) -> Dict[str, Any]:
    """One component of a leaflet-velocity style vector field."""
    layer_header = {
        "parameterCategory": category,
        "parameterNumber": number,
        "parameterNumberName": name,
        "parameterUnit": unit,
    }
    layer_header.update(header)
    return {"header": layer_header, "data": data}


def bounds(grid: pd.DataFrame) -> Tuple[float, float, float, float]:
    lats = grid.index.to_numpy(dtype=float)
    lons = grid.columns.to_numpy(dtype=float)
    return float(lats.min()), float(lats.max()), float(lons.min()), float(lons.max())
