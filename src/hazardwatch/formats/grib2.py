"""
Minimal GRIB2 decoder for NOMADS GFS subsets.

Supports what the GFS 0.25 degree filter service returns:

- grid definition template 3.0 (regular latitude/longitude)
- any product template whose first octets carry category and number
  (4.0, 4.8 and friends)
- data representation templates 5.0 (simple packing), 5.2 (complex
  packing) and 5.3 (complex packing with spatial differencing), the
  latter two with missing value management 0
- bitmap section 6 (explicit bitmap or none)

Anything else raises GribError, which collectors report as a transform
failure.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

import numpy as np

from ..errors import TransformError

_CHUNK = 1 << 16


class GribError(TransformError):
    """Malformed or unsupported GRIB2 content."""


@dataclass
class GridDefinition:
    """Regular lat/lon grid (template 3.0), angles in degrees."""

    ni: int
    nj: int
    la1: float
    lo1: float
    la2: float
    lo2: float
    di: float
    dj: float
    scan_mode: int

    @property
    def npoints(self) -> int:
        return self.ni * self.nj


@dataclass
class GribField:
    """One decoded field, values shaped (nj, ni) north to south."""

    discipline: int
    category: int
    number: int
    reference_time: datetime
    forecast_time: int
    grid: GridDefinition
    values: np.ndarray

    def header(self) -> Dict[str, float]:
        """``{nx, ny, lo1, la1, dx, dy}`` for north-to-south rows."""
        g = self.grid
        return {
            "nx": g.ni,
            "ny": g.nj,
            "lo1": min(g.lo1, g.lo2) if g.scan_mode & 0x80 else g.lo1,
            "la1": max(g.la1, g.la2),
            "dx": g.di,
            "dy": g.dj,
        }

    @property
    def has_data(self) -> bool:
        return self.values.size > 0 and not np.isnan(self.values).all()


def _uint(buf: bytes, start: int, size: int) -> int:
    return int.from_bytes(buf[start : start + size], "big")


def _signed(buf: bytes, start: int, size: int) -> int:
    """GRIB2 sign-and-magnitude integer."""
    raw = _uint(buf, start, size)
    sign_bit = 1 << (8 * size - 1)
    return -(raw & ~sign_bit) if raw & sign_bit else raw


def _angle(buf: bytes, start: int) -> float:
    return _signed(buf, start, 4) * 1e-6


def _bits(data: bytes) -> np.ndarray:
    return np.unpackbits(np.frombuffer(data, dtype=np.uint8))


def unpack_bits(bits: np.ndarray, starts: np.ndarray, widths: np.ndarray) -> np.ndarray:
    """
    Read unsigned big-endian integers of per-value width from a bit array.
    """
    count = len(starts)
    out = np.zeros(count, dtype=np.int64)
    if count == 0:
        return out
    max_width = int(widths.max())
    if max_width == 0:
        return out
    if max_width > 62:
        raise GribError(f"Unsupported packed width: {max_width} bits")
    last = int((starts + widths).max())
    if last > bits.size:
        raise GribError("Packed data truncated")

    k = np.arange(max_width, dtype=np.int64)
    for lo in range(0, count, _CHUNK):
        s = starts[lo : lo + _CHUNK, None]
        w = widths[lo : lo + _CHUNK, None]
        valid = k[None, :] < w
        idx = np.where(valid, s + k[None, :], 0)
        shifts = np.where(valid, w - 1 - k[None, :], 0)
        chunk = bits[idx].astype(np.int64) * valid
        out[lo : lo + _CHUNK] = (chunk << shifts).sum(axis=1)
    return out


def unpack_fixed(bits: np.ndarray, offset: int, count: int, width: int) -> np.ndarray:
    starts = offset + np.arange(count, dtype=np.int64) * width
    return unpack_bits(bits, starts, np.full(count, width, dtype=np.int64))


def _octet_align(bit_offset: int) -> int:
    return (bit_offset + 7) // 8 * 8


class _Packing:
    """Data representation section values (templates 5.0, 5.2, 5.3)."""

    def __init__(self, sec: bytes):
        self.npoints = _uint(sec, 5, 4)
        self.template = _uint(sec, 9, 2)
        if self.template not in (0, 2, 3):
            raise GribError(
                f"Unsupported data representation template 5.{self.template}"
            )
        self.reference = struct.unpack(">f", sec[11:15])[0]
        self.binary_scale = _signed(sec, 15, 2)
        self.decimal_scale = _signed(sec, 17, 2)
        self.nbits = sec[19]
        if self.template == 0:
            return

        self.missing_management = sec[22]
        if self.missing_management != 0:
            raise GribError(
                f"Unsupported missing value management {self.missing_management}"
            )
        self.ngroups = _uint(sec, 31, 4)
        self.width_reference = sec[35]
        self.width_bits = sec[36]
        self.length_reference = _uint(sec, 37, 4)
        self.length_increment = sec[41]
        self.last_length = _uint(sec, 42, 4)
        self.length_bits = sec[46]
        self.sd_order = sec[47] if self.template == 3 else 0
        self.sd_octets = sec[48] if self.template == 3 else 0
        if self.sd_order not in (0, 1, 2):
            raise GribError(f"Unsupported spatial differencing order {self.sd_order}")

    def scale(self, packed: np.ndarray) -> np.ndarray:
        scaled = self.reference + packed * 2.0**self.binary_scale
        return scaled / 10.0**self.decimal_scale

    def decode(self, data: bytes) -> np.ndarray:
        if self.npoints == 0:
            return np.zeros(0)
        if self.template == 0:
            if self.nbits == 0:
                return self.scale(np.zeros(self.npoints))
            return self.scale(unpack_fixed(_bits(data), 0, self.npoints, self.nbits))
        return self.scale(self._decode_complex(data))

    def _decode_complex(self, data: bytes) -> np.ndarray:
        pos = 0
        firsts: List[int] = []
        minimum = 0
        if self.sd_order:
            size = self.sd_octets
            for _ in range(self.sd_order):
                firsts.append(_signed(data, pos, size))
                pos += size
            minimum = _signed(data, pos, size)
            pos += size

        bits = _bits(data[pos:])
        ng = self.ngroups
        offset = 0

        refs = unpack_fixed(bits, offset, ng, self.nbits)
        offset = _octet_align(offset + ng * self.nbits)

        widths = unpack_fixed(bits, offset, ng, self.width_bits) + self.width_reference
        offset = _octet_align(offset + ng * self.width_bits)

        lengths = (
            unpack_fixed(bits, offset, ng, self.length_bits) * self.length_increment
            + self.length_reference
        )
        offset = _octet_align(offset + ng * self.length_bits)
        if ng:
            lengths[-1] = self.last_length
        if int(lengths.sum()) != self.npoints:
            raise GribError(
                f"Group lengths sum to {int(lengths.sum())}, expected {self.npoints}"
            )

        value_widths = np.repeat(widths, lengths)
        starts = offset + np.concatenate(([0], np.cumsum(value_widths)[:-1]))
        values = unpack_bits(bits, starts, value_widths) + np.repeat(refs, lengths)

        if self.sd_order:
            values = self._undifference(values, firsts, minimum)
        return values

    def _undifference(
        self, values: np.ndarray, firsts: List[int], minimum: int
    ) -> np.ndarray:
        order = self.sd_order
        out = values.astype(np.int64)
        out[order:] += minimum
        out[:order] = firsts[: len(out[:order])]
        if order == 1:
            return np.cumsum(out)
        # Second order: recover first differences, then the values
        diffs = out.copy()
        if len(out) > 1:
            diffs[1] = out[1] - out[0]
            diffs[1:] = np.cumsum(diffs[1:])
        return np.cumsum(diffs)


def _parse_grid(sec: bytes) -> GridDefinition:
    template = _uint(sec, 12, 2)
    if template != 0:
        raise GribError(f"Unsupported grid definition template 3.{template}")
    basic_angle = _uint(sec, 38, 4)
    if basic_angle not in (0, 0xFFFFFFFF):
        raise GribError("Grids with a non-default basic angle are not supported")
    return GridDefinition(
        ni=_uint(sec, 30, 4),
        nj=_uint(sec, 34, 4),
        la1=_angle(sec, 46),
        lo1=_angle(sec, 50),
        la2=_angle(sec, 55),
        lo2=_angle(sec, 59),
        di=_uint(sec, 63, 4) * 1e-6,
        dj=_uint(sec, 67, 4) * 1e-6,
        scan_mode=sec[71],
    )


def _reference_time(sec: bytes) -> datetime:
    year = _uint(sec, 12, 2)
    month, day, hour, minute, second = sec[14:19]
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def _orient(values: np.ndarray, grid: GridDefinition) -> np.ndarray:
    if grid.scan_mode & 0x20:
        raise GribError("Column-major scanning is not supported")
    shaped = values.reshape(grid.nj, grid.ni)
    if grid.scan_mode & 0x40:  # south to north
        shaped = shaped[::-1, :]
    if grid.scan_mode & 0x80:  # east to west
        shaped = shaped[:, ::-1]
    return shaped


def iter_fields(data: bytes) -> Iterator[GribField]:
    """Decode every field of every GRIB2 message in data."""
    pos = data.find(b"GRIB")
    if pos < 0:
        raise GribError("No GRIB message found in response")

    while pos >= 0 and pos + 16 <= len(data):
        edition = data[pos + 7]
        if edition != 2:
            raise GribError(f"Unsupported GRIB edition {edition}")
        discipline = data[pos + 6]
        total = _uint(data, pos + 8, 8)
        end = pos + total
        if end > len(data) or data[end - 4 : end] != b"7777":
            raise GribError("GRIB message truncated")

        cursor = pos + 16
        ref_time: Optional[datetime] = None
        grid: Optional[GridDefinition] = None
        product: Optional[bytes] = None
        packing: Optional[_Packing] = None
        bitmap: Optional[np.ndarray] = None

        while cursor < end - 4:
            length = _uint(data, cursor, 4)
            number = data[cursor + 4]
            sec = data[cursor : cursor + length]
            if length < 5 or cursor + length > end:
                raise GribError(f"Bad section {number} length {length}")

            if number == 1:
                ref_time = _reference_time(sec)
            elif number == 3:
                grid = _parse_grid(sec)
            elif number == 4:
                product = sec
            elif number == 5:
                packing = _Packing(sec)
            elif number == 6:
                indicator = sec[5]
                if indicator == 0:
                    bitmap = _bits(sec[6:]).astype(bool)
                elif indicator == 255:
                    bitmap = None
                elif indicator != 254:
                    raise GribError(f"Unsupported bitmap indicator {indicator}")
            elif number == 7:
                if grid is None or product is None or packing is None:
                    raise GribError("Data section before its definitions")
                yield _build_field(
                    discipline, ref_time, grid, product, packing, bitmap, sec[5:]
                )
            cursor += length

        pos = data.find(b"GRIB", end)


def _build_field(discipline, ref_time, grid, product, packing, bitmap, payload):
    decoded = packing.decode(payload)
    if bitmap is not None and packing.npoints:
        mask = bitmap[: grid.npoints]
        if int(mask.sum()) != decoded.size:
            raise GribError("Bitmap does not match number of packed values")
        full = np.full(grid.npoints, np.nan)
        full[mask] = decoded
    elif decoded.size == grid.npoints:
        full = decoded.astype(float)
    else:
        full = np.full(grid.npoints, np.nan)

    return GribField(
        discipline=discipline,
        category=product[9],
        number=product[10],
        reference_time=ref_time or datetime.fromtimestamp(0, timezone.utc),
        forecast_time=_uint(product, 18, 4) if len(product) >= 22 else 0,
        grid=grid,
        values=_orient(full, grid),
    )


def decode(data: bytes) -> List[GribField]:
    return list(iter_fields(data))


def find_field(
    fields: List[GribField], category: int, number: int
) -> Optional[GribField]:
    """First field with the given parameter, preferring ones with data."""
    matching = [f for f in fields if f.category == category and f.number == number]
    for field in matching:
        if field.has_data:
            return field
    return matching[0] if matching else None
