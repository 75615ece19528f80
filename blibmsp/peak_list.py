import zlib
import logging

from pprint import pformat
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


MZ_DTYPE = np.dtype('<f8')
INTENSITY_DTYPE = np.dtype('<f4')

PeakDtype = np.dtype([('mz', np.float64), ('intensity', np.float32)])

PeakType = Tuple[float, float]


def _compress_if_smaller(raw: bytes) -> bytes:
    compressed = zlib.compress(raw)
    if len(compressed) < len(raw):
        return compressed
    return raw


def _decompress_or_raw(blob: Optional[bytes], dtype: np.dtype) -> np.ndarray:
    if not blob:
        return np.zeros(0, dtype=dtype)
    try:
        raw = zlib.decompress(blob)
    except zlib.error:
        raw = bytes(blob)
    usable = len(raw) - (len(raw) % dtype.itemsize)
    if usable != len(raw):
        logger.warning("Peak blob of %d bytes is not a multiple of %d, ignoring trailing bytes",
                       len(raw), dtype.itemsize)
    return np.frombuffer(raw[:usable], dtype=dtype)


def encode_peaks(mz: Sequence[float], intensity: Sequence[float]) -> Tuple[bytes, bytes]:
    """Pack a peak list into the two binary blobs stored by a Bibliospec library.

    m/z values are stored as little-endian 64-bit floats and intensities as little-endian
    32-bit floats. Each array is zlib-compressed only if that makes it strictly smaller.

    Parameters
    ----------
    mz : Sequence[float]
        The m/z values.
    intensity : Sequence[float]
        The intensity values, paired with `mz`.

    Returns
    -------
    mz_blob : bytes
    intensity_blob : bytes
    """
    mz_raw = np.asarray(mz, dtype=MZ_DTYPE).tobytes()
    intensity_raw = np.asarray(intensity, dtype=INTENSITY_DTYPE).tobytes()
    return _compress_if_smaller(mz_raw), _compress_if_smaller(intensity_raw)


def decode_peaks(mz_blob: Optional[bytes], intensity_blob: Optional[bytes],
                 expected_count: Optional[int]=None) -> Tuple[np.ndarray, np.ndarray]:
    """Unpack the m/z and intensity blobs of a Bibliospec library entry.

    Each blob may be compressed or raw. A disagreement with `expected_count`
    is not an error, the decoded arrays are authoritative. When the two arrays
    have different lengths, both are truncated to the shorter length.

    Parameters
    ----------
    mz_blob : bytes
    intensity_blob : bytes
    expected_count : int, optional
        The peak count declared by the library.

    Returns
    -------
    mz : np.ndarray
    intensity : np.ndarray
    """
    mz_array = _decompress_or_raw(mz_blob, MZ_DTYPE)
    intensity_array = _decompress_or_raw(intensity_blob, INTENSITY_DTYPE)

    if mz_array.size != intensity_array.size:
        n = min(mz_array.size, intensity_array.size)
        logger.warning("m/z array and intensity array lengths differ (%d != %d), truncating to %d peaks",
                       mz_array.size, intensity_array.size, n)
        mz_array = mz_array[:n]
        intensity_array = intensity_array[:n]

    if expected_count is not None and mz_array.size != expected_count:
        logger.debug("Decoded %d peaks but %d were expected", mz_array.size, expected_count)
    return mz_array, intensity_array


class PeakList(Sequence[PeakType]):
    """A pair of aligned m/z and intensity arrays."""

    peaks: np.ndarray

    def __init__(self, peaks=None):
        if peaks is None:
            peaks = []
        if isinstance(peaks, np.ndarray) and peaks.dtype == PeakDtype:
            self.peaks = peaks
        else:
            self.peaks = np.array([tuple(p[:2]) for p in peaks], dtype=PeakDtype)

    @classmethod
    def from_arrays(cls, mz: Sequence[float], intensity: Sequence[float]) -> 'PeakList':
        mz = np.asarray(mz, dtype=np.float64)
        intensity = np.asarray(intensity, dtype=np.float32)
        if mz.size != intensity.size:
            raise ValueError(f"m/z and intensity arrays must be the same length ({mz.size} != {intensity.size})")
        peaks = np.empty(mz.size, dtype=PeakDtype)
        peaks['mz'] = mz
        peaks['intensity'] = intensity
        return cls(peaks)

    @classmethod
    def decode(cls, mz_blob: Optional[bytes], intensity_blob: Optional[bytes],
               expected_count: Optional[int]=None) -> 'PeakList':
        return cls.from_arrays(*decode_peaks(mz_blob, intensity_blob, expected_count))

    def encode(self) -> Tuple[bytes, bytes]:
        return encode_peaks(self.mz, self.intensity)

    @property
    def mz(self) -> np.ndarray:
        return self.peaks['mz']

    @property
    def intensity(self) -> np.ndarray:
        return self.peaks['intensity']

    def sorted(self) -> 'PeakList':
        """Return a copy of this peak list in ascending m/z order"""
        order = np.argsort(self.peaks['mz'], kind='stable')
        return self.__class__(self.peaks[order])

    def __len__(self):
        return len(self.peaks)

    def __getitem__(self, i):
        return self.peaks[i]

    def __iter__(self) -> Iterator[PeakType]:
        for peak in self.peaks:
            yield float(peak['mz']), float(peak['intensity'])

    def __repr__(self):
        return f"{self.__class__.__name__}({pformat(self.peaks, indent=2)})"

    def __eq__(self, other):
        if other is None:
            return False
        if not isinstance(other, PeakList):
            other = PeakList(other)
        if len(self) != len(other):
            return False
        valid = np.allclose(self.peaks['mz'], other.peaks['mz'])
        if not valid:
            return False
        valid = np.allclose(self.peaks['intensity'], other.peaks['intensity'])
        if not valid:
            return False
        return True

    def __ne__(self, other):
        return not self == other
