import re

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from blibmsp.peak_list import PeakList

PROTON_MASS = 1.007276

_MODIFICATION_MARKUP = re.compile(r"\([^)]+\)|\[[^\]]+\]")
_NON_RESIDUE = re.compile(r"[^A-Z]")


def clean_sequence(sequence: Optional[str]) -> str:
    """Strip inline modification markup like ``M(O)`` or ``C[+57.0]`` and
    anything that is not an upper-case residue letter."""
    if not sequence:
        return ''
    sequence = _MODIFICATION_MARKUP.sub('', sequence)
    return _NON_RESIDUE.sub('', sequence)


@dataclass
class Modification:
    """A mass shift at a 1-based residue position"""
    position: int
    mass: float
    residue: str = '?'
    name: Optional[str] = None

    def site_in(self, sequence: str) -> str:
        if sequence and 0 < self.position <= len(sequence):
            return sequence[self.position - 1]
        return '?'


@dataclass
class LibraryInfo:
    library_id: str
    create_time: str
    num_spectra: int
    major_version: int = 1
    minor_version: int = 10

    @property
    def name(self) -> str:
        if "bibliospec:" in self.library_id:
            _, pfx_name = self.library_id.split("bibliospec:", 1)
            if ":" in pfx_name:
                return pfx_name.split(":", 1)[1]
            return pfx_name
        return self.library_id

    @property
    def version(self) -> str:
        return f"{self.major_version}.{self.minor_version}"


@dataclass
class Spectrum:
    """A single library entry, independent of the format it was read from or will be written to."""

    peptide_sequence: str
    charge: int
    precursor_mz: float
    modified_sequence: Optional[str] = None
    retention_time: Optional[float] = None
    score: Optional[float] = None
    score_type: Optional[str] = None
    total_ion_current: Optional[float] = None
    ion_mobility: Optional[float] = None
    collisional_cross_section: Optional[float] = None
    ion_mobility_type: Optional[int] = None
    prev_aa: str = '-'
    next_aa: str = '-'
    copies: int = 1
    spec_id_in_file: Optional[str] = None
    file_id: Optional[int] = None
    num_peaks: Optional[int] = None
    peaks: PeakList = field(default_factory=PeakList)
    modifications: List[Modification] = field(default_factory=list)
    proteins: List[str] = field(default_factory=list)
    id: Optional[int] = None
    annotations: Dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"{self.modified_sequence or self.peptide_sequence}/{self.charge}"

    @property
    def neutral_mass(self) -> float:
        return self.precursor_mz * self.charge - self.charge * PROTON_MASS

    @property
    def has_flanking_residues(self) -> bool:
        return (self.prev_aa or '-') != '-' or (self.next_aa or '-') != '-'

    def sorted_modifications(self) -> List[Modification]:
        return sorted(self.modifications, key=lambda x: x.position)

    def __repr__(self):
        return (f"{self.__class__.__name__}({self.name!r}, precursor_mz={self.precursor_mz}, "
                f"n_peaks={len(self.peaks)}, n_mods={len(self.modifications)})")
