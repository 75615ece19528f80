import io
import os
import re
import logging

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from blibmsp.annotation import (
    ModificationReconciler, merge_modification_entries,
    parse_modification_string, parse_spectrum_name)
from blibmsp.peak_list import PeakList
from blibmsp.spectrum import PROTON_MASS, Spectrum, clean_sequence

from blibmsp.backends.base import SpectralLibraryBackendBase, SpectralLibraryWriterBase
from blibmsp.backends.utils import LineBuffer, open_stream, try_cast, try_float

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


leader_terms = {
    "Name": "name",
    "NAME": "name",
}

NUM_PEAKS_KEYS = {
    "Num peaks",
    "Num Peaks",
    "NumPeaks",
    "Num_peaks",
    "num peaks",
}

COMMENT_KEYS = {"Comment", "Comments"}

leader_terms_pattern = re.compile(r"(Name|NAME): \S+")
leader_terms_line_pattern = re.compile(r'(?:Name|NAME): +(\S.*)')

comment_pair_pattern = re.compile(r'(\w+)=(?:"([^"]+)"|(\S+))')
fullname_flanks_pattern = re.compile(r"^(.)\.(.*)\.(.)/")
protein_accession_pattern = re.compile(r"(?:^|,)([a-z]+\|)?([^|]+)\|")
prefixed_accession_pattern = re.compile(r"^[a-z]+\|")
peak_separator_pattern = re.compile(r";\s*")

#### Comment keys consumed when building a Spectrum, everything else is kept as an annotation
consumed_comment_keys = {
    "Parent", "Mods", "Protein", "MultiProtein", "RetentionTime", "Score", "ScoreType",
    "TIC", "CCS", "IonMobility", "SpecIDinFile", "Fullname", "Charge",
}


@dataclass
class MSPEntry:
    """One raw spectrum entry of a NIST text library, before interpretation"""
    name: str
    mw: Optional[float] = None
    precursor_mz: Optional[float] = None
    charge: Optional[int] = None
    comment: Dict[str, str] = field(default_factory=OrderedDict)
    peaks: List[Tuple[float, float]] = field(default_factory=list)
    num_peaks: Optional[int] = None
    attributes: Dict[str, str] = field(default_factory=OrderedDict)
    index: Optional[int] = None

    @property
    def peptide(self) -> str:
        return parse_spectrum_name(self.name).peptide


def parse_comment(value: Optional[str]) -> Dict[str, str]:
    """Split a ``Comment`` line into its ``key=value`` and ``key="quoted value"`` pairs"""
    fields = OrderedDict()
    if not value:
        return fields
    for match in comment_pair_pattern.finditer(value):
        key, quoted, bare = match.groups()
        fields[key] = quoted if quoted is not None else bare
    return fields


def _parse_peak_line(line: str) -> List[Tuple[float, float]]:
    peaks = []
    for block in peak_separator_pattern.split(line.strip()):
        values = block.split()
        if len(values) < 2:
            continue
        try:
            peaks.append((float(values[0]), float(values[1])))
        except ValueError:
            logger.debug("Could not parse peak %r", block)
    return peaks


def parse_entry(buffer: Iterable[str], index: Optional[int]=None) -> MSPEntry:
    """Interpret the lines of a single entry collected by :func:`read_entries`"""
    in_header = True
    entry = MSPEntry(name='', index=index)
    for line in buffer:
        if in_header:
            if re.match(r"\s*#", line):
                continue
            if ":" not in line:
                logger.debug("Ignoring header line %r", line)
                continue
            key, value = re.split(r":\s*", line, 1)
            key = key.strip()
            value = value.strip()
            if key in leader_terms:
                entry.name = value
            elif key == "MW":
                entry.mw = try_float(value)
            elif key in ("PrecursorMZ", "PRECURSORMZ"):
                entry.precursor_mz = try_float(value)
            elif key in ("Charge", "CHARGE"):
                charge = try_cast(value.rstrip("+"))
                entry.charge = charge if isinstance(charge, int) else None
            elif key in COMMENT_KEYS:
                entry.comment.update(parse_comment(value))
            elif key in NUM_PEAKS_KEYS:
                num_peaks = try_cast(value)
                entry.num_peaks = num_peaks if isinstance(num_peaks, int) else None
                in_header = False
            else:
                entry.attributes[key] = value
        else:
            entry.peaks.extend(_parse_peak_line(line))
    return entry


def _buffer_from_stream(infile: LineBuffer) -> List[str]:
    spectrum_buffer = []
    for line in infile:
        line = line.rstrip()
        if len(line) == 0:
            continue
        if leader_terms_pattern.match(line):
            if len(spectrum_buffer) > 0:
                infile.push_line(line)
                return spectrum_buffer
        elif not spectrum_buffer:
            # Anything before the first Name: line is a file header
            continue
        spectrum_buffer.append(line)
    return spectrum_buffer


def read_entries(stream: io.IOBase) -> Iterator[MSPEntry]:
    buffering_stream = LineBuffer(stream)
    i = 0
    while True:
        buffer = _buffer_from_stream(buffering_stream)
        if not buffer:
            break
        yield parse_entry(buffer, i)
        i += 1


def parse_protein_accessions(value: Optional[str]) -> List[str]:
    """Extract bare accessions from ``sp|ACC|`` or ``sp|ACC1|,tr|ACC2|`` values"""
    if not value:
        return []
    accessions = []
    for _prefix, accession in protein_accession_pattern.findall(value):
        accession = accession.strip()
        if accession and accession not in accessions:
            accessions.append(accession)
    if not accessions and "|" not in value:
        for accession in value.split(","):
            accession = accession.strip()
            if accession and accession not in accessions:
                accessions.append(accession)
    return accessions


def format_protein_accession(accession: str) -> str:
    if prefixed_accession_pattern.match(accession):
        if not accession.endswith("|"):
            accession += "|"
        return accession
    return f"sp|{accession}|"


def entry_to_spectrum(entry: MSPEntry, reconciler: Optional[ModificationReconciler]=None) -> Optional[Spectrum]:
    """Interpret a raw :class:`MSPEntry` as a :class:`~.Spectrum`.

    The charge encoded in the name takes precedence over any other charge.
    Modifications from the name and from the ``Mods`` comment field are merged
    by position, preferring the name. Returns :const:`None` when the entry lacks
    a name, a charge or any peaks.
    """
    if reconciler is None:
        reconciler = ModificationReconciler()
    if not entry.name:
        logger.debug("Skipping entry %r without a name", entry.index)
        return None
    comment = entry.comment
    parsed_name = parse_spectrum_name(entry.name)

    charge = parsed_name.charge
    if charge is None:
        charge = entry.charge
    if charge is None:
        charge_value = try_cast(comment.get("Charge"))
        charge = charge_value if isinstance(charge_value, int) else None
    if not charge:
        logger.debug("Skipping entry %r without a usable charge", entry.name)
        return None
    if not entry.peaks:
        logger.debug("Skipping entry %r without peaks", entry.name)
        return None

    modified_sequence = parsed_name.sequence
    peptide = clean_sequence(modified_sequence)

    precursor_mz = entry.precursor_mz
    if not precursor_mz:
        precursor_mz = try_float(comment.get("Parent"))
    if not precursor_mz:
        if entry.mw and entry.mw > 0:
            precursor_mz = (entry.mw + charge * PROTON_MASS) / charge
        else:
            precursor_mz = 0.0

    spectrum = Spectrum(
        peptide_sequence=peptide,
        charge=charge,
        precursor_mz=precursor_mz,
        modified_sequence=modified_sequence,
        peaks=PeakList(entry.peaks),
    )
    spectrum.num_peaks = len(spectrum.peaks)

    rt = try_float(comment.get("RetentionTime"))
    if rt is not None:
        spectrum.retention_time = rt / 60.0
    spectrum.score = try_float(comment.get("Score"))
    if spectrum.score is not None:
        spectrum.score_type = comment.get("ScoreType")
    spectrum.total_ion_current = try_float(comment.get("TIC"))
    spectrum.collisional_cross_section = try_float(comment.get("CCS"))
    spectrum.ion_mobility = try_float(comment.get("IonMobility"))
    spectrum.spec_id_in_file = comment.get("SpecIDinFile")

    fullname = comment.get("Fullname")
    if fullname:
        match = fullname_flanks_pattern.match(fullname)
        if match:
            spectrum.prev_aa, _, spectrum.next_aa = match.groups()

    spectrum.proteins = parse_protein_accessions(comment.get("Protein"))

    field_mods = parse_modification_string(comment.get("Mods"))
    entries = merge_modification_entries(parsed_name.modifications, field_mods)
    spectrum.modifications = reconciler.resolve(entries, peptide)

    spectrum.annotations = OrderedDict(
        (k, v) for k, v in comment.items() if k not in consumed_comment_keys)
    spectrum.annotations.update(entry.attributes)
    return spectrum


def _format_value(value: str) -> str:
    value = str(value)
    if re.search(r"\s", value):
        value = f"\"{value}\""
    return value


def format_entry(spectrum: Spectrum, reconciler: Optional[ModificationReconciler]=None,
                 proteins: Optional[List[str]]=None) -> str:
    """Render a spectrum as a NIST text entry, without the trailing blank line.

    Parameters
    ----------
    spectrum : Spectrum
        The spectrum to write.
    reconciler : ModificationReconciler, optional
        Used to name modifications by mass and tally them.
    proteins : List[str], optional
        Protein accessions to write instead of those on `spectrum`.
    """
    if reconciler is None:
        reconciler = ModificationReconciler()
    if proteins is None:
        proteins = spectrum.proteins
    sequence = spectrum.peptide_sequence or clean_sequence(spectrum.modified_sequence)
    modifications = reconciler.annotate(spectrum.modifications, sequence)
    mod_count, mod_string = reconciler.format(modifications)

    lines = []
    name_sequence = spectrum.modified_sequence or sequence
    lines.append(f"Name: {name_sequence}/{spectrum.charge}_{mod_count}{mod_string}")
    lines.append(f"MW: {spectrum.neutral_mass:.6f}")

    comments = [f"Parent={spectrum.precursor_mz:.4f}"]
    if modifications:
        comments.append(f"Mods={mod_count}{mod_string}")
    else:
        comments.append("Mods=0")

    if proteins:
        formatted = [format_protein_accession(acc) for acc in proteins]
        comments.append(f"Protein={','.join(formatted)}")
        if len(formatted) > 1:
            comments.append("MultiProtein=1")

    if spectrum.retention_time is not None and spectrum.retention_time > 0:
        comments.append(f"RetentionTime={spectrum.retention_time * 60:.2f}")
    if spectrum.score is not None:
        comments.append(f"Score={spectrum.score:.6f}")
        comments.append(f"ScoreType={_format_value(spectrum.score_type or 'Unknown')}")
    if spectrum.total_ion_current is not None and spectrum.total_ion_current > 0:
        comments.append(f"TIC={spectrum.total_ion_current:.2f}")
    if spectrum.collisional_cross_section is not None and spectrum.collisional_cross_section > 0:
        comments.append(f"CCS={spectrum.collisional_cross_section:.4f}")
    if spectrum.ion_mobility is not None and spectrum.ion_mobility > 0:
        comments.append(f"IonMobility={spectrum.ion_mobility:.6f}")
    if spectrum.spec_id_in_file:
        comments.append(f"SpecIDinFile={_format_value(spectrum.spec_id_in_file)}")
    if spectrum.has_flanking_residues:
        comments.append(
            f"Fullname={spectrum.prev_aa or '-'}.{name_sequence}.{spectrum.next_aa or '-'}/{spectrum.charge}")
    lines.append(f"Comment: {' '.join(comments)}")

    peaks = spectrum.peaks.sorted()
    lines.append(f"Num peaks: {len(peaks)}")
    for mz, intensity in peaks:
        lines.append(f"{mz:.4f} {intensity:.2f}")
    return '\n'.join(lines)


class MSPSpectralLibrary(SpectralLibraryBackendBase):
    """Read NIST MSP text spectral libraries, optionally gzip compressed."""

    file_format = "msp"
    format_name = "msp"

    reconciler: ModificationReconciler

    def __init__(self, filename, reconciler: Optional[ModificationReconciler]=None, **kwargs):
        super().__init__(filename)
        if reconciler is None:
            reconciler = ModificationReconciler()
        self.reconciler = reconciler

    @classmethod
    def guess_from_filename(cls, filename) -> bool:
        if isinstance(filename, (str, os.PathLike)) and os.fspath(filename).lower().endswith(".msp.gz"):
            return True
        return super().guess_from_filename(filename)

    def read_entries(self) -> Iterator[MSPEntry]:
        is_file_like_object = hasattr(self.filename, 'read')
        stream = open_stream(self.filename, 'rt')
        try:
            yield from read_entries(stream)
        finally:
            if not is_file_like_object:
                stream.close()

    def read(self) -> Iterator[Spectrum]:
        for entry in self.read_entries():
            spectrum = entry_to_spectrum(entry, self.reconciler)
            if spectrum is not None:
                yield spectrum

    def __len__(self):
        return sum(1 for _ in self.read_entries())


class MSPSpectralLibraryWriter(SpectralLibraryWriterBase):
    file_format = "msp"
    format_name = "msp"

    reconciler: ModificationReconciler

    def __init__(self, filename: Union[str, io.IOBase], reconciler: Optional[ModificationReconciler]=None, **kwargs):
        super().__init__(filename)
        if reconciler is None:
            reconciler = ModificationReconciler()
        self.reconciler = reconciler
        self._coerce_handle(self.filename)

    def write_spectrum(self, spectrum: Spectrum, proteins: Optional[List[str]]=None):
        self.handle.write(format_entry(spectrum, self.reconciler, proteins))
        self.handle.write("\n\n")
        self.written += 1

    def close(self):
        self.handle.close()
