import os
import logging

from typing import Iterable, List, Set, Tuple, Union

from blibmsp.annotation import parse_spectrum_name
from blibmsp.errors import FormatInferenceFailure
from blibmsp.utils import swap_extension

from blibmsp.backends.bibliospec import connect, read_unique_peptides
from blibmsp.backends.msp import leader_terms_line_pattern, read_entries, _buffer_from_stream
from blibmsp.backends.utils import LineBuffer, open_stream

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def default_peptide_list_path(path: Union[str, os.PathLike]) -> str:
    return swap_extension(path, "_peptides.txt")


def default_filtered_path(path: Union[str, os.PathLike]) -> str:
    return swap_extension(path, "_filtered.msp")


def _peptide_of_entry(lines: List[str]) -> str:
    match = leader_terms_line_pattern.match(lines[0])
    if match is None:
        return ''
    return parse_spectrum_name(match.group(1)).peptide


def extract_peptides(path: Union[str, os.PathLike]) -> List[str]:
    """List the unique unmodified peptide sequences of a ``.blib`` or ``.msp`` library, sorted"""
    path = os.fspath(path)
    lower = path.lower()
    if lower.endswith(".blib"):
        connection = connect(path)
        try:
            return read_unique_peptides(connection)
        finally:
            connection.close()
    elif lower.endswith(".msp"):
        peptides: Set[str] = set()
        with open_stream(path, 'rt') as stream:
            for entry in read_entries(stream):
                peptide = entry.peptide
                if peptide:
                    peptides.add(peptide)
        return sorted(peptides)
    raise FormatInferenceFailure(f"Unrecognized file type for {path}. Use .blib or .msp extension.")


def write_peptide_list(peptides: Iterable[str], path: Union[str, os.PathLike]) -> int:
    count = 0
    with open(path, 'wt', encoding='utf8') as fh:
        for peptide in peptides:
            fh.write(f"{peptide}\n")
            count += 1
    return count


def read_peptide_list(path: Union[str, os.PathLike]) -> Set[str]:
    peptides = set()
    with open(path, 'rt', encoding='utf8') as fh:
        for line in fh:
            line = line.strip()
            if line:
                peptides.add(line)
    return peptides


def filter_msp(input_path: Union[str, os.PathLike], peptides: Set[str],
               output_path: Union[str, os.PathLike]) -> Tuple[int, int]:
    """Copy the entries of an MSP library whose peptide is in `peptides`.

    Entries are copied verbatim apart from blank lines.

    Returns
    -------
    total : int
        The number of entries read.
    kept : int
        The number of entries written.
    """
    total = 0
    kept = 0
    with open_stream(input_path, 'rt') as stream, open(output_path, 'wt', encoding='utf8') as out:
        buffering_stream = LineBuffer(stream)
        while True:
            lines = _buffer_from_stream(buffering_stream)
            if not lines:
                break
            peptide = _peptide_of_entry(lines)
            if not peptide:
                continue
            total += 1
            if peptide in peptides:
                out.write("\n".join(lines))
                out.write("\n\n")
                kept += 1
    logger.info("Total entries processed: %d", total)
    logger.info("Entries kept: %d", kept)
    logger.info("Entries removed: %d", total - kept)
    return total, kept
