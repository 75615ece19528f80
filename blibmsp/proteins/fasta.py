import os
import re
import logging

from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from pyteomics import fasta

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


fasta_extension_pattern = re.compile(r"\.(fasta|fa|fas)$", re.IGNORECASE)
accession_pattern = re.compile(r"^>?\s*([a-z]+\|)?([^|\s]+)")


def find_fasta_files(directory: Union[str, os.PathLike]) -> List[str]:
    """Recursively find ``.fasta``, ``.fa`` and ``.fas`` files under `directory`, sorted by path"""
    paths = []
    if not directory or not os.path.isdir(directory):
        return paths
    for root, _dirs, files in os.walk(directory):
        for name in files:
            if fasta_extension_pattern.search(name):
                paths.append(os.path.join(root, name))
    return sorted(paths)


def parse_accession(header: str) -> Optional[str]:
    """Extract the accession from a FASTA header.

    ``sp|P00761|TRYP_PIG Trypsin`` yields ``P00761`` and ``TRYP_PIG Trypsin``
    yields ``TRYP_PIG``.
    """
    match = accession_pattern.match(header)
    if match is None:
        return None
    return match.group(2)


class ProteinSequenceIndex(Mapping[str, str]):
    """A read-only mapping from protein accession to residue sequence.

    Proteins are kept in the order they were first read.
    """

    proteins: Dict[str, str]
    source_files: List[str]

    def __init__(self, proteins: Optional[Mapping[str, str]]=None, source_files: Optional[List[str]]=None):
        self.proteins = dict(proteins or {})
        self.source_files = list(source_files or [])

    @classmethod
    def from_files(cls, paths: Iterable[Union[str, os.PathLike]]) -> 'ProteinSequenceIndex':
        proteins = {}
        source_files = []
        total_length = 0
        paths = list(paths)
        for i, path in enumerate(paths, 1):
            logger.info("Processing FASTA file %d/%d: %s", i, len(paths), os.path.basename(path))
            try:
                with fasta.read(os.fspath(path)) as reader:
                    for header, sequence in reader:
                        accession = parse_accession(header)
                        if not accession or not sequence:
                            continue
                        proteins[accession] = sequence
                        total_length += len(sequence)
            except (OSError, UnicodeDecodeError) as err:
                logger.warning("Cannot read FASTA file %s: %s", path, err)
                continue
            source_files.append(os.fspath(path))
        index = cls(proteins, source_files)
        if proteins:
            logger.info("Indexed %d proteins (avg length: %d aa)",
                        len(proteins), total_length // len(proteins))
        return index

    @classmethod
    def from_directory(cls, directory: Union[str, os.PathLike]) -> 'ProteinSequenceIndex':
        """Index every FASTA file under `directory`.

        A missing directory or one without FASTA files produces an empty index.
        """
        if not directory or not os.path.isdir(directory):
            logger.warning("FASTA directory %s does not exist", directory)
            return cls()
        paths = find_fasta_files(directory)
        if not paths:
            logger.warning("No FASTA files found in directory: %s", directory)
            return cls()
        logger.info("Indexing %d FASTA file(s)...", len(paths))
        return cls.from_files(paths)

    def __getitem__(self, accession: str) -> str:
        return self.proteins[accession]

    def __iter__(self) -> Iterator[str]:
        return iter(self.proteins)

    def __len__(self):
        return len(self.proteins)

    def __repr__(self):
        return f"{self.__class__.__name__}({len(self.proteins)} proteins from {len(self.source_files)} files)"

    def items(self) -> Iterable[Tuple[str, str]]:
        return self.proteins.items()


def build_index(fasta_paths: Iterable[Union[str, os.PathLike]]) -> ProteinSequenceIndex:
    return ProteinSequenceIndex.from_files(fasta_paths)


def search(peptide: str, index: Mapping[str, str]) -> List[str]:
    """Find every protein in `index` whose sequence contains `peptide`.

    This is a plain substring scan with no minimum peptide length.
    """
    if not peptide:
        return []
    return [accession for accession, sequence in index.items() if peptide in sequence]
