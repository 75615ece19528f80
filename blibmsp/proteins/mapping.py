"""Map many peptides to the proteins containing them in a single pass per protein.

The peptide set is compiled into an Aho-Corasick automaton with :mod:`ahocorasick`,
and each protein sequence is scanned once. Proteins are split into contiguous
shards which may be searched in separate processes. Each shard produces its own
partial map, and the partial maps are merged after all shards finish.
"""
import os
import logging

from concurrent.futures import ProcessPoolExecutor
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import ahocorasick

from blibmsp.spectrum import clean_sequence

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


MIN_PEPTIDE_LENGTH = 5

STRATEGIES = ("automaton", "naive")

PeptideProteinMap = Dict[str, List[str]]


def clean_peptide(sequence: Optional[str]) -> str:
    return clean_sequence(sequence)


def prepare_peptides(peptides: Iterable[str], min_length: int=MIN_PEPTIDE_LENGTH) -> List[str]:
    """Clean, filter by length and de-duplicate peptide sequences, returning them sorted"""
    prepared = set()
    for peptide in peptides:
        peptide = clean_peptide(peptide)
        if peptide and len(peptide) >= min_length:
            prepared.add(peptide)
    return sorted(prepared)


def build_automaton(peptides: Iterable[str]) -> ahocorasick.Automaton:
    automaton = ahocorasick.Automaton()
    for peptide in peptides:
        automaton.add_word(peptide, peptide)
    automaton.make_automaton()
    return automaton


def _search_shard_automaton(shard: Sequence[Tuple[str, str]], peptides: Sequence[str]) -> PeptideProteinMap:
    automaton = build_automaton(peptides)
    partial: PeptideProteinMap = {}
    for accession, sequence in shard:
        matched = set()
        for _end, peptide in automaton.iter(sequence):
            matched.add(peptide)
        for peptide in matched:
            partial.setdefault(peptide, []).append(accession)
    return partial


def _search_shard_naive(shard: Sequence[Tuple[str, str]], peptides: Sequence[str]) -> PeptideProteinMap:
    partial: PeptideProteinMap = {}
    for accession, sequence in shard:
        for peptide in peptides:
            if peptide in sequence:
                partial.setdefault(peptide, []).append(accession)
    return partial


def search_shard(shard: Sequence[Tuple[str, str]], peptides: Sequence[str],
                 strategy: str="automaton") -> PeptideProteinMap:
    """Search one shard of ``(accession, sequence)`` pairs for every peptide"""
    if strategy == "automaton":
        return _search_shard_automaton(shard, peptides)
    elif strategy == "naive":
        return _search_shard_naive(shard, peptides)
    raise ValueError(f"Unknown search strategy {strategy!r}, expected one of {STRATEGIES}")


def merge_partial_maps(partials: Iterable[PeptideProteinMap],
                       protein_order: Optional[Mapping[str, int]]=None) -> PeptideProteinMap:
    """Combine per-shard results, de-duplicating accessions.

    When `protein_order` is given, each accession list is sorted by it so the
    result does not depend on how proteins were sharded.
    """
    merged: Dict[str, Dict[str, None]] = {}
    for partial in partials:
        for peptide, accessions in partial.items():
            bucket = merged.setdefault(peptide, {})
            for accession in accessions:
                bucket[accession] = None
    result: PeptideProteinMap = {}
    for peptide, accessions in merged.items():
        accessions = list(accessions)
        if protein_order is not None:
            accessions.sort(key=lambda acc: protein_order.get(acc, len(protein_order)))
        result[peptide] = accessions
    return result


def make_shards(proteins: Sequence[Tuple[str, str]], n_shards: int) -> List[List[Tuple[str, str]]]:
    n_shards = max(1, min(n_shards, len(proteins)))
    size, remainder = divmod(len(proteins), n_shards)
    shards = []
    start = 0
    for i in range(n_shards):
        end = start + size + (1 if i < remainder else 0)
        shards.append(list(proteins[start:end]))
        start = end
    return shards


def default_worker_count() -> int:
    return os.cpu_count() or 1


def build_peptide_protein_map(index: Mapping[str, str], peptides: Iterable[str],
                              n_workers: Optional[int]=None,
                              strategy: str="automaton") -> PeptideProteinMap:
    """Find the proteins of `index` containing each peptide.

    Parameters
    ----------
    index : Mapping[str, str]
        Protein accession to sequence.
    peptides : Iterable[str]
        Peptides to search for, used as given.
    n_workers : int, optional
        Number of processes to search with. Defaults to the CPU count. With
        one worker the search runs in this process.
    strategy : str
        ``"automaton"`` or ``"naive"``. Both produce identical results.

    Returns
    -------
    Dict[str, List[str]]
        Only peptides with at least one match are present.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown search strategy {strategy!r}, expected one of {STRATEGIES}")
    peptides = sorted(set(p for p in peptides if p))
    proteins = [(accession, sequence) for accession, sequence in index.items() if sequence]
    if not peptides or not proteins:
        return {}
    if n_workers is None:
        n_workers = default_worker_count()
    protein_order = {accession: i for i, (accession, _) in enumerate(proteins)}

    logger.info("Searching %d proteins for %d peptides...", len(proteins), len(peptides))
    shards = make_shards(proteins, n_workers)
    if len(shards) == 1:
        partials = [search_shard(shards[0], peptides, strategy)]
    else:
        logger.info("Using parallel search with %d workers", len(shards))
        with ProcessPoolExecutor(max_workers=len(shards)) as executor:
            futures = [executor.submit(search_shard, shard, peptides, strategy) for shard in shards]
            partials = []
            for future in futures:
                try:
                    partials.append(future.result())
                except Exception as err:
                    logger.error(f"Worker error: {err}")
                    raise
    result = merge_partial_maps(partials, protein_order)
    logger.info("Found matches for %d peptides", len(result))
    return result
