from blibmsp.proteins.fasta import (
    ProteinSequenceIndex, build_index, find_fasta_files, parse_accession, search)
from blibmsp.proteins.mapping import (
    build_peptide_protein_map, clean_peptide, prepare_peptides, merge_partial_maps)
from blibmsp.proteins.cache import (
    PeptideProteinCache, build_or_load_map, compute_cache_key)
