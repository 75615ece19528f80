import os
import shutil
import tempfile
import unittest
from unittest import mock

from blibmsp.proteins import (
    PeptideProteinCache, ProteinSequenceIndex, build_index, build_or_load_map,
    build_peptide_protein_map, compute_cache_key, find_fasta_files, merge_partial_maps,
    parse_accession, prepare_peptides, search)

from .common import datafile


class TestFastaIndex(unittest.TestCase):
    fasta_dir = datafile("proteins")

    def test_find_files(self):
        paths = find_fasta_files(self.fasta_dir)
        assert [os.path.basename(p) for p in paths] == ["test.fasta"]
        assert find_fasta_files(os.path.join(self.fasta_dir, "does_not_exist")) == []

    def test_parse_accession(self):
        assert parse_accession("sp|P00761|TRYP_PIG Trypsin") == "P00761"
        assert parse_accession(">tr|Q00002|TEST2_HUMAN") == "Q00002"
        assert parse_accession("TEST3_NOPIPE Test protein") == "TEST3_NOPIPE"

    def test_index(self):
        index = build_index(find_fasta_files(self.fasta_dir))
        assert list(index) == ["TRYP_PIG", "Q00001", "Q00002", "TEST3_NOPIPE"]
        assert index["Q00002"] == "PPPLKCASLQKWWW"
        assert index["TRYP_PIG"].startswith("FPTDDDDKIVGG")
        assert "\n" not in index["TRYP_PIG"]

    def test_search(self):
        index = ProteinSequenceIndex.from_directory(self.fasta_dir)
        assert search("IQVR", index) == ["TRYP_PIG"]
        assert search("LKCASLQK", index) == ["Q00001", "Q00002"]
        assert search("WWWWWWWW", index) == []
        assert search("", index) == []

    def test_package_exports(self):
        from blibmsp import proteins
        from blibmsp.proteins import fasta, mapping
        assert proteins.search is fasta.search
        assert proteins.build_peptide_protein_map is mapping.build_peptide_protein_map

    def test_missing_directory(self):
        index = ProteinSequenceIndex.from_directory(os.path.join(self.fasta_dir, "does_not_exist"))
        assert len(index) == 0


class TestPeptideSearch(unittest.TestCase):
    fasta_dir = datafile("proteins")

    def _index(self):
        return ProteinSequenceIndex.from_directory(self.fasta_dir)

    def test_prepare_peptides(self):
        peptides = prepare_peptides(["M[+16.0]LQGR", "MLQGR", "IQVR", "LKC(+57.02)ASLQK", ""])
        assert peptides == ["LKCASLQK", "MLQGR"]

    def test_automaton_matches_naive(self):
        index = self._index()
        peptides = ["LKCASLQK", "MLQGR", "SCRSYR", "NOTFOUND", "GIVSW"]
        automaton = build_peptide_protein_map(index, peptides, n_workers=1, strategy="automaton")
        naive = build_peptide_protein_map(index, peptides, n_workers=1, strategy="naive")
        assert automaton == naive
        assert automaton == {
            "LKCASLQK": ["Q00001", "Q00002"],
            "MLQGR": ["Q00001"],
            "SCRSYR": ["TEST3_NOPIPE"],
            "GIVSW": ["TRYP_PIG"],
        }
        for peptide, accessions in automaton.items():
            assert accessions == search(peptide, index)

    def test_parallel_matches_serial(self):
        index = self._index()
        peptides = ["LKCASLQK", "MLQGR", "SCRSYR", "GIVSW"]
        serial = build_peptide_protein_map(index, peptides, n_workers=1)
        parallel = build_peptide_protein_map(index, peptides, n_workers=3)
        assert serial == parallel

    def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            build_peptide_protein_map(self._index(), ["MLQGR"], strategy="quantum")

    def test_merge_partial_maps(self):
        merged = merge_partial_maps(
            [{"PEPTIDE": ["B", "A"]}, {"PEPTIDE": ["A", "C"], "OTHER": ["C"]}],
            {"A": 0, "B": 1, "C": 2})
        assert merged == {"PEPTIDE": ["A", "B", "C"], "OTHER": ["C"]}


class TestPeptideProteinCache(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.fasta_dir = os.path.join(self.tmpdir.name, "proteins")
        shutil.copytree(datafile("proteins"), self.fasta_dir)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_cache_key(self):
        key = compute_cache_key(self.fasta_dir, ["MLQGR", "LKCASLQK"])
        assert key == compute_cache_key(self.fasta_dir, ["LKCASLQK", "MLQGR", "MLQGR"])
        assert key != compute_cache_key(self.fasta_dir, ["MLQGR"])
        with open(os.path.join(self.fasta_dir, "extra.fa"), 'wt') as fh:
            fh.write(">sp|X1|EXTRA\nAAAAAAA\n")
        assert key != compute_cache_key(self.fasta_dir, ["MLQGR", "LKCASLQK"])

    def test_build_then_load(self):
        peptides = ["LKCASLQK", "MLQGR", "SCRSYR"]
        mapping = build_or_load_map(self.fasta_dir, peptides, n_workers=1)
        assert mapping["LKCASLQK"] == ["Q00001", "Q00002"]

        cache = PeptideProteinCache(self.fasta_dir, compute_cache_key(self.fasta_dir, peptides))
        assert cache.exists
        assert os.path.basename(cache.filename).startswith("peptide_protein_cache_")
        assert cache.load() == mapping

        with self.assertLogs("blibmsp.proteins.cache", level="INFO") as log:
            reloaded = build_or_load_map(self.fasta_dir, peptides, n_workers=1)
        assert reloaded == mapping
        assert any("from cache" in line for line in log.output)

    def test_failed_save_leaves_no_cache_file(self):
        peptides = ["LKCASLQK", "MLQGR"]
        with mock.patch("sqlalchemy.orm.Session.commit", side_effect=OSError("disk full")):
            with self.assertLogs("blibmsp.proteins.cache", level="WARNING") as log:
                first = build_or_load_map(self.fasta_dir, peptides, n_workers=1)
        assert any("Failed to save cache" in line for line in log.output)
        assert first == {"LKCASLQK": ["Q00001", "Q00002"], "MLQGR": ["Q00001"]}
        assert not [f for f in os.listdir(self.fasta_dir) if f.startswith("peptide_protein_cache_")]

        second = build_or_load_map(self.fasta_dir, peptides, n_workers=1)
        assert second == first
        assert PeptideProteinCache(self.fasta_dir, compute_cache_key(self.fasta_dir, peptides)).exists

    def test_no_cache(self):
        mapping = build_or_load_map(self.fasta_dir, ["MLQGR"], n_workers=1, use_cache=False)
        assert mapping == {"MLQGR": ["Q00001"]}
        assert not [f for f in os.listdir(self.fasta_dir) if f.startswith("peptide_protein_cache_")]

    def test_missing_inputs(self):
        assert build_or_load_map(os.path.join(self.tmpdir.name, "nowhere"), ["MLQGR"]) == {}
        assert build_or_load_map(self.fasta_dir, []) == {}
        empty_dir = os.path.join(self.tmpdir.name, "empty")
        os.mkdir(empty_dir)
        assert build_or_load_map(empty_dir, ["MLQGR"]) == {}
        assert os.listdir(empty_dir) == []
