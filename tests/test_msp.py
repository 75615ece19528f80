import io
import os
import gzip
import math
import shutil
import tempfile
import unittest

from blibmsp.annotation import ModificationReconciler
from blibmsp.context import ModificationSummary
from blibmsp.peak_list import PeakList
from blibmsp.spectrum import Modification, Spectrum
from blibmsp.backends.msp import (
    MSPSpectralLibrary, MSPSpectralLibraryWriter, entry_to_spectrum, format_entry,
    format_protein_accession, parse_comment, parse_protein_accessions, read_entries)

from .common import datafile, make_modification_database


class TestMSPParsing(unittest.TestCase):
    test_file = datafile("minimal.msp")

    def _make_reconciler(self):
        return ModificationReconciler(make_modification_database(), ModificationSummary())

    def test_parse_comment(self):
        fields = parse_comment('Parent=258.0510 ScoreType="PERCOLATOR QVALUE" Mods=0')
        assert fields == {"Parent": "258.0510", "ScoreType": "PERCOLATOR QVALUE", "Mods": "0"}
        assert parse_comment(None) == {}

    def test_read_entries(self):
        with open(self.test_file, 'rt') as fh:
            entries = list(read_entries(fh))
        assert [e.name for e in entries] == [
            "IQVR/2_0", "MLQGR/2", "LKC[+57.0]ASLQK/3_1(3,C,57.0215)", "PEPTIDEK", "SAMPLER/2_0"]
        assert len(entries[0].peaks) == 5
        assert entries[0].num_peaks == 5
        assert len(entries[1].peaks) == 3
        assert math.isclose(entries[2].precursor_mz, 316.517)
        assert entries[4].peaks == []

    def test_read_spectra(self):
        lib = MSPSpectralLibrary(self.test_file, reconciler=self._make_reconciler())
        assert len(lib) == 5
        spectra = list(lib)
        assert [s.peptide_sequence for s in spectra] == ["IQVR", "MLQGR", "LKCASLQK"]

        first, second, third = spectra
        assert first.charge == 2
        assert math.isclose(first.precursor_mz, 258.051)
        assert math.isclose(first.retention_time, 2.0)
        assert math.isclose(first.score, 0.95)
        assert first.score_type == "PERCOLATOR QVALUE"
        assert math.isclose(first.total_ion_current, 10000.0)
        assert first.proteins == ["P00761"]
        assert first.modifications == []
        assert first.annotations == {"Source": "test"}

        # no PrecursorMZ or Parent, so the precursor comes from MW
        assert math.isclose(second.precursor_mz, (619.311 + 2 * 1.007276) / 2)
        assert math.isclose(second.retention_time, 3.0)
        assert second.score is None
        assert len(second.modifications) == 1
        assert second.modifications[0].name == "Oxidation"
        assert second.modifications[0].residue == "M"

        assert third.charge == 3
        assert third.modified_sequence == "LKC[+57.0]ASLQK"
        assert third.prev_aa == "K"
        assert third.next_aa == "A"
        assert third.spec_id_in_file == "scan 1234"
        assert math.isclose(third.collisional_cross_section, 350.5)
        assert math.isclose(third.ion_mobility, 0.95)
        assert third.proteins == ["Q00001", "Q00002"]
        assert third.modifications[0].position == 3
        assert third.modifications[0].name == "Carbamidomethyl"
        assert third.peaks == PeakList([
            (147.113, 400.0), (304.177, 1000.0), (417.261, 800.0), (530.345, 600.0)])

    def test_gzipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "minimal.msp.gz")
            with open(self.test_file, 'rb') as src, gzip.open(path, 'wb') as dst:
                shutil.copyfileobj(src, dst)
            lib = MSPSpectralLibrary(path)
            assert len(list(lib)) == 3

    def test_name_charge_wins(self):
        text = "Name: PEPTIDER/3_0\nCharge: 2\nComment: Parent=400.0\nNum peaks: 1\n100.0 5.0\n"
        entry = next(read_entries(io.StringIO(text)))
        spectrum = entry_to_spectrum(entry)
        assert spectrum.charge == 3

    def test_name_modifications_win(self):
        text = ("Name: PEPCTIDER/2_1(4,C,Carbamidomethyl)\n"
                "Comment: Parent=500.0 Mods=2/1,P,15.9949/4,C,57.0000\n"
                "Num peaks: 1\n100.0 5.0\n")
        entry = next(read_entries(io.StringIO(text)))
        spectrum = entry_to_spectrum(entry, self._make_reconciler())
        assert [m.position for m in spectrum.modifications] == [1, 4]
        assert spectrum.modifications[0].name == "Oxidation"
        assert spectrum.modifications[1].name == "Carbamidomethyl"
        assert math.isclose(spectrum.modifications[1].mass, 57.021464)


class TestProteinAccessions(unittest.TestCase):

    def test_parse(self):
        assert parse_protein_accessions("sp|P00761|") == ["P00761"]
        assert parse_protein_accessions("sp|P00761|,tr|Q00002|") == ["P00761", "Q00002"]
        assert parse_protein_accessions("P00761,Q00002") == ["P00761", "Q00002"]
        assert parse_protein_accessions("") == []

    def test_format(self):
        assert format_protein_accession("P00761") == "sp|P00761|"
        assert format_protein_accession("tr|Q00002") == "tr|Q00002|"


class TestMSPWriting(unittest.TestCase):

    def _make_spectrum(self):
        return Spectrum(
            peptide_sequence="MLQGR",
            charge=2,
            precursor_mz=310.663,
            modified_sequence="M[+16.0]LQGR",
            retention_time=3.0,
            score=0.88,
            score_type="PERCOLATOR QVALUE",
            total_ion_current=8000.0,
            peaks=PeakList([(256.26, 802.82), (232.222, 617.16)]),
            modifications=[Modification(1, 15.9949)],
            proteins=["Q00001", "Q00002"],
        )

    def test_format_entry(self):
        reconciler = ModificationReconciler(make_modification_database(), ModificationSummary())
        text = format_entry(self._make_spectrum(), reconciler)
        lines = text.splitlines()
        assert lines[0] == "Name: M[+16.0]LQGR/2_1(1,M,Oxidation)"
        assert lines[1] == "MW: %.6f" % (310.663 * 2 - 2 * 1.007276)
        assert lines[2] == (
            'Comment: Parent=310.6630 Mods=1(1,M,Oxidation) Protein=sp|Q00001|,sp|Q00002| MultiProtein=1 '
            'RetentionTime=180.00 Score=0.880000 ScoreType="PERCOLATOR QVALUE" TIC=8000.00')
        assert lines[3] == "Num peaks: 2"
        assert lines[4] == "232.2220 617.16"
        assert lines[5] == "256.2600 802.82"
        assert reconciler.summary.known[("Oxidation", 15.9949, "M")] == 1

    def test_flanking_residues(self):
        spectrum = self._make_spectrum()
        spectrum.prev_aa = "K"
        spectrum.next_aa = "A"
        text = format_entry(spectrum)
        assert "Fullname=K.M[+16.0]LQGR.A/2" in text
        # without a database the modification is written by mass
        assert "Mods=1(1,M,15.9949)" in text

    def test_writer_round_trip(self):
        buffer = io.StringIO()
        writer = MSPSpectralLibraryWriter(buffer)
        writer.write_spectrum(self._make_spectrum())
        writer.write_spectrum(self._make_spectrum())
        assert writer.written == 2
        buffer.seek(0)
        entries = list(read_entries(buffer))
        assert len(entries) == 2
        spectrum = entry_to_spectrum(entries[0])
        assert spectrum.peptide_sequence == "MLQGR"
        assert spectrum.proteins == ["Q00001", "Q00002"]
        assert math.isclose(spectrum.retention_time, 3.0)
        assert math.isclose(spectrum.modifications[0].mass, 15.9949)
