import os
import math
import sqlite3
import tempfile
import unittest

import numpy as np

from blibmsp.errors import LibraryReadError
from blibmsp.peak_list import PeakList
from blibmsp.spectrum import Modification, Spectrum
from blibmsp.backends import guess_implementation
from blibmsp.backends.bibliospec import (
    BibliospecSpectralLibrary, BibliospecSpectralLibraryWriter, SchemaProfile,
    connect, create_schema, read_all)

from .common import MINIMAL_SPECTRA, create_minimal_blib


class BibliospecTestBase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.blib_path = create_minimal_blib(os.path.join(self.tmpdir.name, "minimal.blib"))

    def tearDown(self):
        self.tmpdir.cleanup()


class TestBibliospecReader(BibliospecTestBase):

    def test_header(self):
        with BibliospecSpectralLibrary(self.blib_path) as lib:
            info = lib.library_info
            assert info.library_id == "test_lib"
            assert info.num_spectra == 4
            assert info.version == "1.0"
            assert len(lib) == 4
            assert lib.score_types == {1: "PERCOLATOR QVALUE"}

    def test_schema_profile(self):
        connection = connect(self.blib_path)
        try:
            profile = SchemaProfile.from_connection(connection)
        finally:
            connection.close()
        assert profile.has_column("retentionTime")
        assert profile.has_column("SpecIDinFile")
        assert not profile.has_column("fileID")
        assert not profile.has_column("ionMobilityType")
        assert profile.has_modifications
        assert profile.has_score_types
        assert not profile.has_proteins
        assert "fileID" not in profile.optional_columns

    def test_read(self):
        with BibliospecSpectralLibrary(self.blib_path) as lib:
            spectra = list(lib)
        assert [s.id for s in spectra] == [1, 2, 3, 4]
        for spectrum, expected in zip(spectra, MINIMAL_SPECTRA):
            (spec_id, seq, mod_seq, charge, mz, rt, score, tic, mods, peak_mz, peak_int) = expected
            assert spectrum.peptide_sequence == seq
            assert spectrum.modified_sequence == mod_seq
            assert spectrum.charge == charge
            assert math.isclose(spectrum.precursor_mz, mz)
            assert math.isclose(spectrum.retention_time, rt)
            assert math.isclose(spectrum.score, score)
            assert spectrum.score_type == "PERCOLATOR QVALUE"
            assert spectrum.prev_aa == '-'
            assert spectrum.copies == 1
            assert spectrum.proteins == []
            assert [(m.position, m.mass) for m in spectrum.modifications] == mods
            assert np.allclose(spectrum.peaks.mz, peak_mz)
            assert np.allclose(spectrum.peaks.intensity, peak_int)

    def test_unique_peptides(self):
        with BibliospecSpectralLibrary(self.blib_path) as lib:
            assert lib.unique_peptides() == ["IQVR", "LKCASLQK", "MLQGR", "SCRSYR"]

    def test_guess_implementation(self):
        lib = guess_implementation(self.blib_path)
        try:
            assert isinstance(lib, BibliospecSpectralLibrary)
        finally:
            lib.close()

    def test_not_a_library(self):
        path = os.path.join(self.tmpdir.name, "empty.blib")
        connection = sqlite3.connect(path)
        connection.execute("CREATE TABLE Something (id INTEGER)")
        connection.commit()
        connection.close()
        with self.assertRaises(LibraryReadError):
            BibliospecSpectralLibrary(path)
        with self.assertRaises(LibraryReadError):
            BibliospecSpectralLibrary(os.path.join(self.tmpdir.name, "missing.blib"))


class TestBibliospecWriter(BibliospecTestBase):

    def _make_spectrum(self, sequence, proteins, score_type="PERCOLATOR QVALUE"):
        return Spectrum(
            peptide_sequence=sequence,
            charge=2,
            precursor_mz=500.25,
            modified_sequence=sequence,
            retention_time=12.5,
            score=0.01,
            score_type=score_type,
            peaks=PeakList([(100.0, 10.0), (200.0, 20.0), (300.0, 30.0)]),
            modifications=[Modification(2, 15.994915)],
            proteins=proteins,
        )

    def test_write_and_read(self):
        path = os.path.join(self.tmpdir.name, "written.blib")
        with BibliospecSpectralLibraryWriter(path, batch_size=1) as writer:
            writer.write_spectrum(self._make_spectrum("AMAAK", ["P1", "P2"]))
            writer.write_spectrum(self._make_spectrum("GMGGK", ["P2"]))
            writer.write_spectrum(self._make_spectrum("VMVVK", [], score_type="GENERIC Q-VALUE"))
        assert writer.written == 3

        connection = connect(path)
        try:
            assert connection.execute("SELECT count(*) FROM Proteins").fetchone()[0] == 2
            assert connection.execute("SELECT count(*) FROM RefSpectraProteins").fetchone()[0] == 3
            info = connection.execute("SELECT * FROM LibInfo").fetchone()
            assert info['numSpecs'] == 3
            assert info['libLSID'].endswith(":written.blib")
            assert info['majorVersion'] == 1
            assert info['minorVersion'] == 10
            score_types = {row[0]: row[1] for row in connection.execute("SELECT scoreType, id FROM ScoreTypes")}
            assert score_types["GENERIC Q-VALUE"] == 19
            assert score_types["PERCOLATOR QVALUE"] == 20
            spectra = list(read_all(connection))
        finally:
            connection.close()

        assert [s.peptide_sequence for s in spectra] == ["AMAAK", "GMGGK", "VMVVK"]
        assert spectra[0].proteins == ["P1", "P2"]
        assert spectra[1].proteins == ["P2"]
        assert spectra[2].proteins == []
        assert spectra[0].score_type == "PERCOLATOR QVALUE"
        assert spectra[2].score_type == "GENERIC Q-VALUE"
        assert spectra[0].num_peaks == 3
        assert spectra[0].peaks == PeakList([(100.0, 10.0), (200.0, 20.0), (300.0, 30.0)])
        assert math.isclose(spectra[0].modifications[0].mass, 15.994915)
        assert spectra[0].ion_mobility == 0
        assert spectra[0].ion_mobility_type == 0

    def test_overwrites_existing(self):
        path = os.path.join(self.tmpdir.name, "written.blib")
        with BibliospecSpectralLibraryWriter(path) as writer:
            writer.write_spectrum(self._make_spectrum("AMAAK", []))
        with BibliospecSpectralLibraryWriter(path) as writer:
            pass
        with BibliospecSpectralLibrary(path) as lib:
            assert len(lib) == 0
            assert lib.library_info.num_spectra == 0

    def test_schema_is_complete(self):
        path = os.path.join(self.tmpdir.name, "schema.blib")
        connection = connect(path)
        try:
            create_schema(connection)
            profile = SchemaProfile.from_connection(connection)
        finally:
            connection.close()
        assert profile.has_proteins
        assert profile.has_table("IonMobilityTypes")
        assert profile.has_table("RefSpectraPeakAnnotations")
        assert set(profile.optional_columns) == {
            "prevAA", "nextAA", "copies", "retentionTime", "score", "scoreType",
            "totalIonCurrent", "collisionalCrossSectionSqA", "ionMobility",
            "ionMobilityType", "SpecIDinFile", "fileID"}
