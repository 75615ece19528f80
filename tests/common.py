import os
import zlib
import sqlite3

import numpy as np

from blibmsp.modifications import ModificationDatabase, ModificationRecord

data_path = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "test_data"))


def datafile(name):
    path = os.path.join(data_path, name)
    if not os.path.exists(path):
        raise Exception(
            ("The path %r could not be located in the test suite's data package." % (path, )) +
            "If you are NOT running the test suite, you should not"
            " be using this function.")
    return path


TEST_MODIFICATION_RECORDS = [
    ModificationRecord("Oxidation", 15.994915, True),
    ModificationRecord("Ala->Ser", 15.994915, False),
    ModificationRecord("Carbamidomethyl", 57.021464, True),
    ModificationRecord("Acetyl", 42.010565, True),
    ModificationRecord("Phospho", 79.966331, True),
    ModificationRecord("Deamidated", 0.984016, True),
    ModificationRecord("Trimethyl", 42.04695, True),
]


def make_modification_database():
    return ModificationDatabase.from_records(TEST_MODIFICATION_RECORDS)


#### id, peptideSeq, peptideModSeq, charge, precursorMZ, retentionTime, score, TIC, mods, m/z, intensity
MINIMAL_SPECTRA = [
    (1, 'IQVR', 'IQVR', 2, 258.051, 2.0, 0.95, 10000.0, [],
     [175.119, 241.845, 273.934, 385.088, 402.116],
     [1000.0, 3259.79, 6814.63, 1973.7, 4458.79]),
    (2, 'MLQGR', 'M[+16.0]LQGR', 2, 310.663, 3.0, 0.88, 8000.0, [(1, 15.9949)],
     [232.222, 256.260, 278.797, 360.318, 473.365, 519.373],
     [617.16, 802.82, 4802.82, 1464.88, 225.6, 7.92]),
    (3, 'LKCASLQK', 'LKC[+57.0]ASLQK', 3, 316.517, 2.5, 0.92, 9000.0, [(3, 57.021464)],
     [147.113, 304.177, 417.261, 530.345, 643.429],
     [400.0, 1000.0, 800.0, 600.0, 400.0]),
    (4, 'SCRSYR', 'S[+42.0]C[+57.0]RSYR', 3, 290.532, 3.3, 0.85, 7000.0, [(1, 42.010565), (2, 57.021464)],
     [238.446, 247.592, 323.600, 416.114],
     [960.69, 3862.13, 2623.22, 680.73]),
]


def create_minimal_blib(path):
    """Write a four spectrum library using an older, reduced Bibliospec schema"""
    if os.path.exists(path):
        os.remove(path)
    connection = sqlite3.connect(path)
    connection.execute('''CREATE TABLE LibInfo (
        libLSID TEXT,
        createTime TEXT,
        numSpecs INTEGER,
        majorVersion INTEGER,
        minorVersion INTEGER
    )''')
    connection.execute('''CREATE TABLE RefSpectra (
        id INTEGER PRIMARY KEY,
        peptideSeq TEXT,
        peptideModSeq TEXT,
        precursorCharge INTEGER,
        precursorMZ REAL,
        prevAA TEXT,
        nextAA TEXT,
        copies INTEGER,
        numPeaks INTEGER,
        retentionTime REAL,
        score REAL,
        scoreType INTEGER,
        totalIonCurrent REAL,
        ionMobility REAL,
        collisionalCrossSectionSqA REAL,
        SpecIDinFile TEXT
    )''')
    connection.execute('''CREATE TABLE RefSpectraPeaks (
        RefSpectraID INTEGER,
        peakMZ BLOB,
        peakIntensity BLOB
    )''')
    connection.execute('''CREATE TABLE Modifications (
        id INTEGER PRIMARY KEY,
        RefSpectraID INTEGER,
        position INTEGER,
        mass REAL
    )''')
    connection.execute('''CREATE TABLE ScoreTypes (
        id INTEGER PRIMARY KEY,
        scoreType TEXT
    )''')
    connection.execute("INSERT INTO LibInfo VALUES ('test_lib', '2026-01-20', 4, 1, 0)")
    connection.execute("INSERT INTO ScoreTypes VALUES (1, 'PERCOLATOR QVALUE')")
    for (spec_id, seq, mod_seq, charge, mz, rt, score, tic, mods, peak_mz, peak_int) in MINIMAL_SPECTRA:
        connection.execute(
            "INSERT INTO RefSpectra (id, peptideSeq, peptideModSeq, precursorCharge, precursorMZ, "
            "numPeaks, retentionTime, score, scoreType, totalIonCurrent) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?)",
            (spec_id, seq, mod_seq, charge, mz, len(peak_mz), rt, score, tic))
        for position, mass in mods:
            connection.execute(
                "INSERT INTO Modifications (RefSpectraID, position, mass) VALUES (?, ?, ?)",
                (spec_id, position, mass))
        connection.execute(
            "INSERT INTO RefSpectraPeaks VALUES (?, ?, ?)",
            (spec_id,
             zlib.compress(np.asarray(peak_mz, dtype='<f8').tobytes()),
             zlib.compress(np.asarray(peak_int, dtype='<f4').tobytes())))
    connection.commit()
    connection.close()
    return path
