import os
import time
import logging
import sqlite3

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional

from blibmsp.errors import LibraryReadError
from blibmsp.peak_list import PeakList
from blibmsp.spectrum import LibraryInfo, Modification, Spectrum, clean_sequence

from blibmsp.backends.base import SpectralLibraryBackendBase, SpectralLibraryWriterBase, PROGRESS_INTERVAL

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


LSID_PREFIX = "urn:lsid:proteome.gs.washington.edu:spectral_library:bibliospec:nr:"
MAJOR_VERSION = 1
MINOR_VERSION = 10

UNKNOWN_SCORE_TYPE = "UNKNOWN"

#### Columns of RefSpectra that older library versions may lack, mapped to Spectrum attributes
OPTIONAL_COLUMNS = {
    "prevAA": "prev_aa",
    "nextAA": "next_aa",
    "copies": "copies",
    "retentionTime": "retention_time",
    "score": "score",
    "scoreType": "score_type",
    "totalIonCurrent": "total_ion_current",
    "collisionalCrossSectionSqA": "collisional_cross_section",
    "ionMobility": "ion_mobility",
    "ionMobilityType": "ion_mobility_type",
    "SpecIDinFile": "spec_id_in_file",
    "fileID": "file_id",
}

REQUIRED_COLUMNS = ("id", "peptideSeq", "precursorMZ", "precursorCharge", "peptideModSeq", "numPeaks")


SCHEMA = [
    """CREATE TABLE LibInfo (
        libLSID TEXT,
        createTime TEXT,
        numSpecs INTEGER,
        majorVersion INTEGER,
        minorVersion INTEGER
    )""",
    """CREATE TABLE RefSpectra (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        peptideSeq VARCHAR(150),
        precursorMZ REAL,
        precursorCharge INTEGER,
        peptideModSeq VARCHAR(200),
        prevAA CHAR(1),
        nextAA CHAR(1),
        copies INTEGER,
        numPeaks INTEGER,
        ionMobility REAL,
        collisionalCrossSectionSqA REAL,
        ionMobilityHighEnergyOffset REAL,
        ionMobilityType TINYINT,
        retentionTime REAL,
        startTime REAL,
        endTime REAL,
        totalIonCurrent REAL,
        moleculeName VARCHAR(128),
        chemicalFormula VARCHAR(128),
        precursorAdduct VARCHAR(128),
        inchiKey VARCHAR(128),
        otherKeys VARCHAR(128),
        fileID INTEGER,
        SpecIDinFile VARCHAR(256),
        score REAL,
        scoreType TINYINT
    )""",
    """CREATE TABLE RefSpectraPeaks (
        RefSpectraID INTEGER,
        peakMZ BLOB,
        peakIntensity BLOB
    )""",
    """CREATE TABLE Modifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        RefSpectraID INTEGER,
        position INTEGER,
        mass REAL
    )""",
    """CREATE TABLE ScoreTypes (
        id INTEGER PRIMARY KEY,
        scoreType VARCHAR(128),
        probabilityType VARCHAR(128)
    )""",
    "INSERT INTO ScoreTypes VALUES (0, 'UNKNOWN', 'NOT_A_PROBABILITY_VALUE')",
    "INSERT INTO ScoreTypes VALUES (19, 'GENERIC Q-VALUE', 'PROBABILITY_THAT_IDENTIFICATION_IS_INCORRECT')",
    """CREATE TABLE IonMobilityTypes (
        id INTEGER PRIMARY KEY,
        ionMobilityType VARCHAR(128)
    )""",
    "INSERT INTO IonMobilityTypes VALUES (0, 'none')",
    """CREATE TABLE SpectrumSourceFiles (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        fileName VARCHAR(512),
        idFileName VARCHAR(512),
        cutoffScore REAL
    )""",
    """CREATE TABLE Proteins (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        accession VARCHAR(200)
    )""",
    """CREATE TABLE RefSpectraProteins (
        RefSpectraId INTEGER NOT NULL,
        ProteinId INTEGER NOT NULL
    )""",
    """CREATE TABLE RefSpectraPeakAnnotations (
        id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
        RefSpectraID INTEGER NOT NULL,
        peakIndex INTEGER NOT NULL,
        name VARCHAR(256),
        formula VARCHAR(256),
        inchiKey VARCHAR(256),
        otherKeys VARCHAR(256),
        charge INTEGER,
        adduct VARCHAR(256),
        comment VARCHAR(256),
        mzTheoretical REAL NOT NULL,
        mzObserved REAL NOT NULL
    )""",
]


@dataclass(frozen=True)
class SchemaProfile:
    """The tables and ``RefSpectra`` columns present in a particular library file.

    Resolved once per connection, and used to decide which optional data can be
    read instead of probing on every query.
    """
    tables: FrozenSet[str] = field(default_factory=frozenset)
    columns: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_connection(cls, connection: sqlite3.Connection) -> 'SchemaProfile':
        tables = frozenset(
            row[0] for row in connection.execute("SELECT name FROM sqlite_master WHERE type='table'"))
        if "RefSpectra" not in tables:
            raise LibraryReadError("Not a Bibliospec library, the RefSpectra table is missing")
        columns = frozenset(row[1] for row in connection.execute("PRAGMA table_info(RefSpectra)"))
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            raise LibraryReadError(f"RefSpectra table is missing required columns {missing}")
        return cls(tables, columns)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def has_table(self, name: str) -> bool:
        return name in self.tables

    @property
    def has_peaks(self) -> bool:
        return self.has_table("RefSpectraPeaks")

    @property
    def has_modifications(self) -> bool:
        return self.has_table("Modifications")

    @property
    def has_proteins(self) -> bool:
        return self.has_table("Proteins") and self.has_table("RefSpectraProteins")

    @property
    def has_score_types(self) -> bool:
        return self.has_table("ScoreTypes")

    @property
    def optional_columns(self) -> List[str]:
        return [c for c in OPTIONAL_COLUMNS if c in self.columns]

    def spectrum_query(self) -> str:
        select_cols = [f"r.{c}" for c in REQUIRED_COLUMNS]
        select_cols.extend(f"r.{c}" for c in self.optional_columns)
        select_cols.extend(["p.peakMZ", "p.peakIntensity"])
        return (f"SELECT {', '.join(select_cols)} FROM RefSpectra r "
                "JOIN RefSpectraPeaks p ON r.id = p.RefSpectraID ORDER BY r.id")


def connect(filename: str) -> sqlite3.Connection:
    connection = sqlite3.connect(filename)
    connection.row_factory = sqlite3.Row
    return connection


def create_schema(connection: sqlite3.Connection):
    """Create the tables of an empty library and seed the lookup tables"""
    for statement in SCHEMA:
        connection.execute(statement)
    connection.commit()


def read_library_info(connection: sqlite3.Connection) -> Optional[LibraryInfo]:
    try:
        info = connection.execute("SELECT * FROM LibInfo").fetchone()
    except sqlite3.OperationalError:
        return None
    if info is None:
        return None
    return LibraryInfo(info['libLSID'], info['createTime'], info['numSpecs'],
                       info['majorVersion'], info['minorVersion'])


def read_score_types(connection: sqlite3.Connection, profile: SchemaProfile) -> Dict[int, str]:
    if not profile.has_score_types:
        return {}
    return {row[0]: row[1] for row in connection.execute("SELECT id, scoreType FROM ScoreTypes")}


def read_modifications(connection: sqlite3.Connection, profile: SchemaProfile) -> Dict[int, List[Modification]]:
    mods: Dict[int, List[Modification]] = {}
    if not profile.has_modifications:
        return mods
    for spec_id, position, mass in connection.execute(
            "SELECT RefSpectraID, position, mass FROM Modifications ORDER BY RefSpectraID, position"):
        mods.setdefault(spec_id, []).append(Modification(position, mass))
    return mods


def read_proteins(connection: sqlite3.Connection, profile: SchemaProfile) -> Dict[int, List[str]]:
    proteins: Dict[int, List[str]] = {}
    if not profile.has_proteins:
        logger.debug("Protein tables not found, skipping protein extraction")
        return proteins
    for spec_id, accession in connection.execute(
            "SELECT rsp.RefSpectraId, p.accession FROM RefSpectraProteins rsp "
            "JOIN Proteins p ON rsp.ProteinId = p.id ORDER BY rsp.RefSpectraId, p.accession"):
        if accession:
            proteins.setdefault(spec_id, []).append(accession)
    return proteins


def read_unique_peptides(connection: sqlite3.Connection) -> List[str]:
    """All distinct unmodified peptide sequences in the library, cleaned of modification markup"""
    peptides = set()
    for (sequence, ) in connection.execute(
            "SELECT DISTINCT peptideSeq FROM RefSpectra WHERE peptideSeq IS NOT NULL AND peptideSeq != ''"):
        sequence = clean_sequence(sequence)
        if sequence:
            peptides.add(sequence)
    return sorted(peptides)


def _spectrum_from(row: Mapping, profile: SchemaProfile, score_types: Mapping[int, str],
                   modifications: Mapping[int, List[Modification]],
                   proteins: Mapping[int, List[str]]) -> Spectrum:
    spectrum = Spectrum(
        peptide_sequence=row['peptideSeq'] or clean_sequence(row['peptideModSeq']),
        charge=row['precursorCharge'],
        precursor_mz=row['precursorMZ'],
        modified_sequence=row['peptideModSeq'],
        num_peaks=row['numPeaks'],
        id=row['id'],
    )
    for column in profile.optional_columns:
        value = row[column]
        if value is None:
            continue
        setattr(spectrum, OPTIONAL_COLUMNS[column], value)
    if spectrum.score_type is not None:
        spectrum.score_type = score_types.get(spectrum.score_type)
    if spectrum.spec_id_in_file is not None:
        spectrum.spec_id_in_file = str(spectrum.spec_id_in_file)
    spectrum.peaks = PeakList.decode(row['peakMZ'], row['peakIntensity'], row['numPeaks'])
    spectrum.modifications = list(modifications.get(row['id'], ()))
    spectrum.proteins = list(proteins.get(row['id'], ()))
    return spectrum


def read_all(connection: sqlite3.Connection, profile: Optional[SchemaProfile]=None) -> Iterator[Spectrum]:
    """Iterate over every spectrum in the library in ``id`` order.

    Modifications and protein assignments are loaded in bulk up front, and
    peaks are decoded as each row is read.
    """
    if profile is None:
        profile = SchemaProfile.from_connection(connection)
    if not profile.has_peaks:
        raise LibraryReadError("Not a Bibliospec library, the RefSpectraPeaks table is missing")
    score_types = read_score_types(connection, profile)
    modifications = read_modifications(connection, profile)
    proteins = read_proteins(connection, profile)
    cursor = connection.execute(profile.spectrum_query())
    for row in cursor:
        yield _spectrum_from(row, profile, score_types, modifications, proteins)


def _zero_if_none(value):
    return 0 if value is None else value


def write_spectrum(connection: sqlite3.Connection, spectrum: Spectrum, score_type_id: int=0,
                   protein_ids: Optional[Dict[str, int]]=None) -> int:
    """Insert one spectrum with its peaks, modifications and proteins, returning its new ``id``"""
    peaks = spectrum.peaks
    cursor = connection.execute(
        """INSERT INTO RefSpectra (
            peptideSeq, precursorMZ, precursorCharge, peptideModSeq,
            prevAA, nextAA, copies, numPeaks, ionMobility,
            collisionalCrossSectionSqA, ionMobilityHighEnergyOffset,
            ionMobilityType, retentionTime, totalIonCurrent, fileID,
            SpecIDinFile, score, scoreType
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)""",
        (
            spectrum.peptide_sequence,
            spectrum.precursor_mz,
            spectrum.charge,
            spectrum.modified_sequence or spectrum.peptide_sequence,
            spectrum.prev_aa or '-',
            spectrum.next_aa or '-',
            spectrum.copies or 1,
            len(peaks),
            _zero_if_none(spectrum.ion_mobility),
            _zero_if_none(spectrum.collisional_cross_section),
            _zero_if_none(spectrum.ion_mobility_type),
            _zero_if_none(spectrum.retention_time),
            _zero_if_none(spectrum.total_ion_current),
            spectrum.file_id,
            spectrum.spec_id_in_file,
            _zero_if_none(spectrum.score),
            score_type_id,
        )
    )
    spec_id = cursor.lastrowid

    mz_blob, intensity_blob = peaks.encode()
    connection.execute(
        "INSERT INTO RefSpectraPeaks (RefSpectraID, peakMZ, peakIntensity) VALUES (?, ?, ?)",
        (spec_id, sqlite3.Binary(mz_blob), sqlite3.Binary(intensity_blob)))

    connection.executemany(
        "INSERT INTO Modifications (RefSpectraID, position, mass) VALUES (?, ?, ?)",
        [(spec_id, mod.position, mod.mass) for mod in spectrum.sorted_modifications()])

    if protein_ids is None:
        protein_ids = {}
    for accession in spectrum.proteins:
        protein_id = protein_ids.get(accession)
        if protein_id is None:
            existing = connection.execute(
                "SELECT id FROM Proteins WHERE accession = ?", (accession, )).fetchone()
            if existing is not None:
                protein_id = existing[0]
            else:
                protein_id = connection.execute(
                    "INSERT INTO Proteins (accession) VALUES (?)", (accession, )).lastrowid
            protein_ids[accession] = protein_id
        connection.execute(
            "INSERT INTO RefSpectraProteins (RefSpectraId, ProteinId) VALUES (?, ?)",
            (spec_id, protein_id))
    return spec_id


def finalize(connection: sqlite3.Connection, num_spectra: int, library_name: str="converted.blib"):
    """Record the library metadata row once the final spectrum count is known"""
    connection.execute(
        "INSERT INTO LibInfo (libLSID, createTime, numSpecs, majorVersion, minorVersion) VALUES (?, ?, ?, ?, ?)",
        (LSID_PREFIX + library_name, time.ctime(), num_spectra, MAJOR_VERSION, MINOR_VERSION))
    connection.commit()


class BibliospecSpectralLibrary(SpectralLibraryBackendBase):
    """Read Bibliospec 2 SQLite3 spectral library files.
    """
    connection: sqlite3.Connection
    profile: SchemaProfile
    library_info: Optional[LibraryInfo]

    file_format = "blib"
    format_name = "bibliospec"

    def __init__(self, filename, **kwargs):
        super().__init__(filename)
        if not os.path.exists(filename):
            raise LibraryReadError(f"Library file {filename} does not exist")
        self.connection = connect(filename)
        try:
            self.profile = SchemaProfile.from_connection(self.connection)
        except (LibraryReadError, sqlite3.DatabaseError) as err:
            self.connection.close()
            raise LibraryReadError(f"Failed to open {filename}: {err}") from err
        self.read_header()

    def read_header(self) -> bool:
        self.library_info = read_library_info(self.connection)
        return self.library_info is not None

    @property
    def score_types(self) -> Dict[int, str]:
        return read_score_types(self.connection, self.profile)

    def unique_peptides(self) -> List[str]:
        return read_unique_peptides(self.connection)

    def read(self) -> Iterator[Spectrum]:
        return read_all(self.connection, self.profile)

    def __len__(self):
        return self.connection.execute("SELECT count(*) FROM RefSpectra;").fetchone()[0]

    def close(self):
        self.connection.close()


class BibliospecSpectralLibraryWriter(SpectralLibraryWriterBase):
    """Write a new Bibliospec library, replacing any existing file.

    Inserts are grouped into transactions of `batch_size` spectra. The ``LibInfo``
    row is written on :meth:`close` with the final spectrum count.
    """
    file_format = "blib"
    format_name = "bibliospec"

    connection: sqlite3.Connection
    score_type_ids: Dict[str, int]
    protein_ids: Dict[str, int]
    batch_size: int

    def __init__(self, filename, batch_size: int=PROGRESS_INTERVAL, **kwargs):
        super().__init__(filename)
        self.batch_size = batch_size
        if os.path.exists(filename):
            logger.debug("Removing existing library %s", filename)
            os.remove(filename)
        self.connection = connect(filename)
        create_schema(self.connection)
        logger.debug("Created Bibliospec schema in %s", filename)
        self.score_type_ids = {
            name.upper(): type_id for type_id, name in
            self.connection.execute("SELECT id, scoreType FROM ScoreTypes")
        }
        self.protein_ids = {}
        self._closed = False

    def score_type_id(self, name: Optional[str]) -> int:
        """Map a score type name to its ``ScoreTypes`` id, registering names not seen before"""
        if not name:
            return 0
        key = name.upper()
        if key not in self.score_type_ids:
            next_id = self.connection.execute("SELECT COALESCE(MAX(id), 0) + 1 FROM ScoreTypes").fetchone()[0]
            self.connection.execute(
                "INSERT INTO ScoreTypes (id, scoreType, probabilityType) VALUES (?, ?, ?)",
                (next_id, name, 'NOT_A_PROBABILITY_VALUE'))
            self.score_type_ids[key] = next_id
        return self.score_type_ids[key]

    def write_spectrum(self, spectrum: Spectrum) -> int:
        score_type_id = self.score_type_id(spectrum.score_type) if spectrum.score is not None else 0
        spec_id = write_spectrum(self.connection, spectrum, score_type_id, self.protein_ids)
        self.written += 1
        if self.written % self.batch_size == 0:
            self.connection.commit()
        return spec_id

    def close(self):
        if self._closed:
            return
        self.connection.commit()
        finalize(self.connection, self.written, os.path.basename(os.fspath(self.filename)))
        self.connection.close()
        self._closed = True
