import os
import hashlib
import logging

from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import Column, Integer, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker

from blibmsp.proteins.fasta import ProteinSequenceIndex, find_fasta_files
from blibmsp.proteins.mapping import PeptideProteinMap, build_peptide_protein_map

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


Base = declarative_base()

CACHE_PREFIX = "peptide_protein_cache_"
CACHE_EXTENSION = ".sqlite"


class CacheAttribute(Base):
    __tablename__ = 'cache_attribute'
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    value = Column(String(1024), nullable=False)


class PeptideProteinRecord(Base):
    __tablename__ = 'peptide_protein'
    id = Column(Integer, primary_key=True)
    peptide = Column(String(256), nullable=False, index=True)
    accession = Column(String(256), nullable=False)
    rank = Column(Integer, nullable=False)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.peptide}, {self.accession}, {self.rank})"


def compute_cache_key(fasta_dir: Union[str, os.PathLike], peptides: Iterable[str]) -> str:
    """Hash the FASTA files' paths, sizes and modification times together with the peptide set.

    Any change to the FASTA files or to the peptide list produces a different key.
    """
    key_data = []
    for path in find_fasta_files(fasta_dir):
        try:
            stat = os.stat(path)
            mtime = int(stat.st_mtime)
            size = stat.st_size
        except OSError:
            mtime = size = 0
        key_data.append(f"{path}:{mtime}:{size};")
    peptide_hash = hashlib.md5("\n".join(sorted(set(peptides))).encode("utf8")).hexdigest()
    key_data.append(f"peptides:{peptide_hash}")
    return hashlib.md5("".join(key_data).encode("utf8")).hexdigest()


def cache_path_for(fasta_dir: Union[str, os.PathLike], key: str) -> str:
    return os.path.join(os.fspath(fasta_dir), f"{CACHE_PREFIX}{key}{CACHE_EXTENSION}")


class PeptideProteinCache:
    """An on-disk peptide to protein accession map, named by its cache key.

    Attributes
    ----------
    filename : str
        The path to the SQLite file holding the cache.
    key : str
        The cache key the file is named for.
    """

    filename: str
    key: str
    session: Optional[scoped_session]
    engine: Optional[Engine]

    def __init__(self, fasta_dir: Union[str, os.PathLike], key: str):
        self.key = key
        self.filename = cache_path_for(fasta_dir, key)
        self.session = None
        self.engine = None

    @property
    def exists(self) -> bool:
        return os.path.exists(self.filename)

    def connect(self, create: bool=False, filename: Optional[str]=None):
        if filename is None:
            filename = self.filename
        if create and os.path.exists(filename):
            logger.debug(f'Deleting previous cache file {filename}')
            os.remove(filename)
        engine = create_engine("sqlite:///" + filename)
        Base.metadata.create_all(engine)
        self.engine = engine
        self.session = scoped_session(sessionmaker(bind=engine))

    def close(self):
        if self.session is not None:
            self.session.remove()
            self.session = None
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def load(self) -> PeptideProteinMap:
        self.connect()
        try:
            mapping: Dict[str, List[str]] = {}
            query = self.session.query(PeptideProteinRecord).order_by(
                PeptideProteinRecord.peptide, PeptideProteinRecord.rank)
            for record in query.yield_per(10000):
                mapping.setdefault(record.peptide, []).append(record.accession)
            return mapping
        finally:
            self.close()

    def save(self, mapping: PeptideProteinMap):
        """Write `mapping` to a temporary file, moving it into place once committed."""
        staging = self.filename + ".tmp"
        try:
            self.connect(create=True, filename=staging)
            self.session.add(CacheAttribute(name="key", value=self.key))
            for peptide, accessions in mapping.items():
                self.session.add_all([
                    PeptideProteinRecord(peptide=peptide, accession=accession, rank=i)
                    for i, accession in enumerate(accessions)
                ])
            self.session.commit()
        except Exception:
            self.close()
            if os.path.exists(staging):
                os.remove(staging)
            raise
        self.close()
        os.replace(staging, self.filename)


def build_or_load_map(fasta_dir: Optional[Union[str, os.PathLike]], peptides: Iterable[str],
                      n_workers: Optional[int]=None, strategy: str="automaton",
                      use_cache: bool=True) -> PeptideProteinMap:
    """Get the peptide to protein map for `peptides`, from the cache when possible.

    On a cache miss the FASTA files are indexed and searched, and the result is
    written to the cache. Failures reading or writing the cache are logged and
    otherwise ignored.
    """
    peptides = sorted(set(peptides))
    if not fasta_dir or not os.path.isdir(fasta_dir):
        if fasta_dir:
            logger.warning("FASTA directory %s does not exist, skipping protein mapping", fasta_dir)
        return {}
    if not peptides:
        logger.warning("No peptide sequences found, skipping FASTA mapping")
        return {}

    cache = None
    if use_cache:
        cache = PeptideProteinCache(fasta_dir, compute_cache_key(fasta_dir, peptides))
        if cache.exists:
            logger.info("Loading peptide-protein mapping from cache: %s", cache.filename)
            try:
                mapping = cache.load()
                logger.info("Loaded %d peptide mappings from cache", len(mapping))
                return mapping
            except Exception as err:
                logger.warning("Failed to load cache %s: %s", cache.filename, err)

    index = ProteinSequenceIndex.from_directory(fasta_dir)
    if not len(index):
        return {}
    mapping = build_peptide_protein_map(index, peptides, n_workers=n_workers, strategy=strategy)

    if cache is not None:
        logger.info("Saving peptide-protein mapping to cache: %s", cache.filename)
        try:
            cache.save(mapping)
        except Exception as err:
            logger.warning("Failed to save cache %s: %s", cache.filename, err)
    return mapping
