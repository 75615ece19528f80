"""Modification name and mass resolution.

A :class:`ModificationDatabase` is built from any iterable of
:class:`ModificationRecord` objects, normally read from a Unimod XML file with
:mod:`pyteomics`. Many modifications share the same nominal delta mass, so each
4-decimal mass bucket is resolved to a single canonical name with a fixed
precedence: a preferred common name, then approved entries, then alphabetical order.
"""
import os
import logging

from typing import Dict, Iterable, List, NamedTuple, Optional, Union

from pyteomics import mass as pyteomics_mass

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


MASS_TOLERANCE = 0.001

#### Canonical names for mass buckets that many Unimod entries collide on
PREFERRED_MODIFICATIONS = {
    "15.9949": "Oxidation",
    "57.0215": "Carbamidomethyl",
    "42.0106": "Acetyl",
    "79.9663": "Phospho",
    "0.9840": "Deamidated",
    "28.0313": "Dimethyl",
    "14.0157": "Methyl",
    "27.9949": "Formyl",
    "226.0776": "ICAT-C",
    "227.1270": "TMT",
    "304.2072": "iTRAQ8plex",
    "144.1021": "iTRAQ4plex",
}

#### Used to resolve modification names when no database is loaded or the name is absent
COMMON_MODIFICATION_MASSES = {
    "Oxidation": 15.9949,
    "Carbamidomethyl": 57.021465,
    "Acetyl": 42.0106,
    "Phospho": 79.9663,
    "Deamidated": 0.9840,
    "Methyl": 14.0157,
    "Dimethyl": 28.0314,
    "Trimethyl": 42.0470,
    "GlyGly": 114.0429,
    "Ubiquitin": 114.0429,
}

UNIMOD_SEARCH_PATHS = [
    os.path.join('unimod', 'unimod.xml'),
    'unimod.xml',
    os.path.join('documentation', 'unimod.xml'),
]


class ModificationRecord(NamedTuple):
    name: str
    mass: float
    approved: bool = False


def mass_key(mass: float) -> str:
    return f"{mass:.4f}"


def _candidate_order(record: ModificationRecord):
    return (not record.approved, record.name.lower())


class ModificationDatabase:
    """Bidirectional lookup between modification names and monoisotopic delta masses.

    Attributes
    ----------
    mass_to_name : Dict[str, str]
        Maps a 4-decimal mass key to its canonical modification name.
    name_to_mass : Dict[str, float]
        Maps every known modification name to its delta mass.
    tolerance : float
        The maximum distance in Daltons for an inexact mass lookup.
    """

    mass_to_name: Dict[str, str]
    name_to_mass: Dict[str, float]
    tolerance: float

    def __init__(self, mass_to_name: Optional[Dict[str, str]]=None,
                 name_to_mass: Optional[Dict[str, float]]=None,
                 tolerance: float=MASS_TOLERANCE, loaded: Optional[bool]=None):
        self.mass_to_name = dict(mass_to_name or {})
        self.name_to_mass = dict(name_to_mass or {})
        self._lower_name_to_mass = {}
        for name, value in self.name_to_mass.items():
            self._lower_name_to_mass.setdefault(name.lower(), value)
        self._bucket_masses = {key: float(key) for key in self.mass_to_name}
        self.tolerance = tolerance
        if loaded is None:
            loaded = bool(self.mass_to_name)
        self._loaded = loaded

    @classmethod
    def from_records(cls, records: Iterable[ModificationRecord],
                     tolerance: float=MASS_TOLERANCE) -> 'ModificationDatabase':
        buckets: Dict[str, List[ModificationRecord]] = {}
        for record in records:
            if not record.name or record.mass is None:
                continue
            buckets.setdefault(mass_key(record.mass), []).append(record)

        mass_to_name = {}
        name_to_mass = {}
        for key, candidates in buckets.items():
            candidates = sorted(candidates, key=_candidate_order)
            selected = None
            preferred = PREFERRED_MODIFICATIONS.get(key)
            if preferred is not None and any(c.name == preferred for c in candidates):
                selected = preferred
                logger.debug("mass=%s -> %s (preferred)", key, selected)
            if selected is None:
                selected = candidates[0].name
                logger.debug("mass=%s -> %s%s", key, selected,
                             " (approved)" if candidates[0].approved else "")
            mass_to_name[key] = selected
            for candidate in candidates:
                name_to_mass.setdefault(candidate.name, candidate.mass)
        return cls(mass_to_name, name_to_mass, tolerance=tolerance, loaded=True)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def __len__(self):
        return len(self.mass_to_name)

    def __repr__(self):
        return f"{self.__class__.__name__}({len(self.mass_to_name)} masses, {len(self.name_to_mass)} names)"

    def lookup_name_by_mass(self, mass: Optional[float]) -> Optional[str]:
        """Find the canonical name for a delta mass.

        An exact 4-decimal bucket match is tried first, then the closest bucket
        within :attr:`tolerance`.
        """
        if not self._loaded or mass is None:
            return None
        mass = float(mass)
        key = mass_key(mass)
        if key in self.mass_to_name:
            return self.mass_to_name[key]
        best_match = None
        best_diff = self.tolerance + 1
        for key, bucket_mass in self._bucket_masses.items():
            diff = abs(bucket_mass - mass)
            if diff < best_diff and diff <= self.tolerance:
                best_diff = diff
                best_match = self.mass_to_name[key]
        return best_match

    def lookup_mass_by_name(self, name: Optional[str]) -> Optional[float]:
        """Find the delta mass of a named modification, falling back to a case-insensitive match."""
        if not self._loaded or name is None:
            return None
        if name in self.name_to_mass:
            return self.name_to_mass[name]
        return self._lower_name_to_mass.get(name.lower())

    def resolve_mass(self, name: Optional[str]) -> Optional[float]:
        """Like :meth:`lookup_mass_by_name`, but consults :data:`COMMON_MODIFICATION_MASSES`
        when the database does not know the name."""
        value = self.lookup_mass_by_name(name)
        if value is None and name is not None:
            value = COMMON_MODIFICATION_MASSES.get(name)
        return value


def records_from_unimod(unimod) -> List[ModificationRecord]:
    """Convert the modifications of a loaded :class:`pyteomics.mass.Unimod` into records"""
    records = []
    for mod in unimod.mods:
        title = mod.get('title')
        mono_mass = mod.get('mono_mass')
        if not title or mono_mass is None:
            continue
        records.append(ModificationRecord(title, float(mono_mass), bool(mod.get('approved', False))))
    return records


def load_unimod_records(source: Union[str, os.PathLike]) -> List[ModificationRecord]:
    logger.info("Loading Unimod definitions from %s", source)
    unimod = pyteomics_mass.Unimod(os.fspath(source))
    return records_from_unimod(unimod)


def find_unimod_file(explicit: Optional[Union[str, os.PathLike]]=None) -> Optional[str]:
    """Locate a Unimod XML file, preferring `explicit` when it exists."""
    if explicit and os.path.isfile(explicit):
        return os.fspath(explicit)
    package_dir = os.path.dirname(os.path.abspath(__file__))
    candidates = list(UNIMOD_SEARCH_PATHS)
    candidates.extend(os.path.join(package_dir, path) for path in UNIMOD_SEARCH_PATHS)
    for path in candidates:
        if os.path.isfile(path):
            return path
    return None


def load_modification_database(unimod_path: Optional[Union[str, os.PathLike]]=None) -> ModificationDatabase:
    """Build a :class:`ModificationDatabase` from a Unimod XML file.

    If no file can be found or parsed, an unloaded database is returned and
    modifications will be reported by mass.
    """
    path = find_unimod_file(unimod_path)
    if path is None:
        logger.warning("Unimod file not found. Modification names will be displayed as masses.")
        return ModificationDatabase()
    try:
        records = load_unimod_records(path)
    except Exception as err:
        logger.error("Failed to load Unimod file %s: %s", path, err)
        return ModificationDatabase()
    database = ModificationDatabase.from_records(records)
    logger.info("Loaded %d unique masses, %d unique names from Unimod",
                len(database.mass_to_name), len(database.name_to_mass))
    return database
