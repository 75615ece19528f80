"""Parsing, merging and formatting of inline modification annotations.

Spectrum names and the ``Mods`` comment field describe modifications in one of
two grammars::

    current:  2(1,M,Oxidation)(5,C,57.0215)
    legacy:   2/1,M,Oxidation/5,C,57.0215

Each entry is ``position,residue,tag`` where the tag is either a modification
name or a delta mass. Both grammars parse into the same list of
:class:`ModificationEntry` objects, and are resolved into
:class:`~.Modification` instances by a :class:`ModificationReconciler`.
"""
import re
import logging

from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from blibmsp.modifications import ModificationDatabase
from blibmsp.spectrum import Modification, clean_sequence
from blibmsp.context import ModificationSummary

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


current_entry_pattern = re.compile(r"\((\d+),([A-Z?]),((?:[^()]|\([^()]*\))+)\)")
current_grammar_pattern = re.compile(r"^\d*\(")
legacy_entry_pattern = re.compile(r"^(\d+),([A-Z?]),(.+)$")
numeric_tag_pattern = re.compile(r"^-?[\d.]+$")

current_name_pattern = re.compile(r"^(.+)/(\d+)_(\d+)(.*)$")
legacy_name_pattern = re.compile(r"^(.+)/(\d+)$")


class ModificationEntry(NamedTuple):
    position: int
    residue: str
    tag: str

    @property
    def is_mass(self) -> bool:
        return bool(numeric_tag_pattern.match(self.tag))


class ModificationAnnotation:
    """A parsed modification annotation of either grammar.

    Attributes
    ----------
    count : int
        The declared number of modifications.
    entries : List[ModificationEntry]
        The modification entries, in the order written.
    """

    grammar: str = None

    count: int
    entries: List[ModificationEntry]

    def __init__(self, count: int=0, entries: Optional[List[ModificationEntry]]=None):
        self.count = count
        self.entries = list(entries or [])

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __eq__(self, other):
        if not isinstance(other, ModificationAnnotation):
            return NotImplemented
        return self.count == other.count and self.entries == other.entries

    def __repr__(self):
        return f"{self.__class__.__name__}({self.count}, {self.entries})"

    @classmethod
    def parse(cls, text: str) -> 'ModificationAnnotation':
        raise NotImplementedError()


class CurrentModificationAnnotation(ModificationAnnotation):
    grammar = "current"

    @classmethod
    def parse(cls, text: str) -> 'CurrentModificationAnnotation':
        match = re.match(r"^(\d*)(.*)$", text.strip())
        count = int(match.group(1)) if match.group(1) else 0
        entries = [
            ModificationEntry(int(position), residue, tag)
            for position, residue, tag in current_entry_pattern.findall(match.group(2))
        ]
        if not match.group(1):
            count = len(entries)
        return cls(count, entries)


class LegacyModificationAnnotation(ModificationAnnotation):
    grammar = "legacy"

    @classmethod
    def parse(cls, text: str) -> 'LegacyModificationAnnotation':
        parts = text.strip().split("/")
        head = parts.pop(0)
        count = int(head) if head.isdigit() else 0
        entries = []
        for part in parts:
            match = legacy_entry_pattern.match(part)
            if match:
                position, residue, tag = match.groups()
                entries.append(ModificationEntry(int(position), residue, tag))
            else:
                logger.debug("Could not parse modification %r", part)
        return cls(count, entries)


def parse_modification_string(text: Optional[str]) -> ModificationAnnotation:
    """Parse a modification annotation, detecting which grammar it uses.

    An empty string, ``None`` or ``"0"`` produce an empty annotation.
    """
    if text is None:
        return CurrentModificationAnnotation()
    text = str(text).strip()
    if not text or text == '0':
        return CurrentModificationAnnotation()
    if current_grammar_pattern.match(text):
        return CurrentModificationAnnotation.parse(text)
    if "/" in text:
        return LegacyModificationAnnotation.parse(text)
    return CurrentModificationAnnotation.parse(text)


class SpectrumName(NamedTuple):
    sequence: str
    charge: Optional[int]
    modifications: ModificationAnnotation

    @property
    def peptide(self) -> str:
        return clean_sequence(self.sequence)


def parse_spectrum_name(name: str) -> SpectrumName:
    """Split a ``SEQUENCE/charge_count(mods)`` or ``SEQUENCE/charge`` name.

    Names matching neither form are treated as a bare sequence.
    """
    name = name.strip()
    match = current_name_pattern.match(name)
    if match:
        sequence, charge, count, rest = match.groups()
        annotation = CurrentModificationAnnotation.parse(count + rest)
        return SpectrumName(sequence, int(charge), annotation)
    match = legacy_name_pattern.match(name)
    if match:
        sequence, charge = match.groups()
        return SpectrumName(sequence, int(charge), CurrentModificationAnnotation())
    return SpectrumName(name, None, CurrentModificationAnnotation())


def merge_modification_entries(primary: Iterable[ModificationEntry],
                               secondary: Iterable[ModificationEntry]) -> List[ModificationEntry]:
    """Combine two sets of entries by position, with `primary` winning on conflict.

    The result is ordered by position.
    """
    by_position: Dict[int, ModificationEntry] = {}
    for entry in primary:
        by_position[entry.position] = entry
    for entry in secondary:
        by_position.setdefault(entry.position, entry)
    return [by_position[k] for k in sorted(by_position)]


class ModificationReconciler:
    """Moves modifications between their mass-only form and their named, annotated form.

    Every modification passing through :meth:`resolve` or :meth:`annotate` is
    counted in :attr:`summary`.
    """

    database: ModificationDatabase
    summary: ModificationSummary

    def __init__(self, database: Optional[ModificationDatabase]=None,
                 summary: Optional[ModificationSummary]=None):
        if database is None:
            database = ModificationDatabase()
        if summary is None:
            summary = ModificationSummary()
        self.database = database
        self.summary = summary

    def resolve_entry(self, entry: ModificationEntry, sequence: str='') -> Optional[Modification]:
        if entry.is_mass:
            try:
                mass = float(entry.tag)
            except ValueError:
                logger.warning("Malformed modification mass %r at position %d", entry.tag, entry.position)
                return None
            name = self.database.lookup_name_by_mass(mass)
        else:
            name = entry.tag
            mass = self.database.resolve_mass(name)
            if mass is None:
                logger.warning("Unknown modification %r at position %d, skipping it", name, entry.position)
                return None
        residue = entry.residue
        if residue == '?' and sequence:
            residue = Modification(entry.position, mass).site_in(sequence)
        self.summary.track(mass, residue, name)
        return Modification(entry.position, mass, residue, name)

    def resolve(self, entries: Iterable[ModificationEntry], sequence: str='') -> List[Modification]:
        """Convert parsed entries into :class:`~.Modification` objects.

        Numeric tags are taken as masses and named from the database. Other tags
        are names whose mass comes from the database or the built-in common
        modification table. Entries whose mass cannot be determined are dropped.
        """
        modifications = []
        for entry in entries:
            modification = self.resolve_entry(entry, sequence)
            if modification is not None:
                modifications.append(modification)
        return modifications

    def annotate(self, modifications: Iterable[Modification], sequence: str) -> List[Modification]:
        """Fill in the residue and name of mass-only modifications, in position order"""
        annotated = []
        for mod in sorted(modifications, key=lambda x: x.position):
            residue = mod.site_in(sequence)
            name = mod.name or self.database.lookup_name_by_mass(mod.mass)
            self.summary.track(mod.mass, residue, name)
            annotated.append(Modification(mod.position, mod.mass, residue, name))
        return annotated

    @staticmethod
    def format_entry(modification: Modification) -> str:
        tag = modification.name or f"{modification.mass:.4f}"
        return f"({modification.position},{modification.residue or '?'},{tag})"

    def format(self, modifications: List[Modification]) -> Tuple[int, str]:
        """Render modifications in the current grammar, returning the count and the entry string"""
        return len(modifications), ''.join(self.format_entry(mod) for mod in modifications)
