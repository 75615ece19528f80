"""Drive a complete conversion between a Bibliospec library and an MSP text library.

A conversion is described by :class:`ConversionOptions`. :func:`convert_library`
checks the options, picks the direction from the input file's extension, and
runs the matching :class:`LibraryConverter`. All per-run state lives in a
:class:`~.ConversionContext`, and the end-of-run summary is logged even if the
conversion fails part way through.
"""
import os
import logging

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Optional, Union

from blibmsp.annotation import ModificationReconciler
from blibmsp.context import ConversionContext, ConversionStatistics
from blibmsp.errors import ConversionError, FormatInferenceFailure
from blibmsp.modifications import load_modification_database
from blibmsp.proteins import build_or_load_map, prepare_peptides
from blibmsp.spectrum import Spectrum, clean_sequence
from blibmsp.utils import swap_extension, timestamp

from blibmsp.backends.base import PROGRESS_INTERVAL
from blibmsp.backends.bibliospec import BibliospecSpectralLibrary, BibliospecSpectralLibraryWriter
from blibmsp.backends.msp import MSPSpectralLibrary, MSPSpectralLibraryWriter, entry_to_spectrum

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


BLIB_TO_MSP = "blib2msp"
MSP_TO_BLIB = "msp2blib"

_direction_for_extension = {
    ".blib": (BLIB_TO_MSP, ".msp"),
    ".msp": (MSP_TO_BLIB, ".blib"),
}


def infer_direction(path: Union[str, os.PathLike]) -> str:
    """Determine the conversion direction from the input file's extension"""
    _, ext = os.path.splitext(os.fspath(path))
    try:
        return _direction_for_extension[ext.lower()][0]
    except KeyError:
        raise FormatInferenceFailure(
            f"Cannot determine conversion direction from file extension of {path}. Use .blib or .msp") from None


def default_output_path(path: Union[str, os.PathLike]) -> str:
    _, ext = os.path.splitext(os.fspath(path))
    try:
        return swap_extension(path, _direction_for_extension[ext.lower()][1])
    except KeyError:
        raise FormatInferenceFailure(
            f"Cannot determine conversion direction from file extension of {path}. Use .blib or .msp") from None


@dataclass
class ConversionOptions:
    input_path: str
    output_path: Optional[str] = None
    min_peaks: int = 1
    limit: int = 0
    fasta_dir: Optional[str] = None
    unimod_path: Optional[str] = None
    n_workers: Optional[int] = None
    verbose: bool = False
    use_cache: bool = True
    strategy: str = "automaton"

    @property
    def direction(self) -> str:
        return infer_direction(self.input_path)

    def resolve_output_path(self) -> str:
        if not self.output_path:
            self.output_path = default_output_path(self.input_path)
        return self.output_path

    def validate(self):
        """Check everything that can be checked before any output is written"""
        if not self.input_path or not os.path.isfile(self.input_path):
            raise ConversionError(f"Input file {self.input_path} does not exist")
        direction = self.direction
        output_path = self.resolve_output_path()
        if os.path.abspath(output_path) == os.path.abspath(self.input_path):
            raise ConversionError(f"Output file {output_path} would overwrite the input file")
        output_dir = os.path.dirname(os.path.abspath(output_path))
        if not os.path.isdir(output_dir):
            raise ConversionError(f"Output directory {output_dir} does not exist")
        if not os.access(output_dir, os.W_OK):
            raise ConversionError(f"Output directory {output_dir} is not writable")
        if self.min_peaks is not None and self.min_peaks < 0:
            raise ConversionError("min_peaks must not be negative")
        if self.limit is not None and self.limit < 0:
            raise ConversionError("limit must not be negative")
        if self.fasta_dir and not os.path.isdir(self.fasta_dir):
            logger.warning("FASTA directory %s does not exist, protein mapping is disabled", self.fasta_dir)
        return direction


class LibraryConverter:
    """Common record loop for both conversion directions.

    Subclasses provide :meth:`iter_spectra`, :meth:`open_writer` and
    :meth:`collect_peptides`.
    """

    direction: ClassVar[str] = None

    options: ConversionOptions
    context: ConversionContext
    reconciler: ModificationReconciler
    peptide_to_proteins: Dict[str, List[str]]

    def __init__(self, options: ConversionOptions, context: Optional[ConversionContext]=None):
        if context is None:
            context = ConversionContext()
        self.options = options
        self.context = context
        self.reconciler = ModificationReconciler(
            context.modification_database, context.modification_summary)
        self.peptide_to_proteins = {}

    @property
    def statistics(self) -> ConversionStatistics:
        return self.context.statistics

    def iter_spectra(self):
        raise NotImplementedError()

    def open_writer(self):
        raise NotImplementedError()

    def collect_peptides(self) -> List[str]:
        raise NotImplementedError()

    def prepare_protein_map(self):
        if not self.options.fasta_dir or not os.path.isdir(self.options.fasta_dir):
            return
        peptides = prepare_peptides(self.collect_peptides())
        logger.info("Found %d unique peptide sequences", len(peptides))
        self.peptide_to_proteins = build_or_load_map(
            self.options.fasta_dir, peptides, n_workers=self.options.n_workers,
            strategy=self.options.strategy, use_cache=self.options.use_cache)

    def proteins_for(self, spectrum: Spectrum) -> List[str]:
        if spectrum.proteins:
            return spectrum.proteins
        if not self.peptide_to_proteins:
            return []
        peptide = clean_sequence(spectrum.peptide_sequence or spectrum.modified_sequence)
        return list(self.peptide_to_proteins.get(peptide, ()))

    def accept(self, spectrum: Spectrum) -> bool:
        n_peaks = spectrum.num_peaks if spectrum.num_peaks is not None else len(spectrum.peaks)
        if n_peaks < self.options.min_peaks:
            logger.debug("Skipping spectrum %s: only %d peaks", spectrum.name, n_peaks)
            return False
        if len(spectrum.peaks) == 0:
            logger.warning("Failed to extract peaks for spectrum %s", spectrum.id or spectrum.name)
            return False
        return True

    def write(self, writer, spectrum: Spectrum):
        writer.write_spectrum(spectrum)

    def run(self) -> ConversionStatistics:
        stats = self.statistics
        limit = self.options.limit or 0
        self.prepare_protein_map()
        with self.open_writer() as writer:
            for spectrum in self.iter_spectra():
                if spectrum is None:
                    stats.total += 1
                    stats.skipped += 1
                    continue
                if limit > 0 and stats.written >= limit:
                    logger.info("Reached limit of %d spectra, stopping", limit)
                    break
                stats.total += 1
                if stats.total % PROGRESS_INTERVAL == 0:
                    logger.info("  Processing spectrum %d...", stats.total)
                if not self.accept(spectrum):
                    stats.skipped += 1
                    continue
                spectrum.proteins = self.proteins_for(spectrum)
                stats.record_proteins(spectrum.proteins)
                self.write(writer, spectrum)
                stats.written += 1
        return stats


class BlibToMSPConverter(LibraryConverter):
    direction = BLIB_TO_MSP

    library: BibliospecSpectralLibrary

    def __init__(self, options: ConversionOptions, context: Optional[ConversionContext]=None):
        super().__init__(options, context)
        self.library = BibliospecSpectralLibrary(options.input_path)
        info = self.library.library_info
        if info is not None:
            logger.info("Library: %s", info.library_id)
            logger.info("Created: %s", info.create_time)
            logger.info("Spectra count: %s", info.num_spectra)

    def collect_peptides(self) -> List[str]:
        return self.library.unique_peptides()

    def iter_spectra(self):
        return self.library.read()

    def open_writer(self) -> MSPSpectralLibraryWriter:
        return MSPSpectralLibraryWriter(self.options.resolve_output_path(), reconciler=self.reconciler)

    def run(self) -> ConversionStatistics:
        try:
            return super().run()
        finally:
            self.library.close()


class MSPToBlibConverter(LibraryConverter):
    direction = MSP_TO_BLIB

    library: MSPSpectralLibrary

    def __init__(self, options: ConversionOptions, context: Optional[ConversionContext]=None):
        super().__init__(options, context)
        self.library = MSPSpectralLibrary(options.input_path, reconciler=self.reconciler)

    def collect_peptides(self) -> List[str]:
        return [entry.peptide for entry in self.library.read_entries() if entry.name]

    def iter_spectra(self):
        for entry in self.library.read_entries():
            yield entry_to_spectrum(entry, self.reconciler)

    def open_writer(self) -> BibliospecSpectralLibraryWriter:
        return BibliospecSpectralLibraryWriter(self.options.resolve_output_path())


converters = {
    BLIB_TO_MSP: BlibToMSPConverter,
    MSP_TO_BLIB: MSPToBlibConverter,
}


def convert_library(options: ConversionOptions, context: Optional[ConversionContext]=None) -> ConversionStatistics:
    """Convert ``options.input_path`` to the other format.

    Parameters
    ----------
    options : ConversionOptions
        What to convert and how.
    context : ConversionContext, optional
        Pre-built run state. If omitted, one is created and the modification
        database is loaded from ``options.unimod_path`` or the default search locations.

    Returns
    -------
    ConversionStatistics

    Raises
    ------
    ConversionError
        If the input is missing or the output location is unusable.
    FormatInferenceFailure
        If the input extension is neither ``.blib`` nor ``.msp``.
    """
    direction = options.validate()
    logger.info("Input:  %s", options.input_path)
    logger.info("Output: %s", options.output_path)
    logger.info("Direction: %s", direction)

    if context is None:
        context = ConversionContext(load_modification_database(options.unimod_path))
    context.reset()
    logger.info("Conversion started: %s", timestamp(context.statistics.start_time))
    try:
        converter = converters[direction](options, context)
        stats = converter.run()
        logger.info("Conversion complete!")
        return stats
    finally:
        context.statistics.finish()
        context.log_summary()
