import logging

import click

from blibmsp import __version__
from blibmsp.convert import ConversionOptions, convert_library
from blibmsp.errors import BlibMSPError
from blibmsp.backends.base import SpectralLibraryBackendBase
from blibmsp.backends.bibliospec import BibliospecSpectralLibrary
from blibmsp.proteins.mapping import STRATEGIES

from blibmsp.tools.peptides import (
    default_filtered_path, default_peptide_list_path, extract_peptides,
    filter_msp as filter_msp_entries, read_peptide_list, write_peptide_list)
from blibmsp.tools.utils import configure_logging

CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'])

logger = logging.getLogger(__name__)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, prog_name="blibmsp")
def main():
    """Convert Bibliospec spectral libraries to and from NIST MSP text, with protein mapping."""
    configure_logging()


@main.command("convert", short_help="Convert a .blib library to .msp or an .msp library to .blib")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("-o", "--output", "output_path", type=click.Path(dir_okay=False),
              help="The output file. Defaults to the input path with the other extension.")
@click.option("-u", "--unimod", "unimod_path", type=click.Path(exists=True, dir_okay=False),
              help="The Unimod XML file to resolve modification names and masses with.")
@click.option("-f", "--fasta-dir", type=click.Path(file_okay=False),
              help="A directory of FASTA files to map peptides to protein accessions with.")
@click.option("--min-peaks", type=click.IntRange(min=0), default=1, show_default=True,
              help="Skip spectra with fewer peaks than this.")
@click.option("--limit", type=click.IntRange(min=0), default=0, show_default=True,
              help="Stop after writing this many spectra. 0 means no limit.")
@click.option("-j", "--workers", "n_workers", type=click.IntRange(min=1),
              help="The number of processes to search FASTA files with.")
@click.option("--strategy", type=click.Choice(STRATEGIES), default=STRATEGIES[0], show_default=True,
              help="The peptide search algorithm.")
@click.option("--no-cache", is_flag=True, help="Do not read or write the peptide to protein cache.")
@click.option("-v", "--verbose", is_flag=True, help="Log debugging messages.")
def convert(input_path, output_path=None, unimod_path=None, fasta_dir=None, min_peaks=1, limit=0,
            n_workers=None, strategy=None, no_cache=False, verbose=False):
    """
    Convert a spectral library between the Bibliospec SQLite format and the NIST MSP
    text format. The direction is taken from the extension of `INPUT`.
    """
    if verbose:
        configure_logging(verbose=True)
    options = ConversionOptions(
        input_path=input_path,
        output_path=output_path,
        min_peaks=min_peaks,
        limit=limit,
        fasta_dir=fasta_dir,
        unimod_path=unimod_path,
        n_workers=n_workers,
        verbose=verbose,
        use_cache=not no_cache,
        strategy=strategy or STRATEGIES[0],
    )
    try:
        convert_library(options)
    except BlibMSPError as err:
        click.echo(f"{err}", err=True)
        raise click.Abort()


@main.command("describe", short_help="Produce a minimal textual description of a spectral library")
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def describe(path):
    """Produce a minimal textual description of a spectral library."""
    click.echo("Describing \"%s\"" % (path,))
    try:
        library = SpectralLibraryBackendBase.guess_implementation(path)
    except BlibMSPError as err:
        click.echo(f"{err}", err=True)
        raise click.Abort()
    with library:
        click.echo(f"Format: {library.format_name}")
        if isinstance(library, BibliospecSpectralLibrary):
            info = library.library_info
            if info is not None:
                click.echo(f"Library: {info.library_id}")
                click.echo(f"Created: {info.create_time}")
                click.echo(f"Version: {info.version}")
                click.echo(f"Declared Spectrum Count: {info.num_spectra}")
            score_types = sorted(library.score_types.items())
            if score_types:
                click.echo("Score Types: " + ", ".join(f"{k}={v}" for k, v in score_types))
        click.echo(f"Spectrum Count: {len(library)}")


@main.command("extract-peptides", short_help="Write the unique peptide sequences of a library to a text file")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("-o", "--output", "output_path", type=click.Path(dir_okay=False),
              help="The output file. Defaults to <INPUT stem>_peptides.txt.")
def extract_peptides_command(input_path, output_path=None):
    """Write the sorted, unique, unmodified peptide sequences of a .blib or .msp library, one per line."""
    if not output_path:
        output_path = default_peptide_list_path(input_path)
    try:
        peptides = extract_peptides(input_path)
    except BlibMSPError as err:
        click.echo(f"{err}", err=True)
        raise click.Abort()
    count = write_peptide_list(peptides, output_path)
    logger.info("Wrote %d unique peptides to %s", count, output_path)


@main.command("filter-msp", short_help="Keep only the MSP entries for the listed peptides")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("-p", "--peptides", "peptides_path", type=click.Path(exists=True, dir_okay=False), required=True,
              help="A text file with one peptide sequence per line.")
@click.option("-o", "--output", "output_path", type=click.Path(dir_okay=False),
              help="The output file. Defaults to <INPUT stem>_filtered.msp.")
def filter_msp(input_path, peptides_path, output_path=None):
    """Copy the entries of an MSP library whose peptide sequence appears in the peptide list."""
    if not output_path:
        output_path = default_filtered_path(input_path)
    peptides = read_peptide_list(peptides_path)
    logger.info("Loaded %d peptides from %s", len(peptides), peptides_path)
    filter_msp_entries(input_path, peptides, output_path)
    logger.info("Output written to: %s", output_path)


if __name__ == "__main__":
    main()
