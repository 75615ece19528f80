"""Convert BiblioSpec spectral libraries to and from NIST MSP text libraries."""

__version__ = "0.1.0"

from blibmsp.errors import BlibMSPError, ConversionError, FormatInferenceFailure, LibraryReadError

from blibmsp.peak_list import PeakList
from blibmsp.spectrum import Spectrum, Modification, LibraryInfo
from blibmsp.modifications import ModificationDatabase, load_modification_database
from blibmsp.context import ConversionContext

from blibmsp.backends import (
    BibliospecSpectralLibrary, BibliospecSpectralLibraryWriter,
    MSPSpectralLibrary, MSPSpectralLibraryWriter)

from blibmsp.convert import ConversionOptions, convert_library
