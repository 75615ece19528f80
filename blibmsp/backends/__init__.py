from .base import (
    guess_implementation, SpectralLibraryBackendBase, SpectralLibraryWriterBase, FormatInferenceFailure)
from .bibliospec import BibliospecSpectralLibrary, BibliospecSpectralLibraryWriter, SchemaProfile
from .msp import MSPSpectralLibrary, MSPSpectralLibraryWriter, MSPEntry
