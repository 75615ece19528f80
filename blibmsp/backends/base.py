import io
import os

from typing import Dict, Iterator, Optional, Type, Union
from pathlib import Path

from blibmsp.errors import FormatInferenceFailure
from blibmsp.spectrum import Spectrum

PROGRESS_INTERVAL = 1000


class SubclassRegisteringMetaclass(type):
    def __new__(mcs, name, parents, attrs):
        new_type = type.__new__(mcs, name, parents, attrs)
        if not hasattr(new_type, "_file_extension_to_implementation"):
            new_type._file_extension_to_implementation = dict()

        file_extension = attrs.get("file_format")
        if file_extension is not None:
            new_type._file_extension_to_implementation[file_extension] = new_type

        format_name = attrs.get("format_name")
        if format_name is not None:
            new_type._file_extension_to_implementation[format_name] = new_type
        else:
            attrs['format_name'] = file_extension
        return new_type


def _filename_of(filename: Union[str, Path, io.IOBase]) -> Optional[str]:
    if hasattr(filename, "name"):
        filename = filename.name
    if not isinstance(filename, (str, os.PathLike)):
        return None
    return os.fspath(filename)


class SpectralLibraryBackendBase(metaclass=SubclassRegisteringMetaclass):
    """A base class for all spectral library readers."""

    file_format = None

    _file_extension_to_implementation: Dict[str, Type['SpectralLibraryBackendBase']] = {}

    @classmethod
    def guess_from_filename(cls, filename: Union[str, Path, io.FileIO]) -> bool:
        """
        Guess if the file is of this type by inspecting the file's name and extension.

        Parameters
        ----------
        filename : str
            The path to the file to inspect.

        Returns
        -------
        bool:
            Whether this is an appropriate backend for that file.
        """
        filename = _filename_of(filename)
        if filename is None or cls.file_format is None:
            return False
        return filename.lower().endswith("." + cls.file_format)

    @classmethod
    def guess_implementation(cls, filename, **kwargs) -> 'SpectralLibraryBackendBase':
        """
        Guess the backend implementation to use with this file and open it.

        Parameters
        ----------
        filename : str
            The path to the spectral library file to open.
        **kwargs
            Passed to implementation

        Returns
        -------
        SpectralLibraryBackendBase
        """
        return cls.type_for_filename(filename)(filename, **kwargs)

    @classmethod
    def type_for_filename(cls, filename) -> Type['SpectralLibraryBackendBase']:
        for impl in set(cls._file_extension_to_implementation.values()):
            if impl.guess_from_filename(filename):
                return impl
        raise FormatInferenceFailure(
            f"Could not guess backend implementation for {filename}, use .blib or .msp")

    def __init__(self, filename):
        self.filename = filename

    def read(self) -> Iterator[Spectrum]:
        raise NotImplementedError()

    def __iter__(self) -> Iterator[Spectrum]:
        return self.read()

    def __len__(self):
        raise NotImplementedError()

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


guess_implementation = SpectralLibraryBackendBase.guess_implementation


class SpectralLibraryWriterBase(metaclass=SubclassRegisteringMetaclass):
    """A base class for all spectral library writers."""

    file_format = None

    _file_extension_to_implementation: Dict[str, Type['SpectralLibraryWriterBase']] = {}

    written: int

    def __init__(self, filename, **kwargs):
        self.filename = filename
        self.written = 0

    def _coerce_handle(self, filename_or_stream):
        if hasattr(filename_or_stream, 'write'):
            self.handle = filename_or_stream
        else:
            self.handle = open(filename_or_stream, 'wt', encoding='utf8')

    def write_spectrum(self, spectrum: Spectrum):
        raise NotImplementedError()

    def __enter__(self) -> 'SpectralLibraryWriterBase':
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        pass
