"""Single source of the library version (sent as ``$lib_version``)."""

LIBRARY_NAME = "hogflags"
__version__ = "0.1.0"
