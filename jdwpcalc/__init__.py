"""jdwpcalc - arithmetic evaluated by a remote JVM over the debug wire protocol."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jdwpcalc")
except PackageNotFoundError:
    __version__ = "(local)"
