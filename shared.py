from collections import namedtuple
from enum import Enum


class ConversionError(Exception):
    """Base class for per-file conversion failures."""


class InspectionInconclusive(ConversionError):
    """The header could not be read at the expected offset."""


class DecodeError(ConversionError):
    pass


class QuantizationError(ConversionError):
    pass


class EncodeOrWriteError(ConversionError):
    pass


class Status(Enum):
    SKIPPED = "skipped"
    CONVERTED = "converted"
    FAILED = "failed"


# error is the exception that caused a FAILED outcome, None otherwise
ConversionOutcome = namedtuple("ConversionOutcome", ["path", "status", "error"])

# Built once from the command line and passed down, never stored globally.
# max_degree_of_parallelism <= 0 means sequential.
ConvertOptions = namedtuple(
    "ConvertOptions",
    ["file", "directory", "check_color_depth", "max_degree_of_parallelism", "colors"],
    defaults=[None, None, True, 0, 256],
)


def summarize(outcomes) -> dict[Status, int]:
    """Count outcomes per status."""
    counts = {status: 0 for status in Status}
    for outcome in outcomes:
        counts[outcome.status] += 1
    return counts
