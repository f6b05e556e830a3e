"""
errors.py — Error taxonomy for the plate merging pipeline.

Structural problems (missing files, malformed tables, shape mismatches) and
alignment invariant violations are raised as PipelineError subclasses. Every
error carries the plate and file it concerns so the CLI can report them.

Unresolved barcodes/genes and unmatched annotation keys are NOT errors; they
are counted and logged by the resolvers.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all fatal pipeline errors.

    Args:
        message: Human-readable description.
        plate: Plate ID the error concerns, if any.
        path: File the error concerns, if any.
    """

    def __init__(self, message: str, plate: Optional[str] = None, path=None):
        super().__init__(message)
        self.message = message
        self.plate = plate
        self.path = str(path) if path is not None else None

    def __str__(self):
        context = []
        if self.plate is not None:
            context.append(f"plate={self.plate}")
        if self.path is not None:
            context.append(f"file={self.path}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"

    def __reduce__(self):
        # Keep plate/path when crossing a process boundary
        return (self.__class__, (self.message, self.plate, self.path))


class MissingFileError(PipelineError, FileNotFoundError):
    """A required input file (matrix, gene table, barcode table) is absent."""


class MalformedTableError(PipelineError, ValueError):
    """A delimited table lacks required columns or cannot be parsed."""


class MalformedIndexError(MalformedTableError):
    """The index table lacks the 'indexstring' or 'well' column."""


class MalformedMatrixError(PipelineError, ValueError):
    """A count matrix cannot be read or does not hold non-negative integer counts."""


class ShapeMismatchError(PipelineError, ValueError):
    """An identifier table does not describe the matrix it belongs to."""


class DuplicateKeyError(PipelineError, ValueError):
    """A lookup key or a matrix label occurs more than once."""


class ConfigError(PipelineError, ValueError):
    """Invalid or incomplete pipeline configuration."""


class AlignmentError(PipelineError, RuntimeError):
    """Internal invariant violation in the matrix aligner (a logic bug)."""


class EmptyPlateSetError(AlignmentError):
    """No plates were supplied to the aligner."""


class InconsistentRowOrderError(AlignmentError):
    """Plate matrices disagree on row labels after sorting."""
