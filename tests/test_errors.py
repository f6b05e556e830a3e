import pickle

from platemerge.errors import (
    AlignmentError,
    EmptyPlateSetError,
    MalformedIndexError,
    MalformedTableError,
    MissingFileError,
    PipelineError,
)


def test_str_includes_plate_and_file():
    e = MissingFileError("Required plate file is missing", plate="P1", path="/d/P1/barcodes.txt")
    assert str(e) == "Required plate file is missing [plate=P1, file=/d/P1/barcodes.txt]"
    assert str(PipelineError("plain")) == "plain"


def test_hierarchy():
    assert issubclass(MalformedIndexError, MalformedTableError)
    assert issubclass(MissingFileError, FileNotFoundError)
    assert issubclass(EmptyPlateSetError, AlignmentError)


def test_pickle_keeps_context():
    e = MissingFileError("gone", plate="P2", path="x.txt")
    restored = pickle.loads(pickle.dumps(e))
    assert type(restored) is MissingFileError
    assert restored.plate == "P2"
    assert restored.path == "x.txt"
