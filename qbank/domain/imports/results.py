"""
Exceptions raised inside the import pipeline and the tagged results returned
across its public query boundary (progress lookups and rollback).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ImportPipelineError(Exception):
    """Base class for stage-fatal pipeline failures."""


class CSVParseError(ImportPipelineError):
    """The upload could not be turned into a single usable row."""


class TopicResolutionError(ImportPipelineError):
    """A canonical topic could neither be found nor created."""


class ImportErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_ROLLED_BACK = "already_rolled_back"
    INVALID_STATE = "invalid_state"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: ImportErrorKind
    message: str


Result = Union[Ok[T], Err]
