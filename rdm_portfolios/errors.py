"""Exceptions and warnings raised by the study."""


class StudyError(Exception):
    """Base class for study failures."""


class MissingInputError(StudyError):
    """An upstream input is absent or empty. Fatal: the run aborts."""


class AlignmentError(StudyError):
    """Two period-keyed series cannot be joined (missing or duplicated periods)."""


class DataQualityWarning(UserWarning):
    """A join matched more rows than expected and was collapsed deterministically."""
