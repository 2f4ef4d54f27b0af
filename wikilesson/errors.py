from __future__ import annotations


class WikiLessonError(Exception):
    """Base class for failures of a pipeline stage."""


class SearchError(WikiLessonError):
    pass


class SectionLoadError(WikiLessonError):
    pass


class ContentFetchError(WikiLessonError):
    """A section's content could not be fetched; aborts the whole lesson batch."""


class GenerationError(WikiLessonError):
    """The structured-generation backend failed or returned something that is not a lesson."""


class TutorError(WikiLessonError):
    pass
