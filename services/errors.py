"""Failure taxonomy for the quiz generation pipeline.

The retry controller recovers ``RateLimited`` and ``MalformedResponse``
locally. ``TransportError`` is handed to the batch driver, which resumes the
framework at the next level. ``DataError`` skips the affected unit.
"""


class QuizPipelineError(Exception):
    """Base class for classified pipeline failures"""


class RateLimited(QuizPipelineError):
    """The generation API signalled quota exhaustion or HTTP 429"""


class MalformedResponse(QuizPipelineError):
    """The generation API answered, but no usable JSON payload was found"""


class QuestionValidationError(MalformedResponse):
    """A question in the payload does not have the required shape"""


class TransportError(QuizPipelineError):
    """Network, authentication or store failure"""


class DataError(QuizPipelineError):
    """A framework or quiz record required by the pipeline is missing"""
