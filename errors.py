class PipelineError(Exception):
    """Base class for failures the job runner turns into an error status."""


class ProbeError(PipelineError):
    pass


class AspectRatioError(PipelineError):
    pass


class ResolutionTooLowError(PipelineError):
    pass


class TranscodeError(PipelineError):
    pass


class UploadError(PipelineError):
    pass


class DirectoryError(PipelineError):
    pass
