"""Error taxonomy for the diabetes risk pipeline."""


class PipelineError(Exception):
    """Base error; ``stage`` names the pipeline step that failed."""

    stage = "pipeline"

    def __init__(self, message: str, stage: str = None):
        if stage is not None:
            self.stage = stage
        super().__init__(f"[{self.stage}] {message}")


class MalformedInputError(PipelineError):
    """Input file is missing columns or holds values outside the expected encodings."""

    stage = "load"


class EncodingError(PipelineError):
    """A categorical column cannot be expanded to a full-rank dummy set."""

    stage = "transform"


class InvalidRatioError(PipelineError):
    stage = "split"


class InvalidMetricError(PipelineError):
    stage = "evaluate"


class ConvergenceError(PipelineError):
    """The optimizer behind a model fit did not converge."""

    stage = "train"
