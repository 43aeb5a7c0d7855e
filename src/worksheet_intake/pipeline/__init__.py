"""Build pipeline that turns a queued worksheet archive into a published site."""

from worksheet_intake.pipeline.connectivity import (
    ConnectivityError,
    ConnectivityProbe,
    DisabledConnectivityProbe,
    ResponsesApiProbe,
    build_connectivity_probe,
)
from worksheet_intake.pipeline.supervisor import ProcessResult, ProcessRunError, ProcessSupervisor
from worksheet_intake.pipeline.verification import VerificationError, VerificationRules
from worksheet_intake.pipeline.worker import (
    BatchRunReport,
    PipelineStep,
    PipelineStepError,
    PipelineWorker,
    WorksheetRunResult,
)

__all__ = [
    "BatchRunReport",
    "ConnectivityError",
    "ConnectivityProbe",
    "DisabledConnectivityProbe",
    "PipelineStep",
    "PipelineStepError",
    "PipelineWorker",
    "ProcessResult",
    "ProcessRunError",
    "ProcessSupervisor",
    "ResponsesApiProbe",
    "VerificationError",
    "VerificationRules",
    "WorksheetRunResult",
    "build_connectivity_probe",
]
