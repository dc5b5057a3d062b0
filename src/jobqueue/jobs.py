"""
Job Names and Payloads

Central definition of the queue names used by the platform, so the code
that enqueues a job and the worker that processes it cannot drift apart.

When adding a new job type:
1. Add the constant here
2. Register a processor for it on the QueueWorker
3. Add it to the matching *_JOB_NAMES tuple
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Standard proposal generation job (manual and transcription-based)
PROPOSAL_GENERATE_JOB = "generate"

# Deprecated: use PROPOSAL_GENERATE_JOB. Kept so already-queued jobs still drain.
PROPOSAL_GENERATE_FROM_TRANSCRIPTION_JOB = "generate-proposal-from-transcription"

TRANSCRIPTION_JOB = "transcription"
ANALYSIS_JOB = "analysis"

PROPOSAL_JOB_NAMES = (
    PROPOSAL_GENERATE_JOB,
    PROPOSAL_GENERATE_FROM_TRANSCRIPTION_JOB,
)

ALL_JOB_NAMES = PROPOSAL_JOB_NAMES + (TRANSCRIPTION_JOB, ANALYSIS_JOB)


def is_valid_proposal_job_name(name: str) -> bool:
    """Check that a job name is handled by the proposal worker."""
    return name in PROPOSAL_JOB_NAMES


class GenerateProposalJobData(BaseModel):
    """
    Payload for proposal generation jobs.

    Serialized with camelCase keys, which is what producers put on the wire.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    proposal_id: str
    tenant_id: str
    sections: list[str] = Field(default_factory=list)
    template_id: Optional[str] = None
    custom_instructions: Optional[str] = None

    def to_payload(self) -> dict:
        """JSON-ready payload for QueueProvider.add()."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TranscriptionJobData(BaseModel):
    """Payload for transcription jobs."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    transcription_id: str
    tenant_id: str
    s3_key: str
    language: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
