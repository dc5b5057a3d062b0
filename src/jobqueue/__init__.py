"""
Job Queue

Background job processing for the proposal platform: transcription,
AI proposal generation and analysis run off the request path through
a provider-agnostic queue backed by AWS SQS or an in-process fallback.
"""

__version__ = "0.1.0"
