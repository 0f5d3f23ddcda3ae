"""
Workflows module - Pipeline orchestration for digest generation.
"""
from workflows.digest_pipeline import DigestPipeline, EnrichSummary, FetchSummary

__all__ = [
    "DigestPipeline",
    "EnrichSummary",
    "FetchSummary",
]
