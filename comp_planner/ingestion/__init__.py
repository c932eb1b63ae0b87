"""Proposal ingestion: record models and the delimited-file reader."""

from comp_planner.ingestion.models import Budget, CompensationRecord, ProposalRow
from comp_planner.ingestion.proposal_csv import (
    ProposalCSVParser,
    ProposalParseResult,
    validate_proposal_file,
)

__all__ = [
    "Budget",
    "CompensationRecord",
    "ProposalRow",
    "ProposalCSVParser",
    "ProposalParseResult",
    "validate_proposal_file",
]
