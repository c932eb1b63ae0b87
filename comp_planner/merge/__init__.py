"""Proposal merging."""

from comp_planner.merge.engine import CompensationMergeEngine, MergeResult, UnmatchedProposal, import_summary

__all__ = ["CompensationMergeEngine", "MergeResult", "UnmatchedProposal", "import_summary"]
