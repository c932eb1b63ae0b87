"""Shared helpers for :mod:`comp_planner`."""
