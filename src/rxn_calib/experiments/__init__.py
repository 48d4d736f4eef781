"""Experiment plugins."""

from rxn_calib.experiments.base import SimulatedExperiment

__all__ = ["SimulatedExperiment"]
