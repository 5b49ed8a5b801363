"""Autoincrement sequences: current values and per-request key prediction."""

from sequence.tracker import SequencePredictor, SequenceTracker
