"""
dynamite.evaluation — Measurements
==================================
Timers, memory tracking and the per-example classification error used
by the training driver.
"""

from dynamite.evaluation.metrics import MemoryTracker, Timer, classification_error
