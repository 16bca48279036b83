"""
Offline learner for self-play agents.

Tails target streams written by self-play and reanalyze workers, samples
training batches from bounded replay buffers, and checkpoints the model.
"""

__version__ = "0.1.0"
