"""
dynamite.training — Training Engine
===================================

    trainer.py   StaticTrainer: SGD on the whole-sequence classifier
    sync.py      Copy parameter values between formulations by path
    driver.py    train_sequence_classifier: the comparison loop

Information Flow:
    minibatch source -> adapter -> unrolled criterion (evaluated, timed)
                                -> StaticTrainer (trained, timed)
    StaticTrainer parameters --sync_parameters--> unrolled model
"""

from dynamite.training.trainer import StaticTrainer
from dynamite.training.sync import DEFAULT_PARAMETER_MAPPING, sync_parameters
from dynamite.training.driver import evaluate_criterion, train_sequence_classifier
