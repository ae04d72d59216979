# inference/__init__.py

"""
Model loading, backend dispatch and asynchronous execution.
"""

from .executor import InferenceExecutor, InferenceResult, OriginQueue, Submission
from .model import LoadState, Model, make_backend
from .modelType import ModelType
