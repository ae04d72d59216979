# inference/model/__init__.py

"""
Model runtime package.
Provides the Model lifecycle and backend implementations.
"""

from .wrapper import LoadState, Model, make_backend
