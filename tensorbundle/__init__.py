import logging

# Add NullHandler to prevent logs when used as library
logging.getLogger(__name__).addHandler(logging.NullHandler())

"""
Resolve packaged model bundles, run them off the calling thread and rank
their classification outputs.
"""

__version__ = "0.1.0"

from .bundle import (
    BundleDescriptor,
    BundleRegistry,
    BundleResolver,
    DirectoryRegistry,
    InMemoryRegistry,
    LayerDescription,
    ModelBundle,
)
from .errors import (
    BusyError,
    InferenceError,
    InvalidArgumentError,
    InvalidStateError,
    LoadError,
    MalformedBundleError,
    NotFoundError,
    NotLoadedError,
    RunError,
    ShapeMismatchError,
    TensorBundleError,
)
from .inference import (
    InferenceExecutor,
    InferenceResult,
    LoadState,
    Model,
    ModelType,
    OriginQueue,
    Submission,
)
from .pipeline import ClassificationPipeline
from .ranking import RankedEntry, RankingReport, rank, rank_report, smooth_classification
from .utils import get_logger  # Export for users
from .utils import setup_logging  # Export for users who want to enable logging
from .utils import load_image
