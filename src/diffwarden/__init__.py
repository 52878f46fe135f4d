"""
diffwarden - retrieval-augmented review of pull request diffs.

Indexes repository branches into a vector store, retrieves related code for
each changed file, asks a generative model for findings and posts them as
line comments.
"""

from diffwarden.config import ReviewerConfig
from diffwarden.errors import DiffWardenError
from diffwarden.review.models import ReviewSummary, ReviewTicket
from diffwarden.review.pipeline import ReviewPipeline

__version__ = "0.1.0"

__all__ = [
    "DiffWardenError",
    "ReviewPipeline",
    "ReviewSummary",
    "ReviewTicket",
    "ReviewerConfig",
    "__version__",
]
