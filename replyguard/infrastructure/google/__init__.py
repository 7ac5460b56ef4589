from .client import GoogleApiError, GoogleBusinessClient
from .publisher import GoogleBusinessPublisher, PublishError, PublishedPost, Publisher, ReplyAlreadyExistsError
from .review_source import GoogleReviewSource, ReviewSource, ReviewSourceError

__all__ = [
    "GoogleApiError",
    "GoogleBusinessClient",
    "GoogleBusinessPublisher",
    "GoogleReviewSource",
    "PublishError",
    "PublishedPost",
    "Publisher",
    "ReplyAlreadyExistsError",
    "ReviewSource",
    "ReviewSourceError",
]
