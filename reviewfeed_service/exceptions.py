"""
Exception types for Review Feed Service
"""


class ReviewFeedError(Exception):
    """Base error for the review feed pipeline"""


class StoreError(ReviewFeedError):
    """Document store failure"""


class StoreUnavailableError(StoreError):
    """Transport, permission, quota or timeout failure on a store read.

    Recoverable: the pipeline treats it as zero results.
    """


class StoreAuthError(StoreError):
    """Authentication or session failure against the store.

    Unrecoverable: propagated to the caller as a surfaced error state.
    """


class InvalidCursorError(ReviewFeedError):
    """Pagination cursor that was not produced by this service"""
