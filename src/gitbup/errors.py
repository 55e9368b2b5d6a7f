class GitBupError(Exception):
    """Base class for bundle and commit graph errors."""


class FormatError(GitBupError, ValueError):
    """A bundle identity component is malformed."""


class DuplicateNodeError(GitBupError):
    """A commit record was inserted twice."""


class BrokenChainError(GitBupError):
    """A bundle references another bundle that is not in the folder."""


class InconsistentChainError(GitBupError):
    """A bundle references a bundle of the wrong tier."""


class ActiveChainError(GitBupError):
    """A bundle that is part of the active tier chain cannot be discarded."""
