"""
Addon Errors
Exception types raised by the addon reconciliation engine
"""


class AddonManagerError(Exception):
    """Base class for every error the engine raises on purpose."""


class PathViolation(AddonManagerError):
    """A resolved path escapes the installation root. Never retried."""

    def __init__(self, path, root):
        self.path = path
        self.root = root
        super().__init__(f'Path "{path}" is outside of "{root}"')


class NetworkFailure(AddonManagerError):
    """A download or API call failed."""


class FilesystemFailure(AddonManagerError):
    """A delete or write on disk failed."""

    def __init__(self, message, path=None):
        self.path = path
        super().__init__(message)


class MalformedCatalogData(AddonManagerError):
    """A catalog entry is missing its main folder or folder list."""

    def __init__(self, entry_id, reason):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Catalog entry {entry_id}: {reason}")
