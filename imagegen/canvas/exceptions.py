class CanvasError(Exception):
    """Base exception for canvas document errors."""


class CanvasFormatError(CanvasError):
    """Raised when canvas JSON cannot be parsed into a document."""


class NodeNotFoundError(CanvasError):
    """Raised when an operation references a node id that is not in the document."""
