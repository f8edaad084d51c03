from __future__ import annotations


class CrossrunError(Exception):
    """Base class for errors raised by the hub."""


class InvalidBatch(CrossrunError, ValueError):
    """A batch registration carried no test paths."""


class UnknownBatch(CrossrunError, KeyError):
    """No browser has taken this batch yet, or it was never registered."""

    def __init__(self, batch_id: str) -> None:
        super().__init__(batch_id)
        self.batch_id = batch_id

    def __str__(self) -> str:
        return (
            "Nothing is listening to this batch. "
            "At least one browser should be pointed at the crossrun server."
        )


class PathOutsideRoot(CrossrunError, PermissionError):
    """A project file request resolved outside the serving root."""

    def __init__(self, path: str, root: str) -> None:
        super().__init__(path)
        self.path = path
        self.root = root

    def __str__(self) -> str:
        return f"Rejected {self.path}, run in the directory to serve or specify --path."
