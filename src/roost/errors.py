from __future__ import annotations


class RoostError(Exception):
    pass


class BuilderError(RoostError):
    pass


class UpdateDecodeError(RoostError):
    pass
