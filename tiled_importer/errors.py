from typing import Optional


class TiledImportError(Exception):
    def __init__(self, message: str, context: Optional[str] = None) -> None:
        super().__init__(f"{message} ({context})" if context else message)
        self.message = message
        self.context = context


class MalformedDocument(TiledImportError):
    pass


class TilesetLoadFailed(TiledImportError):
    pass


class LayerDecodeFailed(TiledImportError):
    def __init__(self, stage: str, message: str, context: Optional[str] = None) -> None:
        super().__init__(f"{stage}: {message}", context)
        self.stage = stage


class UnresolvedTileReference(TiledImportError):
    def __init__(self, gid: int, message: str, context: Optional[str] = None) -> None:
        super().__init__(message, context)
        self.gid = gid


class NestedTemplateUnsupported(TiledImportError):
    pass


class UnsupportedOrientation(TiledImportError):
    def __init__(self, orientation: str, context: Optional[str] = None) -> None:
        super().__init__(f"Orientation '{orientation}' is not supported", context)
        self.orientation = orientation


class ImportFailed(TiledImportError):
    """Whole-import failure. ``cause`` is the error that stopped the import."""

    def __init__(self, cause: TiledImportError, context: Optional[str] = None) -> None:
        super().__init__(f"Import failed: {type(cause).__name__}: {cause}", context)
        self.cause = cause

    @property
    def kind(self) -> str:
        return type(self.cause).__name__
