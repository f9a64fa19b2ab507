from typing import Optional


class FakeFiles:
    """Loader serving documents from memory and counting the reads."""

    def __init__(self, files: Optional[dict[str, str]] = None) -> None:
        self.files = files if files is not None else {}
        self.reads: dict[str, int] = {}

    def __call__(self, path: str) -> bytes:
        self.reads[path] = self.reads.get(path, 0) + 1
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path].encode("utf-8")
