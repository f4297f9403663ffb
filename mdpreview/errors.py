class MdPreviewError(Exception):
    """Base class for every error raised by mdpreview."""


class ConfigError(MdPreviewError):
    """Bad command-line input; fatal at startup."""


class WatchSubscriptionError(MdPreviewError):
    """The filesystem watch could not be established; fatal at startup."""


class FileReadError(MdPreviewError):
    """A markdown source is missing or could not be decoded."""

    def __init__(self, path, cause):
        self.path = str(path)
        self.cause = cause
        super().__init__(f"Could not read {self.path}: {cause}")


class RenderError(MdPreviewError):
    """The renderer rejected its input."""


class ChannelSendError(MdPreviewError):
    """A viewer connection could not be written to."""
