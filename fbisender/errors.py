class FbiSenderError(Exception):
    """Base class for every failure the sender reports to the operator."""

    stage = "transfer"

    def __str__(self) -> str:
        msg = super().__str__()
        cause = self.__cause__
        if cause is not None and str(cause) and str(cause) not in msg:
            msg = f"{msg}: {cause}"
        return f"{self.stage}: {msg}"


class ConfigError(FbiSenderError):
    stage = "loading configuration"


class InputError(FbiSenderError):
    stage = "preparing file list"


class UnsupportedExtensionError(InputError):
    pass


class NoFilesError(InputError):
    pass


class DirectoryError(InputError):
    stage = "changing directory"


class ServerError(FbiSenderError):
    stage = "serving files"


class NotifyError(FbiSenderError):
    stage = "sending payload"


class WatchError(FbiSenderError):
    """Read failure while waiting for the device. Logged, never fatal."""

    stage = "waiting for installation"
