class AttendanceError(Exception):
    pass


class InvalidRequest(AttendanceError):
    pass


class InvalidCoordinate(AttendanceError):
    pass


class StorageError(AttendanceError):
    pass


class NotificationError(AttendanceError):
    pass


class NotFound(AttendanceError):
    pass
