"""Error taxonomy shared by the appointment store, the scheduling service and the routes."""


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(SchedulingError):
    def __init__(self, message: str = 'Unauthorized.'):
        super().__init__(message)


class ValidationError(SchedulingError):
    """Missing or malformed request fields.

    ``errors`` holds one ``{'field': ..., 'message': ...}`` entry per problem.
    """

    def __init__(self, message: str = 'Invalid appointment details.', errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ConflictError(SchedulingError):
    def __init__(
        self,
        message: str = 'Scheduling conflict detected. Please choose another time slot.',
        conflicting_ids: list[str] | None = None,
    ):
        super().__init__(message)
        self.conflicting_ids = conflicting_ids or []


class NotFoundError(SchedulingError):
    def __init__(self, message: str = 'Appointment not found.'):
        super().__init__(message)


class StorageError(SchedulingError):
    def __init__(self, message: str = 'Appointment storage unavailable. Please retry shortly.'):
        super().__init__(message)


class StaleScheduleError(StorageError):
    """Raised by a conditional insert when the patient's schedule changed since it was read."""

    def __init__(self, patient_id: str, expected_version: int):
        super().__init__(f'Schedule for patient {patient_id} changed since version {expected_version}.')
        self.patient_id = patient_id
        self.expected_version = expected_version
