# --- Service Layer Exception Classes ---

class ServiceError(Exception):
    """General exception class for the service layer."""
    pass

class NotFoundError(ServiceError):
    """A class, session, schedule, journal or student is missing or not owned by the caller."""
    pass

class TimingError(ServiceError):
    """The request is made at the wrong time: wrong day, outside the window, expired, not today."""
    pass

class EligibilityError(ServiceError):
    """The request is not allowed in the current school context (weekend, inactive rotation, not enrolled)."""
    pass

class ConflictError(ServiceError):
    """A record that must be unique already exists."""
    pass

class AlreadyRecordedError(ConflictError):
    """The student already has an attendance record for this session."""
    pass

class InvalidRequestError(ServiceError):
    """The request itself is malformed, e.g. a batch that lists a student twice."""
    pass
