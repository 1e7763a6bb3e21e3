class SchedulingError(Exception):
    """Base class for errors raised by the scheduling core."""


class AppointmentNotFoundError(SchedulingError):
    def __init__(self, appointment_id: int):
        super().__init__(f'Appointment {appointment_id} not found.')
        self.appointment_id = appointment_id


class InvalidAvailabilityError(SchedulingError):
    pass


class InvalidInstantError(SchedulingError, ValueError):
    pass
