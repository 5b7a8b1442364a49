class EventifyError(Exception):
    """Base error carrying the HTTP status the routers translate it to"""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)

    @property
    def reason(self):
        return type(self).__name__

    @property
    def detail(self):
        return {"reason": self.reason, "message": str(self)}


class EventNotFound(EventifyError):
    status_code = 404
    default_message = "Event not found"


class RsvpRejected(EventifyError):
    """An RSVP or cancellation the capacity guard did not apply"""

    status_code = 400


class AlreadyRegistered(RsvpRejected):
    default_message = "You have already RSVPed to this event"


class AtCapacity(RsvpRejected):
    default_message = "Event is at full capacity"


class NotRegistered(RsvpRejected):
    default_message = "You are not RSVPed to this event"


class TransientConflict(RsvpRejected):
    status_code = 500
    default_message = "Unable to RSVP. Please try again."


class CapacityFloorViolation(EventifyError):
    status_code = 400

    def __init__(self, attendee_count):
        super().__init__(
            f"Cannot reduce capacity below current attendee count ({attendee_count})"
        )
        self.attendee_count = attendee_count


class NotEventOwner(EventifyError):
    status_code = 403
    default_message = "Not authorized to modify this event"


class VersionConflict(EventifyError):
    status_code = 409
    default_message = (
        "Event was modified by another user. Please refresh and try again."
    )


class StoreUnavailable(EventifyError):
    status_code = 503
    default_message = "Event store is unavailable. Please try again."
