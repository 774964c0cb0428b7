from __future__ import annotations

# Error kinds. Only INFRASTRUCTURE is worth retrying with the same input.
MALFORMED = "malformed"
VALIDITY = "validity"
CONFLICT = "conflict"
UNAVAILABLE = "unavailable"
FORBIDDEN = "forbidden"
INFRASTRUCTURE = "infrastructure"


class NookError(Exception):
    """Base for every rejection the service reports to a caller.

    Subclasses pin a stable ``code`` the client can switch on, the HTTP status
    it maps to, and a default user-facing message.
    """

    code = "error"
    status_code = 400
    kind = MALFORMED
    message = "Something feels off. Please refresh and try again 🌙"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"success": False, "message": self.message, "error": self.code}


# --- token shape / crypto / time validity

class MalformedToken(NookError):
    code = "malformed_token"
    message = "That QR didn't look right. Please scan the latest one 🌿"

class InvalidSignature(NookError):
    code = "invalid_signature"
    kind = VALIDITY
    message = "That QR didn't look right. Please scan the latest one 🌿"

class TokenExpired(NookError):
    code = "token_expired"
    kind = VALIDITY
    message = "That QR just refreshed. Please scan the new one 🌙"

class UnknownScanPhase(NookError):
    code = "unknown_phase"
    message = "Something feels off. Please refresh and try again 🌙"

class EntryWindowClosed(NookError):
    code = "entry_window_closed"
    kind = VALIDITY
    message = "The scan window isn't open yet. Check back closer to the meetup time 🌙"

class ExitWindowClosed(NookError):
    code = "exit_window_closed"
    kind = VALIDITY
    message = "The exit window has closed for this Nook 🌙"


# --- meetup availability

class MeetupNotFound(NookError):
    code = "meetup_not_found"
    status_code = 404
    kind = UNAVAILABLE
    message = "Nook not found 🌙"

class MeetupCancelled(NookError):
    code = "meetup_cancelled"
    kind = UNAVAILABLE
    message = "This Nook was cancelled 🌙"


# --- membership / attendance state

class NotParticipant(NookError):
    code = "not_a_participant"
    status_code = 403
    kind = FORBIDDEN
    message = "You're not listed as a participant for this Nook 🌿"

class AlreadyCheckedIn(NookError):
    code = "already_checked_in"
    kind = CONFLICT
    message = "You're already checked in ✨"

class AlreadyCheckedOut(NookError):
    code = "already_checked_out"
    kind = CONFLICT
    message = "You've already completed the exit scan 🌙"

class EntryRequired(NookError):
    code = "entry_required"
    kind = CONFLICT
    message = "Scan the entry QR first, then exit 🌿"


# --- issuer

class NotHost(NookError):
    code = "not_host"
    status_code = 403
    kind = FORBIDDEN
    message = "Only the host can show the attendance QR 🌿"

class AnchorNotActive(NookError):
    code = "anchor_not_active"
    kind = VALIDITY
    message = "Host mode opens 10 minutes before the Nook starts 🌙"

class BetweenScanWindows(NookError):
    code = "between_scan_windows"
    kind = VALIDITY
    message = "No scan window is open right now. The exit scan opens 15 minutes before the end 🌙"

class MarkingWindowClosed(NookError):
    code = "marking_window_closed"
    kind = VALIDITY
    message = "Attendance can only be marked during the active meetup (start until scheduled end time)."


# --- commitment

class MembershipNotFound(NookError):
    code = "membership_not_found"
    status_code = 404
    kind = UNAVAILABLE
    message = "You're not part of this Nook 🌿"

class TransitionNotAllowed(NookError):
    code = "transition_not_allowed"
    kind = CONFLICT
    message = "That update isn't available right now 🌙"

class AlreadyCancelled(NookError):
    code = "already_cancelled"
    kind = CONFLICT
    message = "This Nook is already cancelled 🌙"

class ArrivalsNotVisible(NookError):
    code = "arrivals_not_visible"
    status_code = 403
    kind = FORBIDDEN
    message = "Arrivals are only shared with participants around the start time 🌿"


# --- infrastructure

class InternalError(NookError):
    code = "internal"
    status_code = 500
    kind = INFRASTRUCTURE
    message = "Something went quiet on our end. Try again in a moment 🌿"

class SigningKeyMissing(InternalError):
    code = "internal"

class CommitmentWriteFailed(InternalError):
    code = "commitment_write_failed"
    message = "We couldn't save your update. Please try again 🌿"
