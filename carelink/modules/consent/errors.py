from carelink.core.errors import DomainError
from carelink.modules.assignments.errors import AssignmentNotFound

class ConsentWorkflowError(DomainError):
    code = "consent_error"

# Unknown and unauthorized collapse into one outcome so existence is not leaked.
class NotFoundOrForbidden(AssignmentNotFound, ConsentWorkflowError):
    message = "Not found or access denied"

class ConsentNotRequired(ConsentWorkflowError):
    code = "consent_not_required"
    status_code = 409
    message = "Consent not required for this assignment"

class AlreadyGranted(ConsentWorkflowError):
    code = "already_granted"
    status_code = 409
    message = "Consent already granted for this assignment"

class AssignmentInactive(ConsentWorkflowError):
    code = "assignment_inactive"
    status_code = 409
    message = "Cannot request consent for inactive assignment"

class OtpExpired(ConsentWorkflowError):
    code = "otp_expired"
    status_code = 410
    message = "Consent code has expired"

class OtpAlreadyVerified(ConsentWorkflowError):
    code = "otp_already_verified"
    status_code = 409
    message = "Consent code already used"

class MaxAttemptsExceeded(ConsentWorkflowError):
    code = "max_attempts_exceeded"
    status_code = 423
    message = "Consent code is blocked due to too many attempts"

class InvalidCode(ConsentWorkflowError):
    code = "invalid_code"
    status_code = 400
    message = "Invalid consent code"

class ResendLimitExceeded(ConsentWorkflowError):
    code = "resend_limit_exceeded"
    status_code = 429
    message = "Too many consent codes requested, try again later"
