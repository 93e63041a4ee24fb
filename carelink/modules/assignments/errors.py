from carelink.core.errors import DomainError

class PatientNotFound(DomainError):
    code = "patient_not_found"
    status_code = 404
    message = "Patient not found"

class DuplicateActiveAssignment(DomainError):
    code = "duplicate_active_assignment"
    status_code = 409
    message = "Active assignment already exists for this patient and doctor"

class AssignmentNotFound(DomainError):
    code = "not_found_or_forbidden"
    status_code = 404
    message = "Assignment not found or access denied"
