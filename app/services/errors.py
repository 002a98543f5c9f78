"""
Compliance error taxonomy.

Every error carries a machine-readable code and the HTTP status the views
answer with. Services raise these; views turn them into the JSON envelope
{"success": false, "error": code, "message": str(e)}.
"""

from typing import Any, Dict


class ComplianceError(Exception):
    code = "compliance_error"
    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code, "message": str(self)}


# Bad input, rejected before any I/O

class ValidationError(ComplianceError):
    code = "validation_error"
    status_code = 400


class InvalidZipError(ValidationError):
    code = "invalid_zip"


# Input is well-formed but there is no data for it

class NotFoundError(ComplianceError):
    code = "not_found"
    status_code = 404


class ZipNotFoundError(NotFoundError):
    code = "zip_not_found"


class ProductNotFoundError(NotFoundError):
    code = "product_not_found"


class RuleNotFoundError(NotFoundError):
    code = "rule_not_found"


class AuditLogNotFoundError(NotFoundError):
    code = "audit_log_not_found"


# Completion service / document extraction

class ExternalServiceError(ComplianceError):
    code = "external_service_error"
    status_code = 502


class CompletionTimeoutError(ExternalServiceError):
    code = "completion_timeout"
    status_code = 504


class ClassificationError(ExternalServiceError):
    code = "classification_failed"


class IngestionError(ComplianceError):
    code = "ingestion_failed"
    status_code = 422


class RuleLoadError(ComplianceError):
    code = "rule_load_error"
    status_code = 500


class ViolationAlreadyResolvedError(ComplianceError):
    code = "violation_already_resolved"
    status_code = 409
