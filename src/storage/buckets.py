"""Registry of named application data buckets and their storage keys."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_KEY_PREFIX = "medical_pro_"

AUDIT_LOG_BUCKET = "auditLogs"
AUTH_BUCKET = "auth"

# Only identity and timestamp fields of the auth bucket may be captured.
AUTH_CAPTURED_FIELDS = ("user", "timestamp")


@dataclass(frozen=True)
class BucketDefinition:
    """One named bucket and the storage key it lives under."""

    name: str
    storage_key: str
    label: str


BUCKET_REGISTRY: tuple[BucketDefinition, ...] = (
    BucketDefinition("patients", "medical_pro_patients", "Patients"),
    BucketDefinition("appointments", "medical_pro_appointments", "Appointments"),
    BucketDefinition("medicalRecords", "medical_pro_medical_records", "Medical records"),
    BucketDefinition("consents", "medical_pro_consents", "Consents"),
    BucketDefinition("consentTemplates", "medical_pro_consent_templates", "Consent templates"),
    BucketDefinition("users", "medical_pro_users", "Users"),
    BucketDefinition("teams", "medical_pro_teams", "Teams"),
    BucketDefinition("delegations", "medical_pro_delegations", "Delegations"),
    BucketDefinition("roles", "medical_pro_roles", "Roles and permissions"),
    BucketDefinition("settings", "medical_pro_settings", "Settings"),
    BucketDefinition("invoices", "medical_pro_invoices", "Invoices"),
    BucketDefinition("quotes", "medical_pro_quotes", "Quotes"),
    BucketDefinition("products", "medical_pro_products", "Products and services"),
    BucketDefinition("moduleConfig", "medical_pro_module_config", "Module configuration"),
    BucketDefinition("translations", "medical_pro_translations", "Translation overrides"),
    BucketDefinition(AUDIT_LOG_BUCKET, "medical_pro_audit_logs", "Audit log"),
    BucketDefinition(AUTH_BUCKET, "clinicmanager_auth", "Authenticated identity"),
)

_KEYS_BY_NAME = {bucket.name: bucket.storage_key for bucket in BUCKET_REGISTRY}


def bucket_names() -> list[str]:
    """Return registry bucket names in collection order."""
    return [bucket.name for bucket in BUCKET_REGISTRY]


def storage_key_for(name: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Return the storage key for ``name``, prefixing unknown bucket names."""
    return _KEYS_BY_NAME.get(name, f"{key_prefix}{name}")
