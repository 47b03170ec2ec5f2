from pkifetch.ca.crypto import CertificateInfo
from pkifetch.cli import run
from pkifetch.domain.models import CertificateBundle
from pkifetch.domain.states import ArtifactKind, FetchState, VerificationMode
from pkifetch.vault.schemas import IssuedCertificateData, IssueRequestBody, IssueResponse
from shared.config import Settings

# Pydantic Settings
Settings.model_config
Settings.APP_NAME
Settings.LOG_LEVEL

# Backend payload fields (parsed for completeness, read by callers or logs)
IssueRequestBody.format
IssueResponse.request_id
IssueResponse.lease_id
IssueResponse.renewable
IssueResponse.lease_duration
IssuedCertificateData.private_key_type
IssuedCertificateData.expiration

# Domain fields exposed to callers of FetchService
CertificateBundle.private_key_type
CertificateBundle.expiration
CertificateInfo.not_before

# Enums
VerificationMode.SUPPLIED_CA
FetchState.CA_RECEIVED
ArtifactKind.CA_CERTIFICATE

# Console script entry point
run
