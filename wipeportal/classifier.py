from dataclasses import dataclass
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wipeportal.models import RiskLevel

LARGE_FILE_THRESHOLD_BYTES = 10 * 1024 * 1024

# Identity numbers, financial accounts, health records, credentials.
CRITICAL_KEYWORDS: tuple[str, ...] = (
    "ssn", "social security number", "social security", "ein", "tax id", "taxpayer id",
    "bank account", "routing number", "credit card", "debit card", "cvv", "cvc",
    "passport", "driver license", "driver licence", "national id", "identity card",
    "birth certificate", "death certificate", "marriage certificate",
    "medical record", "patient record", "health record", "hospital record",
    "prescription", "diagnosis", "treatment", "hipaa", "phi",
    "salary", "payroll", "w2", "w-2", "1099", "tax return", "irs",
    "classified", "top secret", "confidential", "proprietary", "trade secret",
    "api key", "private key", "secret key", "auth token", "access token",
    "password", "passwd", "pwd", "pin", "security code",
)

HIGH_RISK_KEYWORDS: tuple[str, ...] = (
    "ssn", "social security", "bank account", "credit card", "passport", "driver license",
    "medical record", "tax return", "classified", "top secret", "api key", "private key",
    "password", "secret", "confidential", "proprietary", "national id", "birth certificate",
)

MEDIUM_RISK_KEYWORDS: tuple[str, ...] = (
    "personal", "private", "internal", "restricted", "sensitive", "confidential",
    "employee", "salary", "payroll", "financial", "insurance", "legal",
    "contract", "agreement", "license", "certificate", "token", "auth",
    "login", "signin", "account", "profile", "identity", "address",
    "phone", "email", "contact", "emergency", "family", "relationship",
)

# Private keys, keystores and crypto containers.
HIGH_RISK_EXTENSIONS = frozenset({
    "p12", "pfx", "pem", "key", "crt", "cer", "der", "jks", "keystore",
    "wallet", "kdb", "kdbx", "asc", "gpg", "pgp", "enc",
})

MEDIUM_RISK_EXTENSIONS = frozenset({
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "rtf",
    "csv", "json", "xml", "sql", "db", "sqlite", "mdb", "accdb",
})

# Card numbers: 13-19 digits in groups of four (last group 1-7 digits),
# optionally separated by a single space or hyphen.
CARD_NUMBER_RE = re.compile(r"(?<!\d)\d{4}(?:[-\s]?\d{4}){2}[-\s]?\d{1,7}(?!\d)")


def luhn_check(number: str) -> bool:
    """Luhn checksum over the digits of `number`; separators are ignored."""
    digits = [int(d) for d in number if d.isdigit()]
    if len(digits) < 2:
        return False

    checksum = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        checksum += d
    return checksum % 10 == 0


def _has_card_number(lowered: str) -> bool:
    # A date or time stamp can fit the grouping; a card number also passes Luhn.
    return any(luhn_check(m.group()) for m in CARD_NUMBER_RE.finditer(lowered))


def _matches_pattern(regex: re.Pattern[str]):
    return lambda lowered: regex.search(lowered) is not None


SENSITIVE_PATTERNS = (
    ("identity number", _matches_pattern(re.compile(r"\d{3}-\d{2}-\d{4}"))),
    ("payment card number", _has_card_number),
    # 40 and 64 character digests always contain a 32 character run.
    ("key or hash", _matches_pattern(re.compile(r"[a-z0-9]{32}"))),
)


class ClassifierConfig(BaseModel):
    """User-adjustable classifier settings, passed explicitly on every call."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sensitive_keywords: tuple[str, ...] = Field(default=(), alias="sensitiveKeywords")
    large_file_threshold: int = Field(
        default=LARGE_FILE_THRESHOLD_BYTES, ge=0, alias="largeFileThreshold"
    )

    @field_validator("sensitive_keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            value = (value,)
        seen: list[str] = []
        for raw in value:
            keyword = str(raw).strip().lower()
            if keyword and keyword not in seen:
                seen.append(keyword)
        return tuple(seen)


DEFAULT_CONFIG = ClassifierConfig()


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    reasons: tuple[str, ...] = ()


def file_extension(file_name: str) -> str:
    lowered = file_name.lower()
    if "." not in lowered:
        return ""
    return lowered.rsplit(".", 1)[1]


def _first_match(lowered: str, keywords) -> str | None:
    for keyword in keywords:
        if keyword in lowered:
            return keyword
    return None


def _keyword_assessment(lowered: str, high_keywords) -> RiskAssessment | None:
    keyword = _first_match(lowered, CRITICAL_KEYWORDS)
    if keyword:
        return RiskAssessment(RiskLevel.HIGH, (f"Critical keyword '{keyword}' in filename",))
    keyword = _first_match(lowered, high_keywords)
    if keyword:
        return RiskAssessment(RiskLevel.HIGH, (f"High-risk keyword '{keyword}' in filename",))
    return None


def assess_file_name(
    file_name: str,
    file_size: int | None = None,
    config: ClassifierConfig | None = None,
) -> RiskAssessment:
    """
    Classify a file by name and, for document-like files, by size.

    Tiers are checked top-down and the first hit decides:
    - key/keystore extension           -> high
    - critical or high-risk keyword    -> high
    - large document + medium keyword  -> medium
    - medium-risk keyword              -> medium
    - identity/card/hash-like pattern  -> high
    - nothing matched                  -> low
    """
    cfg = config or DEFAULT_CONFIG
    lowered = file_name.lower()
    ext = file_extension(file_name)
    high_keywords = HIGH_RISK_KEYWORDS + cfg.sensitive_keywords

    if ext in HIGH_RISK_EXTENSIONS:
        return RiskAssessment(RiskLevel.HIGH, (f"Key or certificate container extension '.{ext}'",))

    if ext in MEDIUM_RISK_EXTENSIONS:
        keyword_hit = _keyword_assessment(lowered, high_keywords)
        if keyword_hit:
            return keyword_hit
        if file_size is not None and file_size > cfg.large_file_threshold:
            keyword = _first_match(lowered, MEDIUM_RISK_KEYWORDS)
            if keyword:
                return RiskAssessment(
                    RiskLevel.MEDIUM,
                    (f"Large document with sensitive keyword '{keyword}'",),
                )

    keyword_hit = _keyword_assessment(lowered, high_keywords)
    if keyword_hit:
        return keyword_hit

    keyword = _first_match(lowered, MEDIUM_RISK_KEYWORDS)
    if keyword:
        return RiskAssessment(RiskLevel.MEDIUM, (f"Sensitive keyword '{keyword}' in filename",))

    for label, matches in SENSITIVE_PATTERNS:
        if matches(lowered):
            return RiskAssessment(RiskLevel.HIGH, (f"Filename looks like it contains a {label}",))

    return RiskAssessment(RiskLevel.LOW, ("No sensitive extension, keyword or pattern",))


def classify_file_name(
    file_name: str,
    file_size: int | None = None,
    config: ClassifierConfig | None = None,
) -> RiskLevel:
    return assess_file_name(file_name, file_size, config).level
