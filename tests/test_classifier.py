import pytest
from pydantic import ValidationError

from wipeportal.classifier import (
    ClassifierConfig,
    LARGE_FILE_THRESHOLD_BYTES,
    assess_file_name,
    classify_file_name,
    file_extension,
    luhn_check,
)
from wipeportal.models import RiskLevel


@pytest.mark.parametrize(
    "name",
    ["secret.pem", "holiday.pem", "backup.KDBX", "employee.p12", "wallet.wallet", "id_rsa.key"],
)
def test_high_risk_extension_always_wins(name):
    assessment = assess_file_name(name)
    assert assessment.level == RiskLevel.HIGH
    assert "extension" in assessment.reasons[0]


@pytest.mark.parametrize(
    "name",
    [
        "my_password.txt",
        "PASSWORD.png",
        "ssn.docx",
        "bank account details.xlsx",
        "bank account.png",
    ],
)
def test_critical_keywords_are_high(name):
    assert classify_file_name(name) == RiskLevel.HIGH


def test_medium_keyword_without_critical_match_is_medium():
    assessment = assess_file_name("employee_handbook.png")
    assert assessment.level == RiskLevel.MEDIUM
    assert "'employee'" in assessment.reasons[0]


def test_overlapping_medium_and_critical_keyword_is_high():
    # "salary" sits in both the medium and the critical list
    assert classify_file_name("quarterly_salary_report.pdf") == RiskLevel.HIGH


def test_identity_number_pattern_is_high():
    assessment = assess_file_name("record-123-45-6789.txt")
    assert assessment.level == RiskLevel.HIGH
    assert "identity number" in assessment.reasons[0]


def test_payment_card_pattern_is_high():
    assessment = assess_file_name("order_4111111111111111.png")
    assert assessment.level == RiskLevel.HIGH
    assert "payment card" in assessment.reasons[0]


def test_grouped_card_number_is_high():
    assert classify_file_name("receipt 4111 1111 1111 1111.png") == RiskLevel.HIGH


def test_short_digit_run_is_not_a_card():
    assert classify_file_name("img_20240101.jpg") == RiskLevel.LOW


def test_hash_like_name_is_high():
    assessment = assess_file_name("d41d8cd98f00b204e9800998ecf8427e.bin")
    assert assessment.level == RiskLevel.HIGH
    assert "key or hash" in assessment.reasons[0]


@pytest.mark.parametrize("name", ["vacation_photo.jpg", "photo.jpg", "notes.txt", "README"])
def test_plain_names_are_low(name):
    assert classify_file_name(name) == RiskLevel.LOW


def test_extension_is_text_after_last_dot():
    assert file_extension("archive.tar.GZ") == "gz"
    assert file_extension("README") == ""
    assert file_extension("trailing.") == ""


def test_large_document_with_medium_keyword_reports_size():
    big = LARGE_FILE_THRESHOLD_BYTES + 1
    assessment = assess_file_name("contract_scan.pdf", big)
    assert assessment.level == RiskLevel.MEDIUM
    assert assessment.reasons[0].startswith("Large document")


def test_small_document_with_medium_keyword_is_still_medium():
    assessment = assess_file_name("contract_scan.pdf", 1024)
    assert assessment.level == RiskLevel.MEDIUM
    assert assessment.reasons[0].startswith("Sensitive keyword")


def test_missing_size_never_triggers_size_rule():
    assessment = assess_file_name("contract.pdf", None)
    assert assessment.level == RiskLevel.MEDIUM
    assert not assessment.reasons[0].startswith("Large document")


def test_threshold_comes_from_config():
    config = ClassifierConfig(large_file_threshold=100)
    assessment = assess_file_name("contract.pdf", 101, config)
    assert assessment.reasons[0].startswith("Large document")


def test_user_keywords_are_treated_as_high_risk():
    assert classify_file_name("aadhar_scan.jpg") == RiskLevel.LOW
    config = ClassifierConfig(sensitive_keywords=["Aadhar"])
    assert classify_file_name("aadhar_scan.jpg", config=config) == RiskLevel.HIGH


def test_config_normalizes_keywords():
    config = ClassifierConfig(sensitiveKeywords=[" Aadhar ", "aadhar", "", "BANK"])
    assert config.sensitive_keywords == ("aadhar", "bank")


def test_config_is_immutable():
    config = ClassifierConfig()
    with pytest.raises(ValidationError):
        config.large_file_threshold = 1


def test_classification_is_deterministic():
    first = assess_file_name("quarterly_budget.xlsx", 2048)
    second = assess_file_name("quarterly_budget.xlsx", 2048)
    assert first == second


@pytest.mark.parametrize(
    "name",
    [
        "backup-2024-01-15-103045.zip",
        "IMG 20240115 103045.jpg",
        "1700000000000.log",
        "scan_2023 0412 1530 22.png",
    ],
)
def test_timestamped_names_are_not_cards(name):
    assert classify_file_name(name) == RiskLevel.LOW


def test_card_number_needs_valid_checksum():
    assert luhn_check("4111 1111 1111 1111") is True
    assert luhn_check("4111-1111-1111-1112") is False
    assert classify_file_name("order_4111111111111112.png") == RiskLevel.LOW


def test_assessment_is_hashable():
    assessment = assess_file_name("notes.txt")
    assert isinstance(assessment.reasons, tuple)
    assert len({assessment, assess_file_name("notes.txt")}) == 1


def test_single_keyword_string_is_one_keyword():
    config = ClassifierConfig(sensitive_keywords="Aadhar")
    assert config.sensitive_keywords == ("aadhar",)
    assert classify_file_name("holiday.jpg", config=config) == RiskLevel.LOW
