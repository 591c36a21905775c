"""Built-in notification templates and placeholder substitution."""

from typing import Mapping, Optional

TEMPLATES: dict[str, str] = {
    "standard": (
        "Dear [PatientName], your [TestName] report is now ready.\n"
        "Date: [ReportDate]\n"
        "Doctor: [DoctorName]\n"
        "To view or download your report, please contact our lab.\n"
        "\n"
        "- [LabName]"
    ),
    "urgent": (
        "\U0001f6a8 URGENT: Dear [PatientName], your [TestName] results require immediate attention.\n"
        "Date: [ReportDate]\n"
        "Doctor: [DoctorName]\n"
        "Please contact your doctor immediately.\n"
        "\n"
        "- [LabName]"
    ),
    "normal": (
        "Dear [PatientName], your [TestName] results are normal.\n"
        "Date: [ReportDate]\n"
        "Doctor: [DoctorName]\n"
        "No further action required.\n"
        "\n"
        "- [LabName]"
    ),
}

DEFAULT_TEMPLATE = "standard"

# placeholder -> key in the substitution data
PLACEHOLDERS: dict[str, str] = {
    "[PatientName]": "patient_name",
    "[TestName]": "test_name",
    "[ReportDate]": "report_date",
    "[DoctorName]": "doctor_name",
    "[LabName]": "lab_name",
}


def process_template(template: object, data: Mapping[str, Optional[str]]) -> str:
    """Replace every placeholder occurrence literally; missing values become empty.

    Returns "" for empty or non-string templates.
    """
    if not template or not isinstance(template, str):
        return ""

    processed = template
    for placeholder, key in PLACEHOLDERS.items():
        processed = processed.replace(placeholder, data.get(key) or "")
    return processed.strip()


def get_template(name: str = DEFAULT_TEMPLATE) -> str:
    """Return the named built-in template, falling back to the standard one."""
    return TEMPLATES.get(name, TEMPLATES[DEFAULT_TEMPLATE])
