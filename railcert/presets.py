"""
Compliance preset catalogue.

Every preset becomes one INCOMPLETE certification for each onboarded employee.
Presets that do not require an expiration date become non-expiring certifications.
"""
from dataclasses import dataclass
from typing import List, Optional

from railcert.models.enums import PresetCategory


@dataclass(frozen=True)
class CertificationPreset:
    category: PresetCategory
    name: str
    requires_expiration: bool
    issuing_authority: Optional[str] = None


def _presets(category: PresetCategory, *entries) -> List[CertificationPreset]:
    return [
        CertificationPreset(category=category, name=name, requires_expiration=expires, issuing_authority=authority)
        for name, expires, authority in entries
    ]


BASE_PRESETS = _presets(
    PresetCategory.BASE,
    ("Government Issued ID", False, None),
    ("Safety Orientation / New Hire Training", True, None),
    ("General Safety Training", True, None),
    ("PPE Training", True, None),
    ("Drug & Alcohol Policy Acknowledgement", False, None),
    ("Medical Clearance", True, None),
    ("Emergency Contact Verification", False, None),
    ("Code of Conduct Acknowledgement", False, None),
    ("Site Rules & Expectations", False, None),
)

RAILROAD_SAFETY_PRESETS = _presets(
    PresetCategory.RAILROAD_SAFETY,
    ("Railroad Safety & Access", True, None),
    ("eRailSafe", True, None),
    ("Railroad Contractor Orientation", True, None),
    ("Track Safety Training", True, None),
    ("On-Track Protection Training", True, None),
    ("Roadway Worker Protection (RWP)", True, None),
    ("RWIC Qualification", True, None),
    ("Job Briefing Certification", True, None),
)

RAILROAD_CREDENTIAL_PRESETS = _presets(
    PresetCategory.RAILROAD_CREDENTIALS,
    ("Railroad Badge / Access Credential", True, None),
    ("Railroad Background Check", True, None),
    ("Railroad Medical Certification", True, None),
    ("Railroad Drug & Alcohol Compliance", True, None),
    ("Railroad-Issued ID Verification", False, None),
)

CONSTRUCTION_SAFETY_PRESETS = _presets(
    PresetCategory.CONSTRUCTION_SAFETY,
    ("OSHA 10", False, "OSHA"),
    ("OSHA 30", False, "OSHA"),
    ("Fall Protection", True, None),
    ("Confined Space", True, None),
    ("Excavation & Trenching", True, None),
    ("Scaffold Safety", True, None),
    ("LOTO", True, None),
    ("Hot Work", True, None),
)

CONSTRUCTION_CREDENTIAL_PRESETS = _presets(
    PresetCategory.CONSTRUCTION_CREDENTIALS,
    ("Equipment Operator", True, None),
    ("Crane Operator", True, None),
    ("Forklift", True, None),
    ("Aerial Lift", True, None),
    ("Welding", True, None),
    ("Heavy Equipment Authorization", True, None),
)

ENVIRONMENTAL_SAFETY_PRESETS = _presets(
    PresetCategory.ENVIRONMENTAL_SAFETY,
    ("HAZWOPER 40-Hour", True, None),
    ("HAZWOPER Refresher", True, None),
    ("Spill Response", True, None),
    ("Hazardous Materials Handling", True, None),
    ("Waste Characterization", True, None),
    ("Decontamination", True, None),
)

ENVIRONMENTAL_CREDENTIAL_PRESETS = _presets(
    PresetCategory.ENVIRONMENTAL_CREDENTIALS,
    ("Environmental Sampling", True, None),
    ("Environmental Monitoring", True, None),
    ("Environmental Reporting", True, None),
    ("Regulatory Awareness", True, None),
)

PRESETS_BY_CATEGORY = {
    PresetCategory.BASE: BASE_PRESETS,
    PresetCategory.RAILROAD_SAFETY: RAILROAD_SAFETY_PRESETS,
    PresetCategory.RAILROAD_CREDENTIALS: RAILROAD_CREDENTIAL_PRESETS,
    PresetCategory.CONSTRUCTION_SAFETY: CONSTRUCTION_SAFETY_PRESETS,
    PresetCategory.CONSTRUCTION_CREDENTIALS: CONSTRUCTION_CREDENTIAL_PRESETS,
    PresetCategory.ENVIRONMENTAL_SAFETY: ENVIRONMENTAL_SAFETY_PRESETS,
    PresetCategory.ENVIRONMENTAL_CREDENTIALS: ENVIRONMENTAL_CREDENTIAL_PRESETS,
}


def get_required_certifications(categories: Optional[List[PresetCategory]] = None) -> List[CertificationPreset]:
    """
    Presets to instantiate for a new employee.

    BASE is always included; other categories only when asked for. With no
    categories given, every category applies.
    """
    if categories is None:
        categories = list(PRESETS_BY_CATEGORY)
    selected = [PresetCategory.BASE] + [c for c in categories if c != PresetCategory.BASE]
    presets: List[CertificationPreset] = []
    for category in selected:
        presets.extend(PRESETS_BY_CATEGORY.get(PresetCategory(category), []))
    return presets
