"""Default pipeline phase definitions and ordering."""

from __future__ import annotations


# Client (sales) pipeline. Clients carry an explicit phase.
CLIENT_PHASE_ORDER = [
    "new_lead",
    "initial_contact",
    "consultation",
    "assessment",
    "proposal",
    "won",
    "lost",
    "nurture",
]

CLIENT_PHASE_LABELS = {
    "new_lead": "New Lead",
    "initial_contact": "Initial Contact",
    "consultation": "Consultation",
    "assessment": "In-Home Assessment",
    "proposal": "Proposal",
    "won": "Won",
    "lost": "Lost",
    "nurture": "Nurture",
}

CLIENT_ENTRY_PHASE = "new_lead"
CLIENT_TERMINAL_PHASES = frozenset({"won", "lost"})
# Long-tail holding phase: excluded from staleness, checked for dormancy instead
CLIENT_HOLDING_PHASES = frozenset({"nurture"})

# Caregiver (recruiting) pipeline. The phase is derived from task
# completion unless an explicit override is stored.
CAREGIVER_PHASE_ORDER = [
    "intake",
    "interview",
    "onboarding",
    "verification",
    "orientation",
]

CAREGIVER_PHASE_LABELS = {
    "intake": "Intake & Screening",
    "interview": "Interview & Offer",
    "onboarding": "Onboarding Packet",
    "verification": "Verification & Handoff",
    "orientation": "Orientation",
}

CAREGIVER_ENTRY_PHASE = "intake"
CAREGIVER_TERMINAL_PHASES: frozenset[str] = frozenset()

CAREGIVER_PHASE_TASKS = {
    "intake": [
        "app_reviewed",
        "initial_contact",
        "phone_screen",
        "registry_check",
        "background_check",
        "tb_test",
        "certificates",
        "shift_availability",
        "calendar_invite",
        "confirmation_email",
        "reminder_scheduled",
    ],
    "interview": [
        "interview_completed",
        "decision_made",
        "verbal_offer",
        "next_steps_discussed",
        "offer_letter_sent",
        "offer_hold",
    ],
    "onboarding": [
        "offer_signed",
        "wage_notice",
        "direct_deposit",
        "i9_form",
        "w4_form",
        "emergency_contact",
        "employment_agreement",
        "employee_handbook",
        "harassment_pamphlet",
        "disability_pamphlet",
        "family_leave_pamphlet",
        "domestic_violence_notice",
    ],
    "verification": [
        "i9_validation",
        "hca_linked",
        "hca_cleared",
        "careacademy_entered",
        "training_assigned",
        "wellsky_entered",
        "docs_uploaded",
    ],
    "orientation": [
        "orientation_confirmed",
        "invite_sent",
        "wellsky_app_info",
        "clock_expectation",
        "reminder_sent",
        "questionnaire_done",
        "scrubs_distributed",
        "first_shift",
    ],
}

PHASE_ORDER_BY_ENTITY = {
    "client": CLIENT_PHASE_ORDER,
    "caregiver": CAREGIVER_PHASE_ORDER,
}

PHASE_LABELS_BY_ENTITY = {
    "client": CLIENT_PHASE_LABELS,
    "caregiver": CAREGIVER_PHASE_LABELS,
}

ENTRY_PHASE_BY_ENTITY = {
    "client": CLIENT_ENTRY_PHASE,
    "caregiver": CAREGIVER_ENTRY_PHASE,
}

TERMINAL_PHASES_BY_ENTITY = {
    "client": CLIENT_TERMINAL_PHASES,
    "caregiver": CAREGIVER_TERMINAL_PHASES,
}


def is_known_phase(entity_type: str, phase: str | None) -> bool:
    return bool(phase) and phase in PHASE_ORDER_BY_ENTITY.get(entity_type, [])


def get_phase_label(entity_type: str, phase: str | None) -> str:
    if not phase:
        return ""
    return PHASE_LABELS_BY_ENTITY.get(entity_type, {}).get(phase, phase)
