"""Default action item rules.

Used when no rules are configured in `action_item_rules`. Thresholds are
configuration: an elapsed value must exceed `min_minutes`/`min_days` to
match. Order matters within an entity type, since a suppressible rule is
dropped when an earlier rule already produced an item for the same entity.
"""

DEFAULT_CLIENT_RULES: list[dict] = [
    {
        "id": "speed_to_lead",
        "entity_type": "client",
        "name": "Speed to lead",
        "condition_type": "time_since_creation",
        "condition_config": {
            "phase": "new_lead",
            "task_not_done": "initial_call_attempted",
            "min_minutes": 30,
        },
        "urgency": "critical",
        "title_template": "Speed to lead",
        "detail_template": (
            "New lead {{minutes_since_created}} minutes old, no initial call attempted. "
            "Goal: contact within 30 minutes."
        ),
        "action_template": "Call {{name}} now",
    },
    {
        "id": "no_contact",
        "entity_type": "client",
        "name": "No live contact",
        "condition_type": "phase_time",
        "condition_config": {"phase": "initial_contact", "min_days": 2},
        "urgency": "warning",
        "title_template": "No contact yet",
        "detail_template": (
            "Day {{days_in_phase}} in Initial Contact, still no live contact with decision-maker."
        ),
        "action_template": "Try another channel",
    },
    {
        "id": "assessment_overdue",
        "entity_type": "client",
        "name": "Assessment overdue",
        "condition_type": "phase_time",
        "condition_config": {"phase": "assessment", "min_days": 7},
        "urgency": "warning",
        "title_template": "Assessment overdue",
        "detail_template": (
            "Assessment phase open {{days_in_phase}} days. "
            "Home visit may be delayed or needs rescheduling."
        ),
        "action_template": "Confirm the home visit",
    },
    {
        "id": "proposal_followup",
        "entity_type": "client",
        "name": "Proposal follow-up",
        "condition_type": "task_incomplete",
        "condition_config": {"phase": "proposal", "task_id": "proposal_followup", "min_days": 3},
        "urgency": "warning",
        "title_template": "Proposal follow-up",
        "detail_template": "Proposal sent {{days_in_phase}} days ago, follow-up call not completed.",
        "action_template": "Call to follow up on the proposal",
    },
    {
        "id": "stale_lead",
        "entity_type": "client",
        "name": "Stale lead",
        "condition_type": "phase_time",
        "condition_config": {
            "phase": "_any_active",
            "exclude_phases": ["won", "lost", "nurture"],
            "min_days": 14,
        },
        "urgency": "warning",
        "suppressible": True,
        "title_template": "Lead going cold",
        "detail_template": (
            "{{days_in_phase}} days in {{phase_label}} phase. Lead may be going cold. "
            "Consider follow-up or moving to nurture."
        ),
        "action_template": "Follow up or move to nurture",
    },
    {
        "id": "nurture_check",
        "entity_type": "client",
        "name": "Nurture check-in",
        "condition_type": "last_note_stale",
        "condition_config": {"phase": "nurture", "min_days": 30},
        "urgency": "info",
        "title_template": "Nurture check-in",
        "detail_template": "{{days_since_last_note}} days since last activity. Time for a nurture check-in.",
        "action_template": "Send a check-in message",
    },
]

DEFAULT_CAREGIVER_RULES: list[dict] = [
    {
        "id": "interview_not_scheduled",
        "entity_type": "caregiver",
        "name": "24-hour interview standard",
        "condition_type": "time_since_creation",
        "condition_config": {"phase": "intake", "task_not_done": "calendar_invite", "min_days": 0},
        "urgency": "warning",
        "urgency_escalation": {"min_days": 2, "urgency": "critical"},
        "title_template": "Interview not yet scheduled",
        "detail_template": (
            "Day {{days_since_created}}. Goal is application to interview within 24 hours."
        ),
        "action_template": "Schedule virtual interview now",
    },
    {
        "id": "offer_letter_unsigned",
        "entity_type": "caregiver",
        "name": "Offer letter chase",
        "condition_type": "task_stale",
        "condition_config": {
            "phase": "interview",
            "done_task_id": "offer_letter_sent",
            "pending_task_id": "offer_hold",
            "min_days": 1,
        },
        "urgency": "warning",
        "title_template": "Offer letter unsigned, day {{days_in_phase}}",
        "detail_template": "Policy: retract offer if not accepted within 3 business days.",
        "action_template": "Call + text follow-up",
    },
    {
        "id": "onboarding_sprint",
        "entity_type": "caregiver",
        "name": "7-day onboarding sprint",
        "condition_type": "sprint_deadline",
        "condition_config": {
            "phase": "onboarding",
            "fallback_phase": "interview",
            "warning_day": 3,
            "expired_day": 7,
        },
        "urgency": "warning",
        "title_template": "Onboarding docs incomplete, day {{sprint_day}}",
        "detail_template": "{{sprint_remaining}} days remaining in the 7-day sprint.",
        "action_template": "Follow up: \"Do you have any questions?\"",
    },
    {
        "id": "verification_pending",
        "entity_type": "caregiver",
        "name": "Verification stall",
        "condition_type": "phase_time",
        "condition_config": {"phase": "verification", "min_days": 2},
        "urgency": "warning",
        "title_template": "Verification pending, day {{days_in_phase}}",
        "detail_template": "Check: I-9 validation, HCA Guardian status, CareAcademy, WellSky entry.",
        "action_template": "Complete remaining verification items",
    },
    {
        "id": "orientation_invite",
        "entity_type": "caregiver",
        "name": "Orientation not scheduled",
        "condition_type": "task_incomplete",
        "condition_config": {"phase": "orientation", "task_id": "invite_sent", "min_days": 0},
        "urgency": "warning",
        "title_template": "Orientation invite not sent",
        "detail_template": "Caregiver is ready. Schedule for next Sunday orientation.",
        "action_template": "Send calendar invite with instructions",
    },
    {
        "id": "hca_expired",
        "entity_type": "caregiver",
        "name": "HCA expired",
        "condition_type": "date_expiring",
        "condition_config": {"field": "hca_expiration", "days_until": -1},
        "urgency": "critical",
        "title_template": "HCA registration EXPIRED",
        "detail_template": "Expired {{days_until_expiry}} days ago. Caregiver cannot be deployed.",
        "action_template": "Contact caregiver to renew HCA immediately",
    },
    {
        "id": "hca_expiring",
        "entity_type": "caregiver",
        "name": "HCA expiring soon",
        "condition_type": "date_expiring",
        "condition_config": {"field": "hca_expiration", "days_warning": 30},
        "urgency": "warning",
        "title_template": "HCA expiring in {{days_until_expiry}} days",
        "detail_template": "Expires {{expiry_date}}. Begin renewal process.",
        "action_template": "Send HCA renewal reminder",
    },
    {
        "id": "hca_expiring_later",
        "entity_type": "caregiver",
        "name": "HCA renewal planning",
        "condition_type": "date_expiring",
        "condition_config": {"field": "hca_expiration", "days_warning": 90, "days_exclude_under": 30},
        "urgency": "info",
        "title_template": "HCA expiring in {{days_until_expiry}} days",
        "detail_template": "Expires {{expiry_date}}. Plan ahead for renewal.",
        "action_template": "Note for upcoming renewal",
    },
    {
        "id": "no_phone_screen",
        "entity_type": "caregiver",
        "name": "Intake stall",
        "condition_type": "task_incomplete",
        "condition_config": {"phase": "intake", "task_id": "phone_screen", "min_days": 3},
        "urgency": "warning",
        "title_template": "No phone screen after {{days_in_phase}} days",
        "detail_template": "Candidate may be lost. Consider final outreach attempt.",
        "action_template": "Day 5 final attempt or close out",
    },
]

DEFAULT_RULES_BY_ENTITY: dict[str, list[dict]] = {
    "client": DEFAULT_CLIENT_RULES,
    "caregiver": DEFAULT_CAREGIVER_RULES,
}
